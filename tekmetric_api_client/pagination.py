"""
Sequential traversal of paginated Tekmetric endpoints.

Paginated endpoints wrap their results in a uniform envelope::

    {"content": [...], "totalPages": 3, "totalElements": 250,
     "last": false, "first": true, "size": 100, "number": 0,
     "numberOfElements": 100, "empty": false}

:func:`fetch_all_pages` and :func:`fetch_until` drive a page fetcher
over page indices ``0, 1, 2, ...`` one page at a time and return the
accumulated items with :class:`AggregationMetadata`.  Pages are never
fetched concurrently so that a traversal draws on the client's shared
rate budget predictably.

Example
-------

.. code-block:: python

    items, meta = fetch_until(
        lambda page: client.get_repair_orders(shop_id=1, page=page),
        collected_at_least(50),
        max_pages=10,
    )
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Sequence, Tuple, TypeVar

from .exceptions import AggregationError, RequestCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One decoded page envelope."""

    content: List[T]
    last: bool = False
    total_elements: int = 0
    total_pages: int = 0
    first: bool = False
    size: int = 0
    number: int = 0
    number_of_elements: int = 0
    empty: bool = False

    @classmethod
    def from_json(
        cls,
        payload: Mapping[str, Any],
        item: Optional[Callable[[Any], T]] = None,
    ) -> "Page[T]":
        """Decode a page envelope, converting each item with ``item``.

        Raises
        ------
        ValueError
            If ``payload`` is not an envelope with a ``content`` list.
        """
        if not isinstance(payload, Mapping):
            raise ValueError("page envelope must be a JSON object")
        content = payload.get("content")
        if not isinstance(content, list):
            raise ValueError("page envelope has no 'content' list")
        items = [item(raw) for raw in content] if item is not None else list(content)
        return cls(
            content=items,
            last=bool(payload.get("last", False)),
            total_elements=int(payload.get("totalElements") or 0),
            total_pages=int(payload.get("totalPages") or 0),
            first=bool(payload.get("first", False)),
            size=int(payload.get("size") or 0),
            number=int(payload.get("number") or 0),
            number_of_elements=int(payload.get("numberOfElements") or len(items)),
            empty=bool(payload.get("empty", not items)),
        )


@dataclass
class AggregationMetadata:
    """What one aggregation call did.  Created fresh per call."""

    records_fetched: int = 0
    records_processed: int = 0
    pages_traversed: int = 0
    execution_time_ms: int = 0
    _started: float = field(default_factory=time.monotonic, repr=False, compare=False)

    def _finish(self) -> None:
        self.execution_time_ms = int((time.monotonic() - self._started) * 1000)

    def as_dict(self) -> Dict[str, int]:
        return {
            "records_fetched": self.records_fetched,
            "records_processed": self.records_processed,
            "pages_traversed": self.pages_traversed,
            "execution_time_ms": self.execution_time_ms,
        }


PageFetcher = Callable[[int], Page[T]]
Condition = Callable[[Sequence[T]], bool]


def collected_at_least(count: int) -> Callable[[Sequence[Any]], bool]:
    """Condition for :func:`fetch_until` that stops once ``count`` items are held."""
    return lambda items: len(items) >= count


def fetch_all_pages(
    fetcher: PageFetcher[T],
    max_pages: int,
    *,
    cancel: Optional[threading.Event] = None,
) -> Tuple[List[T], AggregationMetadata]:
    """Fetch pages until one is marked last, one is empty, or ``max_pages`` is hit.

    Raises
    ------
    AggregationError
        If the fetcher fails on any page.  The error carries the
        metadata accumulated up to that point.
    RequestCancelled
        If ``cancel`` is set; no partial result is returned.
    """
    return _aggregate(fetcher, None, max_pages, cancel)


def fetch_until(
    fetcher: PageFetcher[T],
    condition: Condition[T],
    max_pages: int,
    *,
    cancel: Optional[threading.Event] = None,
) -> Tuple[List[T], AggregationMetadata]:
    """Like :func:`fetch_all_pages`, but also stop once ``condition(items)`` holds.

    The condition is evaluated after every page on all items gathered
    so far, so no further page is requested once it returns true.
    """
    return _aggregate(fetcher, condition, max_pages, cancel)


def _aggregate(
    fetcher: PageFetcher[T],
    condition: Optional[Condition[T]],
    max_pages: int,
    cancel: Optional[threading.Event],
) -> Tuple[List[T], AggregationMetadata]:
    metadata = AggregationMetadata()
    items: List[T] = []

    for page_index in range(max(0, max_pages)):
        if cancel is not None and cancel.is_set():
            raise RequestCancelled(f"aggregation cancelled before page {page_index}")
        try:
            page = fetcher(page_index)
        except RequestCancelled:
            raise
        except Exception as exc:
            metadata._finish()
            raise AggregationError("fetch", exc, metadata) from exc

        items.extend(page.content)
        metadata.pages_traversed += 1
        metadata.records_fetched += len(page.content)
        logger.debug(
            "fetched page: page=%d items=%d total_items=%d",
            page_index,
            len(page.content),
            len(items),
        )

        if condition is not None and condition(items):
            break
        if page.last or not page.content:
            break
    else:
        if max_pages > 0:
            logger.warning(
                "stopped after max_pages=%d without reaching the last page", max_pages
            )

    metadata.records_processed = len(items)
    metadata._finish()
    return items, metadata
