"""
Client implementation for the Tekmetric REST API.

This module defines the :class:`TekmetricClient` class which
authenticates against Tekmetric using the OAuth2 client credentials
grant and performs read-only requests against the shop management API.
One client owns one token, one rate limiter and one retry policy, and
may be shared between threads.

Usage
-----

.. code-block:: python

    from tekmetric_api_client import TekmetricClient, collected_at_least

    client = TekmetricClient(
        client_id="abc123",
        client_secret="shhsecret",
        environment="sandbox",
        default_shop_id=2,
    )

    # A single page of customers
    page = client.get_customers(search="smith", size=25)
    for customer in page.content:
        print(customer["firstName"], customer["lastName"])

    # Every repair order for a vehicle, at most 10 pages
    orders, meta = client.fetch_all(
        "/api/v1/repair-orders", params={"vehicleId": 991}, max_pages=10
    )
    print(meta.as_dict())

The client fetches a new access token whenever the previous one has
expired, retries 429 and 5xx responses with exponential backoff, and
refuses requests for shops outside the token's scope before anything
is sent.
"""

from __future__ import annotations

import threading
import time
from datetime import date as _date, datetime as _datetime, timezone
from typing import Any, Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

import requests

from .auth import AccessToken, AuthorizationGuard, TokenManager
from .config import PRODUCTION_BASE_URL, SANDBOX_BASE_URL, ClientConfig
from .executor import RequestExecutor
from .pagination import AggregationMetadata, Page, fetch_all_pages, fetch_until
from .ratelimit import RateLimiter
from .retry import Retryer, RetryPolicy
from .validation import validate_filters

API_PREFIX = "/api/v1"
MAX_PAGE_SIZE = 100
DEFAULT_MAX_PAGES = 50

# 1-Estimate, 2-WIP, 3-Complete, 4-Saved, 5-Posted, 6-AR; 7-Deleted is left out
ACTIVE_REPAIR_ORDER_STATUSES = (1, 2, 3, 4, 5, 6)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _format_param(value: Any) -> Any:
    """Render a filter value the way the API expects it in a query string."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, _datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    if isinstance(value, _date):
        return value.strftime("%Y-%m-%dT00:00:00Z")
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_format_param(item) for item in value]
    return value


class TekmetricClient:
    """A resilient client for the Tekmetric REST API.

    Parameters
    ----------
    client_id : str
        Your Tekmetric OAuth client identifier.
    client_secret : str
        Your Tekmetric OAuth client secret.
    environment : str, optional
        ``"sandbox"`` (default) or ``"production"``.
    base_url : str, optional
        Override the API root derived from ``environment``.
    default_shop_id : int, optional
        Shop used by the resource helpers when no ``shop_id`` is passed.
    timeout : float, optional
        Per-request timeout in seconds (default 30).
    max_retries : int, optional
        Retries after the first attempt for 429/5xx/transport failures
        (default 3).
    max_backoff_seconds : float, optional
        Cap on any single retry delay (default 60).
    rate_per_second, burst : optional
        Shared outbound rate limit.
    config : ClientConfig, optional
        A prepared configuration.  When given, the individual settings
        above must not be passed; doing so raises ``ValueError``.
    session : requests.Session, optional
        HTTP session to use.  A new one is created when omitted.

    Notes
    -----
    Tokens are checked for expiry right before each request and
    refreshed at most once however many threads notice the expiry.
    When the token response carries no ``expires_in``, the token is
    treated as valid for 24 hours.
    """

    _DEFAULT_BASE_URLS = {
        "sandbox": SANDBOX_BASE_URL,
        "production": PRODUCTION_BASE_URL,
    }

    def __init__(
        self,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        environment: str = "sandbox",
        base_url: Optional[str] = None,
        default_shop_id: Optional[int] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        max_backoff_seconds: Optional[float] = None,
        rate_per_second: Optional[float] = None,
        burst: Optional[int] = None,
        config: Optional[ClientConfig] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        settings = {
            "default_shop_id": default_shop_id,
            "timeout_seconds": timeout,
            "max_retries": max_retries,
            "max_backoff_seconds": max_backoff_seconds,
            "rate_per_second": rate_per_second,
            "burst": burst,
        }
        if config is None:
            environment = environment.lower()
            if environment not in self._DEFAULT_BASE_URLS:
                raise ValueError(
                    "environment must be either 'sandbox' or 'production', got %r"
                    % environment
                )
            config = ClientConfig(
                base_url=base_url or self._DEFAULT_BASE_URLS[environment],
                client_id=client_id or "",
                client_secret=client_secret or "",
                **{name: value for name, value in settings.items() if value is not None},
            )
        else:
            given = [name for name, value in settings.items() if value is not None]
            if client_id or client_secret or base_url:
                given.insert(0, "credentials/base_url")
            if given:
                raise ValueError(
                    "pass either config or individual settings, not both (got %s)"
                    % ", ".join(given)
                )

        self.config = config.validate()
        self._session = session or requests.Session()

        self.tokens = TokenManager(self.config, self._session, clock=clock)
        self.guard = AuthorizationGuard(self.tokens)
        self.limiter = RateLimiter(self.config.rate_per_second, self.config.burst, sleep=sleep)
        self.retryer = Retryer(
            RetryPolicy(self.config.max_retries, self.config.max_backoff_seconds),
            sleep=sleep,
        )
        self.executor = RequestExecutor(
            self.config, self._session, self.tokens, self.guard, self.limiter, self.retryer
        )

    @classmethod
    def from_env(cls, **kwargs: Any) -> "TekmetricClient":
        """Create a client configured from ``TEKMETRIC_*`` environment variables."""
        return cls(config=ClientConfig.from_env(), **kwargs)

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "TekmetricClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def authenticate(self) -> AccessToken:
        """Force a new token exchange.  Normally this happens lazily."""
        return self.tokens.authenticate()

    @property
    def shop_ids(self) -> FrozenSet[str]:
        """Shop ids granted by the current token (empty before authentication)."""
        return self.tokens.scope

    def _resolve_shop(self, shop_id: Optional[int]) -> int:
        return shop_id if shop_id else self.config.default_shop_id

    # ------------------------------------------------------------------
    # Generic request helpers
    # ------------------------------------------------------------------
    def get(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        shop_id: Optional[int] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """Perform a GET request and return the decoded JSON body."""
        return self.executor.execute(
            "GET", path, params=params, shop_id=shop_id, cancel=cancel
        )

    def get_page(
        self,
        path: str,
        *,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        params: Optional[Mapping[str, Any]] = None,
        shop_id: Optional[int] = None,
        item: Optional[Callable[[Any], Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Page[Any]:
        """Fetch one page of a paginated endpoint.

        ``page`` is zero-based.  ``size`` is capped at 100, the API's
        maximum.  When ``shop_id`` is given it is authorized and sent as
        the ``shop`` query parameter.
        """
        query: Dict[str, Any] = dict(params or {})
        if shop_id:
            query["shop"] = shop_id
        query["page"] = page
        query["size"] = min(size, MAX_PAGE_SIZE) if size > 0 else MAX_PAGE_SIZE
        return self.executor.execute(
            "GET",
            path,
            params=query,
            shop_id=shop_id,
            decode=lambda payload: Page.from_json(payload, item),
            cancel=cancel,
        )

    def fetch_all(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        shop_id: Optional[int] = None,
        size: int = MAX_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        item: Optional[Callable[[Any], Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[List[Any], AggregationMetadata]:
        """Collect every item of a paginated endpoint, up to ``max_pages`` pages.

        Like :meth:`get` and :meth:`get_page`, this sends the ``shop``
        parameter only when ``shop_id`` is passed; ``default_shop_id``
        is applied by the resource helpers alone, since not every path
        accepts a shop.
        """
        return fetch_all_pages(
            self._page_fetcher(path, params, shop_id, size, item, cancel),
            max_pages,
            cancel=cancel,
        )

    def fetch_until(
        self,
        path: str,
        condition: Callable[[Sequence[Any]], bool],
        *,
        params: Optional[Mapping[str, Any]] = None,
        shop_id: Optional[int] = None,
        size: int = MAX_PAGE_SIZE,
        max_pages: int = DEFAULT_MAX_PAGES,
        item: Optional[Callable[[Any], Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Tuple[List[Any], AggregationMetadata]:
        """Collect items page by page until ``condition(items)`` is true.

        ``shop_id`` is handled as in :meth:`fetch_all`.
        """
        return fetch_until(
            self._page_fetcher(path, params, shop_id, size, item, cancel),
            condition,
            max_pages,
            cancel=cancel,
        )

    def _page_fetcher(
        self,
        path: str,
        params: Optional[Mapping[str, Any]],
        shop_id: Optional[int],
        size: int,
        item: Optional[Callable[[Any], Any]],
        cancel: Optional[threading.Event],
    ) -> Callable[[int], Page[Any]]:
        def fetch(page: int) -> Page[Any]:
            return self.get_page(
                path,
                page=page,
                size=size,
                params=params,
                shop_id=shop_id,
                item=item,
                cancel=cancel,
            )

        return fetch

    def _list(
        self,
        resource: str,
        shop_id: Optional[int],
        page: int,
        size: int,
        filters: Mapping[str, Any],
        cancel: Optional[threading.Event] = None,
    ) -> Page[Any]:
        checked = validate_filters(resource, filters)
        params = {
            _camel(name): _format_param(value)
            for name, value in checked.items()
            if value is not None
        }
        return self.get_page(
            f"{API_PREFIX}/{resource}",
            page=page,
            size=size,
            params=params,
            shop_id=self._resolve_shop(shop_id),
            cancel=cancel,
        )

    # ------------------------------------------------------------------
    # Shops
    # ------------------------------------------------------------------
    def get_shops(self, *, cancel: Optional[threading.Event] = None) -> List[Dict[str, Any]]:
        """Return every shop the current token can access."""
        return self.get(f"{API_PREFIX}/shops", cancel=cancel) or []

    def get_shop(self, shop_id: int, *, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/shops/{shop_id}", shop_id=shop_id, cancel=cancel)

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    def get_customers(
        self,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
        **filters: Any,
    ) -> Page[Any]:
        """List customers.

        Filters are passed as snake_case keywords and sent in the API's
        camelCase, e.g. ``updated_date_start=date(2024, 1, 1)``,
        ``ok_for_marketing=True``, ``customer_type_id=2``,
        ``sort="lastName"``, ``sort_direction="ASC"``.
        """
        return self._list("customers", shop_id, page, size, filters, cancel)

    def search_customers(
        self,
        query: str,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Page[Any]:
        """Search customers by name, email or phone."""
        return self.get_customers(shop_id, page, size, search=query, cancel=cancel)

    def get_customer(self, customer_id: int, *, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/customers/{customer_id}", cancel=cancel)

    # ------------------------------------------------------------------
    # Vehicles
    # ------------------------------------------------------------------
    def get_vehicles(
        self,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
        **filters: Any,
    ) -> Page[Any]:
        """List vehicles, optionally filtered by ``customer_id`` or ``search``."""
        return self._list("vehicles", shop_id, page, size, filters, cancel)

    def search_vehicles(
        self,
        query: str,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Page[Any]:
        return self.get_vehicles(shop_id, page, size, search=query, cancel=cancel)

    def get_vehicle(self, vehicle_id: int, *, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/vehicles/{vehicle_id}", cancel=cancel)

    # ------------------------------------------------------------------
    # Repair orders
    # ------------------------------------------------------------------
    def get_repair_orders(
        self,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        repair_order_status_id: Optional[Sequence[int]] = ACTIVE_REPAIR_ORDER_STATUSES,
        cancel: Optional[threading.Event] = None,
        **filters: Any,
    ) -> Page[Any]:
        """List repair orders.

        Deleted orders (status 7) are excluded unless
        ``repair_order_status_id`` is given explicitly; pass ``None`` to
        apply no status filter at all.
        """
        filters["repair_order_status_id"] = (
            list(repair_order_status_id) if repair_order_status_id is not None else None
        )
        return self._list("repair-orders", shop_id, page, size, filters, cancel)

    def get_repair_order(self, repair_order_id: int, *, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/repair-orders/{repair_order_id}", cancel=cancel)

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    def get_jobs(
        self,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
        **filters: Any,
    ) -> Page[Any]:
        """List jobs, e.g. by ``repair_order_id``, ``vehicle_id`` or ``authorized``."""
        return self._list("jobs", shop_id, page, size, filters, cancel)

    def get_job(self, job_id: int, *, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/jobs/{job_id}", cancel=cancel)

    def get_canned_jobs(
        self,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
    ) -> Page[Any]:
        return self._list("canned-jobs", shop_id, page, size, {}, cancel)

    # ------------------------------------------------------------------
    # Appointments
    # ------------------------------------------------------------------
    def get_appointments(
        self,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        include_deleted: bool = False,
        cancel: Optional[threading.Event] = None,
        **filters: Any,
    ) -> Page[Any]:
        """List appointments; deleted ones are left out unless asked for."""
        filters["include_deleted"] = include_deleted
        return self._list("appointments", shop_id, page, size, filters, cancel)

    def get_appointment(self, appointment_id: int, *, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/appointments/{appointment_id}", cancel=cancel)

    # ------------------------------------------------------------------
    # Employees
    # ------------------------------------------------------------------
    def get_employees(
        self,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
        **filters: Any,
    ) -> Page[Any]:
        return self._list("employees", shop_id, page, size, filters, cancel)

    def get_employee(self, employee_id: int, *, cancel: Optional[threading.Event] = None) -> Dict[str, Any]:
        return self.get(f"{API_PREFIX}/employees/{employee_id}", cancel=cancel)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------
    def get_inventory(
        self,
        part_type_id: int,
        shop_id: Optional[int] = None,
        page: int = 0,
        size: int = MAX_PAGE_SIZE,
        *,
        cancel: Optional[threading.Event] = None,
        **filters: Any,
    ) -> Page[Any]:
        """List inventory parts of one type (1=Part, 2=Tire, 5=Battery).

        The inventory endpoint requires a shop, so either ``shop_id`` or
        the client's default shop must be set.
        """
        shop = self._resolve_shop(shop_id)
        if not shop:
            raise ValueError("get_inventory requires a shop_id or a default_shop_id")
        filters["part_type_id"] = part_type_id
        return self._list("inventory", shop, page, size, filters, cancel)
