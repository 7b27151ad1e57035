"""
Custom exception types for the Tekmetric API client.

These exceptions allow callers to distinguish between failures
occurring during authentication, authorization, individual API
requests and multi-page aggregations.  Request failures carry an
explicit ``temporary`` marker that is set once, where the HTTP status
or transport failure is first observed, and is never re-derived from
the message text.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .pagination import AggregationMetadata


class TekmetricError(Exception):
    """Base exception for all Tekmetric client errors."""


class AuthenticationError(TekmetricError):
    """Raised when the client credentials exchange fails.

    Credential problems do not fix themselves, so this error is never
    retried automatically.
    """


class UnauthorizedError(TekmetricError):
    """Raised when a shop id is not part of the access token's scope."""

    def __init__(self, shop_id: int) -> None:
        self.shop_id = shop_id
        super().__init__(f"unauthorized access to shop {shop_id}: not in token scope")


class RequestCancelled(TekmetricError):
    """Raised when the caller's cancellation signal fires mid-operation."""


class TekmetricAPIError(TekmetricError):
    """Raised when an HTTP request to the Tekmetric API fails.

    Attributes
    ----------
    temporary : bool
        ``True`` when retrying the same request may succeed.
    status_code : int or None
        The HTTP status code, when the failure came from a response.
    """

    temporary = False

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TemporaryError(TekmetricAPIError):
    """A retryable failure: HTTP 429, any 5xx, or a transport timeout."""

    temporary = True


class PermanentError(TekmetricAPIError):
    """A failure that retrying cannot fix (other 4xx, undecodable body)."""

    temporary = False


class AggregationError(TekmetricError):
    """Raised when a multi-page aggregation aborts part way through.

    The metadata describes the work completed before the failure so it
    can be reported, but the partial items themselves are discarded.
    """

    def __init__(
        self,
        stage: str,
        underlying: BaseException,
        metadata: "AggregationMetadata",
    ) -> None:
        self.stage = stage
        self.underlying = underlying
        self.metadata = metadata
        super().__init__(
            f"aggregation failed at {stage} stage: {underlying} "
            f"(fetched {metadata.records_fetched} records across "
            f"{metadata.pages_traversed} pages)"
        )


def is_temporary(exc: BaseException) -> bool:
    """Return whether ``exc`` carries the retryable marker."""
    return isinstance(exc, TekmetricAPIError) and exc.temporary
