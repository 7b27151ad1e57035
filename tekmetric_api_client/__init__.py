"""
Python client for the Tekmetric shop management REST API.

This package provides a `TekmetricClient` class that handles OAuth2
client-credentials authentication, shop-scope authorization, a shared
outbound rate limit, and retries of transient failures with
exponential backoff and jitter.  Paginated endpoints can be traversed
with bounded page counts under two stopping policies: fetch everything,
or fetch until a condition holds.

Examples
--------

```python
from tekmetric_api_client import TekmetricClient, collected_at_least

client = TekmetricClient(
    client_id="YOUR_CLIENT_ID",
    client_secret="YOUR_CLIENT_SECRET",
    environment="sandbox",  # or "production"
)

# One page of vehicles for shop 2
page = client.get_vehicles(shop_id=2, search="civic")

# The 50 most recent repair orders, reading no more pages than needed
orders, meta = client.fetch_until(
    "/api/v1/repair-orders",
    collected_at_least(50),
    shop_id=2,
    params={"sort": "createdDate", "sortDirection": "DESC"},
    max_pages=10,
)
```

Errors
------
Every failure is raised as a subclass of `TekmetricError`:
`AuthenticationError` for a failed token exchange, `UnauthorizedError`
for a shop outside the token scope, `TemporaryError` / `PermanentError`
for request failures, `AggregationError` when a multi-page fetch aborts,
and `RequestCancelled` when the caller's cancellation event fires.
"""

from .auth import AccessToken, AuthorizationGuard, TokenManager
from .client import TekmetricClient
from .compact import compact
from .config import ClientConfig
from .exceptions import (
    AggregationError,
    AuthenticationError,
    PermanentError,
    RequestCancelled,
    TekmetricAPIError,
    TekmetricError,
    TemporaryError,
    UnauthorizedError,
)
from .executor import RequestExecutor
from .pagination import (
    AggregationMetadata,
    Page,
    collected_at_least,
    fetch_all_pages,
    fetch_until,
)
from .ratelimit import RateLimiter
from .retry import Attempt, Retryer, RetryPolicy, compute_backoff

__all__ = [
    "TekmetricClient",
    "ClientConfig",
    "AccessToken",
    "TokenManager",
    "AuthorizationGuard",
    "RateLimiter",
    "Retryer",
    "RetryPolicy",
    "Attempt",
    "compute_backoff",
    "RequestExecutor",
    "Page",
    "AggregationMetadata",
    "fetch_all_pages",
    "fetch_until",
    "collected_at_least",
    "compact",
    "TekmetricError",
    "AuthenticationError",
    "UnauthorizedError",
    "TekmetricAPIError",
    "TemporaryError",
    "PermanentError",
    "AggregationError",
    "RequestCancelled",
]
