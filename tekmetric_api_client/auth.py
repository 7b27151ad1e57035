"""
OAuth2 client credentials handling and shop-scope authorization.

:class:`TokenManager` owns the bearer token for one client instance and
refreshes it lazily: the expiry is checked right before each use rather
than on a timer.  Refreshes are serialized behind a lock so that many
threads noticing the same expired token trigger a single exchange.

:class:`AuthorizationGuard` rejects requests for shops outside the
token's scope before they reach the network.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, FrozenSet, Optional

import requests

from .config import ClientConfig
from .exceptions import AuthenticationError, UnauthorizedError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/api/v1/oauth/token"
USER_AGENT = "tekmetric-api-client"


@dataclass(frozen=True)
class AccessToken:
    """A bearer token with its absolute expiry and granted shop ids."""

    value: str = ""
    expires_at: float = 0.0
    scope: FrozenSet[str] = frozenset()

    def __repr__(self) -> str:
        return f"AccessToken(expires_at={self.expires_at!r}, scope={sorted(self.scope)!r})"

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TokenManager:
    """Keep a valid bearer token across an unbounded sequence of calls.

    Parameters
    ----------
    config : ClientConfig
        Supplies the base URL, credentials, timeout and fallback lifetime.
    session : requests.Session
        Session used for the token exchange.
    clock : callable, optional
        Returns the current time in epoch seconds.  Injected by tests.
    """

    def __init__(
        self,
        config: ClientConfig,
        session: requests.Session,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._config = config
        self._session = session
        self._clock = clock
        self._token: Optional[AccessToken] = None
        self._lock = threading.RLock()

    @property
    def token(self) -> Optional[AccessToken]:
        return self._token

    @property
    def scope(self) -> FrozenSet[str]:
        token = self._token
        return token.scope if token is not None else frozenset()

    def ensure_authenticated(self) -> AccessToken:
        """Return a token that has not expired, exchanging credentials if needed.

        When the held token is still valid this only takes the lock and
        compares timestamps.
        """
        with self._lock:
            token = self._token
            if token is None or token.is_expired(self._clock()):
                token = self.authenticate()
            return token

    def authenticate(self) -> AccessToken:
        """Exchange the client id and secret for a new access token.

        The request uses HTTP Basic auth and the ``client_credentials``
        grant.  The space-separated ``scope`` in the response becomes
        the set of authorized shop ids.  When the response omits
        ``expires_in``, the configured fallback lifetime is used.

        Raises
        ------
        AuthenticationError
            If the exchange fails for any reason.  The error is never
            retried here.
        """
        with self._lock:
            logger.info("authenticating with Tekmetric API")
            url = self._config.base_url.rstrip("/") + TOKEN_PATH
            try:
                response = self._session.post(
                    url,
                    data={"grant_type": "client_credentials"},
                    auth=(self._config.client_id, self._config.client_secret),
                    headers={
                        "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8",
                        "User-Agent": USER_AGENT,
                    },
                    timeout=self._config.timeout_seconds,
                )
            except requests.RequestException as exc:
                raise AuthenticationError(
                    f"failed to send auth request: {type(exc).__name__}"
                ) from exc

            if not response.ok:
                logger.debug(
                    "authentication failed: status=%s body=%s",
                    response.status_code,
                    (response.text or "")[:500],
                )
                raise AuthenticationError(
                    f"authentication failed with status {response.status_code}"
                )

            try:
                payload: Dict[str, Any] = response.json()
            except ValueError as exc:
                raise AuthenticationError("failed to decode token response") from exc
            if not isinstance(payload, dict) or not payload.get("access_token"):
                raise AuthenticationError(
                    "authentication response did not contain an access_token"
                )

            issued_at = self._clock()
            expires_in = payload.get("expires_in")
            if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool) and expires_in > 0:
                lifetime = float(expires_in)
                lifetime_label = expires_in
            else:
                lifetime = float(self._config.token_lifetime_fallback_seconds)
                lifetime_label = f"{lifetime:g}s (default)"

            scope = frozenset(str(payload.get("scope") or "").split())
            token = AccessToken(
                value=str(payload["access_token"]),
                expires_at=issued_at + lifetime,
                scope=scope,
            )
            self._token = token
            logger.info(
                "authentication successful: shop_count=%d expires_in=%s",
                len(scope),
                lifetime_label,
            )
            return token

    def invalidate(self) -> None:
        """Drop the held token so the next call re-authenticates."""
        with self._lock:
            self._token = None


class AuthorizationGuard:
    """Check requested shop ids against the current token scope."""

    def __init__(self, tokens: TokenManager) -> None:
        self._tokens = tokens

    def check_authorized(self, shop_id: Optional[int]) -> None:
        """Allow an unspecified shop (``0`` or ``None``) or one in scope.

        Raises
        ------
        UnauthorizedError
            If ``shop_id`` is not among the token's granted shop ids.
        """
        if not shop_id:
            return
        if str(shop_id) not in self._tokens.scope:
            raise UnauthorizedError(shop_id)
