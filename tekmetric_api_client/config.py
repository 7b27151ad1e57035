"""
Immutable configuration for :class:`~tekmetric_api_client.TekmetricClient`.

A :class:`ClientConfig` is built once, validated, and then shared
read-only by every component of the client.  It can be created
directly, from keyword arguments on the client, or from ``TEKMETRIC_*``
environment variables via :meth:`ClientConfig.from_env`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional
from urllib.parse import urlparse

SANDBOX_BASE_URL = "https://sandbox.tekmetric.com"
PRODUCTION_BASE_URL = "https://shop.tekmetric.com"

DEFAULT_TIMEOUT_SECONDS = 30
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_BACKOFF_SECONDS = 60
DEFAULT_RATE_PER_SECOND = 10.0
DEFAULT_BURST = 10
DEFAULT_MAX_RESPONSE_BYTES = 10 * 1024 * 1024
DEFAULT_TOKEN_LIFETIME_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class ClientConfig:
    """Settings consumed by the client at construction time.

    Parameters
    ----------
    base_url : str
        API root, e.g. ``https://sandbox.tekmetric.com``.
    client_id, client_secret : str
        OAuth2 client credentials.  The secret is excluded from ``repr``.
    default_shop_id : int, optional
        Shop used by shop-scoped helpers when none is given.  ``0``
        means unspecified.
    timeout_seconds : float, optional
        Per-request HTTP timeout.
    max_retries : int, optional
        Retries after the first attempt for temporary failures.
    max_backoff_seconds : float, optional
        Upper bound on any single retry delay.
    rate_per_second, burst : optional
        Sustained rate and burst capacity of the shared token bucket.
    max_response_bytes : int, optional
        Hard cap on the size of a response body.
    token_lifetime_fallback_seconds : float, optional
        Token lifetime assumed when the server omits ``expires_in``.
    """

    base_url: str
    client_id: str
    client_secret: str = field(repr=False)
    default_shop_id: int = 0
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    max_retries: int = DEFAULT_MAX_RETRIES
    max_backoff_seconds: float = DEFAULT_MAX_BACKOFF_SECONDS
    rate_per_second: float = DEFAULT_RATE_PER_SECOND
    burst: int = DEFAULT_BURST
    max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES
    token_lifetime_fallback_seconds: float = DEFAULT_TOKEN_LIFETIME_SECONDS

    def validate(self) -> "ClientConfig":
        """Check the settings for consistency and return ``self``.

        Raises
        ------
        ValueError
            If a required value is missing or a value is out of range.
        """
        if not self.client_id:
            raise ValueError("client_id must be provided")
        if not self.client_secret:
            raise ValueError("client_secret must be provided")
        if not self.base_url:
            raise ValueError("base_url must be provided")

        parsed = urlparse(self.base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("base_url must include scheme (https://) and host")
        if parsed.scheme != "https":
            host = parsed.netloc.lower()
            is_sandbox = "sandbox" in host
            is_local = "localhost" in host or host.startswith("127.0.0.1")
            if not (is_sandbox or is_local):
                raise ValueError("base_url must use HTTPS for production environments")

        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        if self.max_retries < 0:
            raise ValueError("max_retries must be non-negative")
        if self.max_backoff_seconds <= 0:
            raise ValueError("max_backoff_seconds must be positive")
        if self.rate_per_second <= 0:
            raise ValueError("rate_per_second must be positive")
        if self.burst < 1:
            raise ValueError("burst must be at least 1")
        if self.max_response_bytes < 1:
            raise ValueError("max_response_bytes must be positive")
        if self.token_lifetime_fallback_seconds <= 0:
            raise ValueError("token_lifetime_fallback_seconds must be positive")
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        """Build and validate a config from ``TEKMETRIC_*`` variables."""
        env = os.environ if environ is None else environ
        config = cls(
            base_url=env.get("TEKMETRIC_BASE_URL") or SANDBOX_BASE_URL,
            client_id=env.get("TEKMETRIC_CLIENT_ID", ""),
            client_secret=env.get("TEKMETRIC_CLIENT_SECRET", ""),
            default_shop_id=_env_int(env, "TEKMETRIC_DEFAULT_SHOP_ID", 0),
            timeout_seconds=_env_int(env, "TEKMETRIC_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS),
            max_retries=_env_int(env, "TEKMETRIC_MAX_RETRIES", DEFAULT_MAX_RETRIES),
            max_backoff_seconds=_env_int(
                env, "TEKMETRIC_MAX_BACKOFF_SEC", DEFAULT_MAX_BACKOFF_SECONDS
            ),
        )
        return config.validate()


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
