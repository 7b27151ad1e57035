"""
Execution of a single logical API request.

:class:`RequestExecutor` runs the same pipeline for every call:

1. make sure a valid bearer token is held,
2. check the requested shop against the token scope,
3. take a slot from the shared rate limiter,
4. hand one HTTP attempt to the retryer, which repeats it on
   temporary failures.

Each attempt classifies its own failure where it happens: a 429 or 5xx
status, a timeout or a dropped connection becomes a
:class:`~tekmetric_api_client.exceptions.TemporaryError`; any other
status, or a success body that cannot be decoded, becomes a
:class:`~tekmetric_api_client.exceptions.PermanentError`.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional

import requests

from .auth import USER_AGENT, AuthorizationGuard, TokenManager
from .config import ClientConfig
from .exceptions import PermanentError, TekmetricAPIError, TemporaryError
from .ratelimit import RateLimiter
from .retry import Retryer

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


def classify_transport_error(exc: requests.RequestException) -> TekmetricAPIError:
    """Map a ``requests`` failure to a temporary or permanent error."""
    if isinstance(exc, (requests.Timeout, requests.ConnectionError, requests.exceptions.ChunkedEncodingError)):
        return TemporaryError(f"request failed: {type(exc).__name__}")
    return PermanentError(f"request failed: {type(exc).__name__}")


def classify_status(status_code: int) -> Optional[TekmetricAPIError]:
    """Return the error for a non-2xx status, or ``None`` on success."""
    if 200 <= status_code < 300:
        return None
    if status_code == 429 or status_code >= 500:
        return TemporaryError(
            f"temporary error with status {status_code}", status_code=status_code
        )
    return PermanentError(
        f"API request failed with status {status_code}", status_code=status_code
    )


class RequestExecutor:
    """Authenticate, authorize, rate-limit, retry and decode one request."""

    def __init__(
        self,
        config: ClientConfig,
        session: requests.Session,
        tokens: TokenManager,
        guard: AuthorizationGuard,
        limiter: RateLimiter,
        retryer: Retryer,
    ) -> None:
        self._config = config
        self._session = session
        self._tokens = tokens
        self._guard = guard
        self._limiter = limiter
        self._retryer = retryer

    def execute(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        body: Optional[Any] = None,
        shop_id: Optional[int] = None,
        decode: Optional[Callable[[Any], Any]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> Any:
        """Perform ``method path`` and return the decoded JSON body.

        Parameters
        ----------
        method : str
            HTTP verb.
        path : str
            Path relative to the configured base URL, e.g.
            ``/api/v1/customers``.
        params : mapping, optional
            Query parameters.  List values repeat the key.
        body : object, optional
            JSON-serialisable request body.
        shop_id : int, optional
            Shop the request targets; checked against the token scope.
        decode : callable, optional
            Converts the decoded JSON into the caller's target shape.
        cancel : threading.Event, optional
            Aborts the rate-limit wait or retry backoff when set.

        Raises
        ------
        AuthenticationError, UnauthorizedError, TemporaryError,
        PermanentError, RequestCancelled
        """
        self._tokens.ensure_authenticated()
        self._guard.check_authorized(shop_id)
        self._limiter.wait(cancel=cancel)
        return self._retryer.do(
            lambda: self._attempt(method.upper(), path, params, body, decode),
            cancel=cancel,
        )

    def _url(self, path: str) -> str:
        return f"{self._config.base_url.rstrip('/')}/{path.lstrip('/')}"

    def _attempt(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]],
        body: Optional[Any],
        decode: Optional[Callable[[Any], Any]],
    ) -> Any:
        token = self._tokens.ensure_authenticated()
        headers: Dict[str, str] = {
            "Authorization": f"Bearer {token.value}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        if body is not None:
            headers["Content-Type"] = "application/json"

        logger.debug("making API request: %s %s", method, path)
        try:
            response = self._session.request(
                method,
                self._url(path),
                params=params,
                json=body,
                headers=headers,
                timeout=self._config.timeout_seconds,
                stream=True,
            )
        except requests.RequestException as exc:
            raise classify_transport_error(exc) from exc

        status = response.status_code
        error = classify_status(status)
        try:
            raw = self._read_body(response, strict=error is None)
        except requests.RequestException as exc:
            raise classify_transport_error(exc) from exc
        finally:
            response.close()

        if error is not None:
            logger.debug(
                "API request failed: %s %s status=%s body=%s",
                method,
                path,
                status,
                raw[:500].decode("utf-8", errors="replace"),
            )
            if status == 401:
                self._tokens.invalidate()
            raise error

        return self._decode(raw, decode, status)

    def _read_body(self, response: requests.Response, *, strict: bool) -> bytes:
        """Read at most ``max_response_bytes`` of the body.

        With ``strict`` an oversized body is an error; otherwise it is
        truncated, which is enough for diagnostics on failed calls.
        """
        limit = self._config.max_response_bytes
        chunks = []
        size = 0
        for chunk in response.iter_content(chunk_size=_CHUNK_SIZE):
            if not chunk:
                continue
            size += len(chunk)
            if size > limit:
                if strict:
                    raise PermanentError(
                        f"response body exceeds {limit} bytes",
                        status_code=response.status_code,
                    )
                chunks.append(chunk[: len(chunk) - (size - limit)])
                break
            chunks.append(chunk)
        return b"".join(chunks)

    @staticmethod
    def _decode(raw: bytes, decode: Optional[Callable[[Any], Any]], status: int) -> Any:
        if not raw.strip():
            value = None
        else:
            try:
                value = json.loads(raw)
            except ValueError as exc:
                raise PermanentError("failed to decode response", status_code=status) from exc
        if decode is None:
            return value
        try:
            return decode(value)
        except (ValueError, KeyError, TypeError) as exc:
            raise PermanentError(
                f"unexpected response shape: {exc}", status_code=status
            ) from exc
