"""Shared fixtures: a scripted HTTP session and canned responses."""

from __future__ import annotations

import io
import json
from typing import Any, List, Optional

import pytest
import requests

from tekmetric_api_client import TekmetricClient


def make_response(status: int = 200, payload: Any = None, *, body: Optional[bytes] = None) -> requests.Response:
    """Build a real ``requests.Response`` whose body streams from memory."""
    response = requests.Response()
    response.status_code = status
    if body is None:
        body = b"" if payload is None else json.dumps(payload).encode("utf-8")
    response.raw = io.BytesIO(body)
    response.headers["Content-Type"] = "application/json"
    return response


def token_response(scope: str = "2 3", expires_in: Any = 3600, access_token: str = "tok-123") -> requests.Response:
    payload = {"access_token": access_token, "token_type": "bearer", "scope": scope}
    if expires_in is not None:
        payload["expires_in"] = expires_in
    return make_response(200, payload)


def page_payload(items: List[Any], *, number: int = 0, last: bool = False) -> dict:
    return {
        "content": items,
        "totalPages": 0,
        "totalElements": 0,
        "last": last,
        "first": number == 0,
        "size": len(items),
        "number": number,
        "numberOfElements": len(items),
        "empty": not items,
    }


class FakeSession:
    """Replays scripted responses and records every call made."""

    def __init__(self) -> None:
        self.token_responses: List[Any] = []
        self.responses: List[Any] = []
        self.posts: List[dict] = []
        self.requests: List[dict] = []
        self.calls: List[str] = []
        self.closed = False

    def post(self, url, **kwargs):
        self.posts.append({"url": url, **kwargs})
        self.calls.append("post")
        outcome = self.token_responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def request(self, method, url, **kwargs):
        self.requests.append({"method": method, "url": url, **kwargs})
        self.calls.append("request")
        outcome = self.responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, clock, sleeps):
    session.token_responses.append(token_response())
    return TekmetricClient(
        client_id="id",
        client_secret="secret-value",
        base_url="https://sandbox.tekmetric.com",
        max_retries=3,
        max_backoff_seconds=5,
        rate_per_second=1000,
        burst=1000,
        session=session,
        clock=clock,
        sleep=sleeps.append,
    )
