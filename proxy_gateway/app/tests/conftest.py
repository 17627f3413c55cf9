"""
Shared fixtures for gateway tests.

Upstream proxy nodes are replaced by an httpx.MockTransport so the real
forwarding path (httpx client, redirects, raw streaming) is exercised
without network access.
"""

from typing import Callable, List

import httpx
import pytest
from fastapi.testclient import TestClient

from proxy_gateway.app.config import Settings
from proxy_gateway.app.main import create_app


DEFAULT_SETTINGS = {
    "VALID_TOKENS": "abc",
    "PROXY_NODES": "http://u1",
    "ROTATION_MODE": "round_robin",
    "PROXY_RATE_LIMIT": 120,
    "ALLOWED_ORIGINS": "",
    "LOG_LEVEL": "INFO",
}


def streamed(response: httpx.Response) -> httpx.Response:
    """
    Re-wrap a mock response so it can be consumed with aiter_raw().

    httpx reads a Response built from `content=` eagerly, which leaves
    nothing for a streaming consumer. Responses that already carry a
    stream are returned untouched.
    """
    if not response.is_stream_consumed:
        return response
    return httpx.Response(
        response.status_code,
        headers=response.headers,
        stream=httpx.ByteStream(response.content),
        extensions=response.extensions,
    )


class UpstreamRecorder:
    """MockTransport handler that records every request it receives."""

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.handler: Callable[[httpx.Request], httpx.Response] = (
            lambda request: httpx.Response(200, text="upstream ok")
        )

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return streamed(self.handler(request))

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def upstream():
    return UpstreamRecorder()


@pytest.fixture
def make_settings():
    def _make(**overrides) -> Settings:
        values = dict(DEFAULT_SETTINGS)
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_client(upstream, make_settings):
    """Build a started TestClient; settings overrides go in as keyword args."""
    clients = []

    def _make(**overrides) -> TestClient:
        app = create_app(make_settings(**overrides), transport=httpx.MockTransport(upstream))
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    """Gateway with token 'abc', single node http://u1, round-robin."""
    return make_client()
