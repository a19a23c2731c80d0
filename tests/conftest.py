"""Shared fixtures: agent pools whose transports are httpx.MockTransport."""

from collections.abc import Callable

import httpx
import pytest

from requestagent import AgentPool, set_default_pool


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers if it was closed."""

    def __init__(self, handler, scheme: str = "http") -> None:
        super().__init__(handler)
        self.scheme = scheme
        self.closed = False

    async def aclose(self) -> None:
        self.closed = True


class Server:
    """Routes requests to canned responses and records every request seen."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []
        self.transports: list[RecordingTransport] = []

    def route(self, method: str, url: str, response) -> None:
        if isinstance(response, httpx.Response):
            self.routes[(method, url)] = lambda request: response
        else:
            self.routes[(method, url)] = response

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, str(request.url)))
        if handler is None:
            return httpx.Response(404)
        return handler(request)

    def factory(self, options, scheme, ca) -> RecordingTransport:
        transport = RecordingTransport(self.handle, scheme)
        self.transports.append(transport)
        return transport


@pytest.fixture
def server():
    """A fake remote server."""
    return Server()


@pytest.fixture
def pool(server):
    """An AgentPool whose transports all talk to the fake server."""
    return AgentPool(transport_factory=server.factory)


@pytest.fixture(autouse=True)
def isolated_default_pool():
    """Give every test a fresh process-wide pool."""
    set_default_pool(None)
    yield
    set_default_pool(None)
