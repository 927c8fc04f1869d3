import itertools
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest
from typer.testing import CliRunner

from cardwire.infrastructure.config import settings as settings_module
from cardwire.infrastructure.config.settings import ClientSettings
from cardwire.infrastructure.http.card_client import CardClient

BASE_URL = "https://cards.test/api/mcp"
BASE_PATH = "/api/mcp"

Responder = Callable[[httpx.Request], httpx.Response]


def reply(status: int = 200, json: Any = None, text: Optional[str] = None,
          headers: Optional[Dict[str, str]] = None) -> Responder:
    """A responder building a fresh response for every request it answers."""
    def respond(request: httpx.Request) -> httpx.Response:
        if text is not None:
            return httpx.Response(status, text=text, headers=headers)
        if json is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=json, headers=headers)
    return respond


def fail_with(exc_type: type, message: str = "boom") -> Responder:
    def respond(request: httpx.Request) -> httpx.Response:
        raise exc_type(message, request=request)
    return respond


class FakeClock:
    """Wall clock under test control."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCardServer:
    """Routes requests by (METHOD, path below the API base) to queued responders.

    Each route answers with its responders in order; the last one keeps
    answering once the queue is down to it. Every request is recorded.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Responder]] = {}
        self.requests: List[httpx.Request] = []
        self._tokens = itertools.count(1)

    def add(self, method: str, path: str, *responders: Responder) -> "FakeCardServer":
        self.routes.setdefault((method.upper(), path), []).extend(responders)
        return self

    def replace(self, method: str, path: str, *responders: Responder) -> "FakeCardServer":
        self.routes[(method.upper(), path)] = list(responders)
        return self

    def with_auth(self, expires_in: int = 3600, role: str = "user") -> "FakeCardServer":
        """Auth endpoint issuing tok-1, tok-2, ... on consecutive calls."""
        def issue(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={
                "token": f"tok-{next(self._tokens)}",
                "expires_in": expires_in,
                "role": role,
            })
        return self.replace("POST", "/auth", issue)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith(BASE_PATH):
            path = path[len(BASE_PATH):]
        queue = self.routes.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"error": "not_found", "message": f"No route for {request.method} {path}"})
        responder = queue.pop(0) if len(queue) > 1 else queue[0]
        return responder(request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        full = BASE_PATH + path
        return [r for r in self.requests if r.method == method.upper() and r.url.path == full]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Keeps the developer's environment and .env out of the tests."""
    for name in ("MCP_API_KEY", "MCP_USERNAME", "MCP_PASSWORD", "MCP_ROLE", "DECKO_API_BASE_URL",
                 "JWT_ISSUER", "JWKS_CACHE_TTL", "CARDWIRE_VERIFY_TOKENS", "CARDWIRE_MAX_RETRIES",
                 "CARDWIRE_PAGE_SIZE", "CARDWIRE_MAX_PAGES", "LOGGING_LEVEL", "LOGGING_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(settings_module, "_config", {})
    yield
    settings_module.clear_test_config()


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Collects the delays the retry service asked to sleep for."""
    return []


@pytest.fixture
def settings():
    return ClientSettings(base_url=BASE_URL, api_key="key-123", role="user").validate()


@pytest.fixture
def server():
    return FakeCardServer().with_auth()


@pytest.fixture
def events():
    return []


@pytest.fixture
def client(settings, server, clock, sleeps, events):
    card_client = CardClient.from_settings(
        settings,
        transport=server.transport,
        sleep=sleeps.append,
        clock=clock,
        event_sink=events.append,
    )
    yield card_client
    card_client.close()
