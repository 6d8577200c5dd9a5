"""Shared test doubles for the QuickBooks MCP tests."""

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from quickbooks_mcp.auth import TokenStore
from quickbooks_mcp.client import QuickBooksClient
from quickbooks_mcp.models import AuthorizationSession, CredentialSet, TokenGrant


class MemoryTokenStore(TokenStore):
    """Token store keeping saved pairs in a list."""

    def __init__(self, refresh_token: str | None = None, realm_id: str | None = None) -> None:
        self.stored = (refresh_token, realm_id)
        self.saved: list[tuple[str, str]] = []

    async def load(self) -> tuple[str | None, str | None]:
        return self.stored

    async def save(self, refresh_token: str, realm_id: str) -> None:
        self.saved.append((refresh_token, realm_id))
        self.stored = (refresh_token, realm_id)


class BrokenTokenStore(MemoryTokenStore):
    """Token store whose writes always fail."""

    async def save(self, refresh_token: str, realm_id: str) -> None:
        raise OSError("disk full")


class StubExchanger:
    """Token endpoint double counting its calls."""

    def __init__(
        self,
        refresh_grant: TokenGrant | None = None,
        code_grant: TokenGrant | None = None,
        refresh_error: Exception | None = None,
        exchange_error: Exception | None = None,
    ) -> None:
        self.refresh_grant = refresh_grant or TokenGrant("refreshed-access", None, 3600)
        self.code_grant = code_grant or TokenGrant("new-access", "new-refresh", 3600)
        self.refresh_error = refresh_error
        self.exchange_error = exchange_error
        self.refresh_calls: list[str] = []
        self.exchange_calls: list[str] = []

    async def refresh(self, refresh_token: str) -> TokenGrant:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return self.refresh_grant

    async def exchange_code(self, code: str) -> TokenGrant:
        self.exchange_calls.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return self.code_grant


class StubListener:
    """Callback listener double that delivers a callback when started."""

    def __init__(self, session: AuthorizationSession, callback: dict[str, Any] | None) -> None:
        self.session = session
        self.callback = callback
        self.started = False
        self.stopped = False

    def start(self) -> None:
        self.started = True
        if self.callback is not None:
            params = dict(self.callback)
            params.setdefault("state", self.session.state)
            self.session.deliver(**params)

    def shutdown(self) -> None:
        self.stopped = True


class ListenerFactory:
    """Creates StubListeners and remembers them."""

    def __init__(self, callback: dict[str, Any] | None = None) -> None:
        self.callback = callback
        self.listeners: list[StubListener] = []

    def __call__(self, session: AuthorizationSession, redirect_uri: str) -> StubListener:
        listener = StubListener(session, self.callback)
        self.listeners.append(listener)
        return listener


class FakeTokenManager:
    """Serves a fixed bearer token, or raises a configured error."""

    def __init__(self, error: Exception | None = None) -> None:
        self.credentials = CredentialSet(
            client_id="client",
            client_secret="secret",
            refresh_token="refresh",
            realm_id="123",
        )
        self.error = error
        self.calls = 0

    async def ensure_token(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return "access-token"


class FakeBackend:
    """Records API requests and answers them from a route table.

    Routes map ``"METHOD /path"`` (path below the company URL) to either a
    JSON body or a callable taking the request and returning a Response.
    """

    def __init__(self) -> None:
        self.routes: dict[str, Any] = {}
        self.requests: list[httpx.Request] = []

    def route(self, key: str, response: Any) -> None:
        self.routes[key] = response

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.split("/v3/company/123", 1)[-1]
        answer = self.routes.get(f"{request.method} {path}")
        if answer is None:
            return httpx.Response(404, json={"Fault": {"Error": [{"Message": "Object Not Found", "code": "610"}]}})
        if callable(answer):
            return answer(request)
        return httpx.Response(200, json=answer)

    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.content]

    def client_factory(self) -> Callable[[str, str, str], QuickBooksClient]:
        transport = httpx.MockTransport(self.handler)

        def factory(access_token: str, realm_id: str, environment: str) -> QuickBooksClient:
            return QuickBooksClient(access_token, realm_id, environment, transport=transport)

        return factory


@pytest.fixture
def credentials() -> CredentialSet:
    return CredentialSet(
        client_id="client",
        client_secret="secret",
        refresh_token="refresh",
        realm_id="123",
    )


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def token_manager() -> FakeTokenManager:
    return FakeTokenManager()
