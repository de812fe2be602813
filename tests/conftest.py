"""Shared pytest fixtures: in-memory storage and a stubbed upstream API."""
from __future__ import annotations

import json
import os
from decimal import Decimal
from typing import Callable, Optional, Union

os.environ.setdefault("STORAGE_BACKEND", "memory")

import httpx
import pytest

from storefront.api_client import LiveDataNowClient
from storefront.auth_session import AuthSessionManager
from storefront.cart_engine import CartEngine
from storefront.models import CartItem, CartModifier
from storefront.storage import AUTH_TOKEN_KEY, USER_KEY, InMemoryStore

UPSTREAM_BASE = "https://upstream.test/api/online-order"
UPSTREAM_PATH = "/api/online-order"

Handler = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class UpstreamStub:
    """httpx.MockTransport handler answering from a (method, path) table"""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, handler: Handler) -> None:
        if not path.startswith("/v2/") and not path.startswith(UPSTREAM_PATH):
            path = f"{UPSTREAM_PATH}{path}"
        self.routes[(method, path)] = handler

    def json(self, method: str, path: str, body, status: int = 200) -> None:
        self.add(method, path, httpx.Response(status, json=body))

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        if not path.startswith(UPSTREAM_PATH) and not path.startswith("/v2/"):
            path = f"{UPSTREAM_PATH}{path}"
        return [r for r in self.requests if r.method == method and r.url.path == path]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": f"not stubbed: {request.url.path}"})
        if isinstance(handler, Exception):
            raise handler
        if isinstance(handler, httpx.Response):
            # fresh copy per call, a response can only be consumed once
            return httpx.Response(handler.status_code, headers=handler.headers, content=handler.content)
        return handler(request)


def make_item(
    product_id: str = "P1",
    quantity: int = 1,
    sub_total: str = "10",
    tax: str = "0.832",
    price: Optional[str] = None,
    modifiers: tuple = (),
    discount: str = "0",
) -> CartItem:
    return CartItem(
        product_id=product_id,
        name=f"Product {product_id}",
        price=Decimal(price) if price is not None else Decimal(sub_total) / quantity,
        quantity=quantity,
        modifiers=[
            CartModifier(modifier_id=m, name=f"Modifier {m}", price=Decimal("1"))
            for m in modifiers
        ],
        sub_total=Decimal(sub_total),
        tax=Decimal(tax),
        discount=Decimal(discount),
    )


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def engine(store) -> CartEngine:
    return CartEngine(store, normalize_modifier_order=False)


@pytest.fixture
def upstream() -> UpstreamStub:
    return UpstreamStub()


@pytest.fixture
def http_client(upstream) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(upstream))


@pytest.fixture
def api_client(store, http_client) -> LiveDataNowClient:
    return LiveDataNowClient(store=store, base_url=UPSTREAM_BASE, http_client=http_client)


@pytest.fixture
def auth(store, api_client) -> AuthSessionManager:
    return AuthSessionManager(store, api_client, otp_enabled=True)


@pytest.fixture
def logged_in(store):
    """Puts a token and a complete profile in the store"""
    def _login(phone: Optional[str] = "+15550100", user_id: str = "U1") -> None:
        store.set(AUTH_TOKEN_KEY, "tok-123")
        profile = {"_id": user_id}
        if phone is not None:
            profile["phone"] = phone
        store.set(USER_KEY, json.dumps(profile))
    return _login


@pytest.fixture
def make_auth(store, api_client):
    """Builds a session manager over whatever the store holds at call time"""
    def _make(otp_enabled: bool = True) -> AuthSessionManager:
        return AuthSessionManager(store, api_client, otp_enabled=otp_enabled)
    return _make


@pytest.fixture
def app_backend() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def app_client(http_client, app_backend, monkeypatch):
    """TestClient over the app with in-memory storage and the stubbed upstream"""
    from fastapi.testclient import TestClient

    from storefront import main
    from storefront.config import Config
    from storefront.proxy import get_http_client

    monkeypatch.setattr(Config, "UPSTREAM_BASE_URL", UPSTREAM_BASE)
    main.app.dependency_overrides[get_http_client] = lambda: http_client
    main.app.dependency_overrides[main.get_storage_backend] = lambda: app_backend
    try:
        yield TestClient(main.app)
    finally:
        main.app.dependency_overrides.clear()
