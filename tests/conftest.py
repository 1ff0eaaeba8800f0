from __future__ import annotations

from contextlib import ExitStack
from typing import Callable, Iterator, Optional

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from main import create_app
from settings import Settings

SHOP = "test-shop.myshopify.com"
API_KEY = "test-api-key"
API_SECRET = "test-api-secret"
APP_URL = "https://inventory-proxy.example.com"
SEED_TOKEN = "shpat_seeded"
EXCHANGED_TOKEN = "shpat_exchanged"


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: float = 1_700_000_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeShopify:
    """Stands in for the shop's OAuth token endpoint and GraphQL Admin API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.token_response = httpx.Response(200, json={"access_token": EXCHANGED_TOKEN, "scope": "read_inventory"})
        self.graphql_responses: list[httpx.Response] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/admin/oauth/access_token":
            return self.token_response
        if request.url.path.endswith("/graphql.json"):
            if not self.graphql_responses:
                return httpx.Response(500, json={"errors": [{"message": "unexpected call"}]})
            return self.graphql_responses.pop(0)
        return httpx.Response(404)

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


def variant_response(item_id: Optional[str] = "gid://shopify/InventoryItem/9001") -> httpx.Response:
    item = {"id": item_id} if item_id else None
    return httpx.Response(
        200, json={"data": {"productVariant": {"id": "gid://shopify/ProductVariant/123", "inventoryItem": item}}}
    )


def levels_response(*levels: tuple[str, str, Optional[int]]) -> httpx.Response:
    edges = []
    for location_id, name, available in levels:
        quantities = [] if available is None else [{"name": "available", "quantity": available}]
        edges.append({"node": {"quantities": quantities, "location": {"id": location_id, "name": name}}})
    return httpx.Response(
        200,
        json={
            "data": {
                "inventoryItem": {"id": "gid://shopify/InventoryItem/9001", "inventoryLevels": {"edges": edges}}
            }
        },
    )


def make_settings(**overrides) -> Settings:
    values = dict(
        shop=SHOP,
        api_key=API_KEY,
        api_secret=API_SECRET,
        app_url=APP_URL,
        admin_token=SEED_TOKEN,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def shopify() -> FakeShopify:
    return FakeShopify()


@pytest.fixture
def make_app(clock: FakeClock, shopify: FakeShopify) -> Callable[..., FastAPI]:
    def _make(**overrides) -> FastAPI:
        http = httpx.AsyncClient(transport=httpx.MockTransport(shopify))
        return create_app(make_settings(**overrides), http_client=http, clock=clock)

    return _make


@pytest.fixture
def make_client(make_app) -> Iterator[Callable[..., TestClient]]:
    # Clients are entered as context managers so the app's lifespan runs like it does under uvicorn.
    with ExitStack() as stack:

        def _make(**overrides) -> TestClient:
            return stack.enter_context(TestClient(make_app(**overrides)))

        yield _make


@pytest.fixture
def client(make_client) -> TestClient:
    return make_client()
