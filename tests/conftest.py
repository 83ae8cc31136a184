import json
import re

import httpx
import pytest
from fastapi.testclient import TestClient

from order_status.config import Settings
from order_status.handlers.completion import CompletionTagger
from order_status.handlers.reconciler import OrderReconciler
from order_status.integrations.shopify import ShopifyClient
from order_status.integrations.store import MemoryStore
from order_status.main import create_app

SHOP = "test-shop.myshopify.com"


def shopify_order(order_id, name, tags="", **extra):
    order = {
        "id": order_id,
        "admin_graphql_api_id": f"gid://shopify/Order/{order_id}",
        "name": name,
        "order_number": int(name.lstrip("#")),
        "email": "jane@example.com",
        "financial_status": "paid",
        "fulfillment_status": None,
        "total_price": "49.00",
        "currency": "USD",
        "created_at": "2024-05-01T10:00:00-04:00",
        "updated_at": "2024-05-01T10:00:00-04:00",
        "customer": {"first_name": "Jane", "last_name": "Doe", "email": "jane@example.com"},
        "line_items": [{"title": "Virtual Staging - 3 Photos", "variant_title": None, "quantity": 1, "price": "49.00"}],
        "tags": tags,
    }
    order.update(extra)
    return order


class FakeShopify:
    """In-memory stand-in for the Shopify Admin REST endpoints we call."""

    def __init__(self):
        self.orders = {}
        self.requests = []
        self.fail = False

    def add(self, order):
        self.orders[order["id"]] = order
        return order

    def tags_of(self, order_id):
        return [t.strip() for t in self.orders[order_id]["tags"].split(",") if t.strip()]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail:
            return httpx.Response(503, text="Service Unavailable")

        path = request.url.path
        if request.method == "GET" and path.endswith("/orders.json"):
            orders = list(self.orders.values())
            name = request.url.params.get("name")
            if name is not None:
                orders = [o for o in orders if o["name"] == name]
            else:
                orders = orders[: int(request.url.params.get("limit", 250))]
            return httpx.Response(200, json={"orders": orders})

        match = re.search(r"/orders/(\d+)\.json$", path)
        if request.method == "PUT" and match:
            order_id = int(match.group(1))
            body = json.loads(request.content)
            self.orders[order_id]["tags"] = body["order"]["tags"]
            return httpx.Response(200, json={"order": self.orders[order_id]})

        return httpx.Response(404, json={"errors": "Not Found"})


@pytest.fixture
def fake_shopify():
    return FakeShopify()


@pytest.fixture
def shopify(fake_shopify):
    return ShopifyClient(SHOP, "shpat_test", transport=httpx.MockTransport(fake_shopify.handler))


@pytest.fixture
def unconfigured_shopify(fake_shopify):
    return ShopifyClient(None, None, transport=httpx.MockTransport(fake_shopify.handler))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        shopify_store=SHOP,
        shopify_access_token="shpat_test",
        store_url="memory://",
    )


@pytest.fixture
def make_reconciler(store, shopify, test_settings):
    def _make(**overrides):
        shopify_client = overrides.pop("shopify", shopify)
        options = {
            "url_templates": test_settings.url_templates(),
            "auto_create": True,
            "validate_status": True,
            "on_complete": CompletionTagger(shopify, test_settings.shopify_completion_tag),
        }
        options.update(overrides)
        return OrderReconciler(store, shopify_client, **options)

    return _make


@pytest.fixture
def reconciler(make_reconciler):
    return make_reconciler()


@pytest.fixture
def make_client(store, shopify, test_settings):
    clients = []

    def _make(shopify_client=None, **setting_overrides):
        app_settings = test_settings.model_copy(update=setting_overrides)
        app = create_app(app_settings, store=store, shopify=shopify_client or shopify)
        client = TestClient(app, raise_server_exceptions=False)
        client.__enter__()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def client(make_client):
    return make_client()
