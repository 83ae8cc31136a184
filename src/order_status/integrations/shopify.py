"""Shopify Admin REST adapter.

Fetches orders by name, lists recent orders and rewrites order tags.
Configuration comes from `SHOPIFY_STORE` and `SHOPIFY_ACCESS_TOKEN`.

Every public method is tolerant of missing configuration and upstream
failure: lookups return None or an empty list, tag updates return False.
"""
from typing import Any, Dict, List, Optional
import logging

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import UpstreamUnavailable
from ..schemas import Customer, ExternalOrder, LineItem

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 250


class ShopifyClient:
    def __init__(
        self,
        store_domain: Optional[str],
        access_token: Optional[str],
        api_version: str = "2024-01",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store_domain = (store_domain or "").strip()
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        # Tests pass an httpx.MockTransport here
        self._transport = transport

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "ShopifyClient":
        return cls(
            settings.shopify_store,
            settings.shopify_access_token,
            api_version=settings.shopify_api_version,
            timeout=settings.shopify_timeout,
            transport=transport,
        )

    def _configured(self) -> bool:
        return bool(self.store_domain and self.access_token)

    @property
    def _base(self) -> str:
        domain = self.store_domain
        if not domain.startswith("http"):
            domain = f"https://{domain}"
        return f"{domain.rstrip('/')}/admin/api/{self.api_version}"

    def _client(self) -> httpx.AsyncClient:
        headers = {"X-Shopify-Access-Token": self.access_token or "", "Content-Type": "application/json"}
        return httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self._transport)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        """Issue one Admin API call; any failure becomes UpstreamUnavailable."""
        if not self._configured():
            raise UpstreamUnavailable("Shopify is not configured")

        async with self._client() as client:
            try:
                resp = await client.request(method, f"{self._base}{path}", **kwargs)
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise UpstreamUnavailable(f"Shopify request failed: {exc}") from exc

        if resp.status_code != 200:
            raise UpstreamUnavailable(f"Shopify API error: {resp.status_code} - {resp.text}")
        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamUnavailable(f"Shopify returned invalid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise UpstreamUnavailable(f"Shopify returned {type(data).__name__}, expected an object")
        return data

    async def fetch_order_by_number(self, order_number: str) -> Optional[ExternalOrder]:
        """Look up an order by its display name (e.g. ``#1001``)."""
        try:
            data = await self._request("GET", "/orders.json", params={"status": "any", "name": order_number})
        except UpstreamUnavailable as exc:
            logger.warning("Order lookup for %s skipped: %s", order_number, exc)
            return None

        orders = _order_list(data)
        if not orders:
            logger.info("Shopify has no order named %s", order_number)
            return None
        return _parse_order(orders[0])

    async def fetch_all_orders(self, limit: int = MAX_PAGE_SIZE) -> List[ExternalOrder]:
        limit = max(1, min(int(limit), MAX_PAGE_SIZE))
        try:
            data = await self._request("GET", "/orders.json", params={"status": "any", "limit": limit})
        except UpstreamUnavailable as exc:
            logger.warning("Order listing unavailable: %s", exc)
            return []
        parsed = (_parse_order(order) for order in _order_list(data))
        return [order for order in parsed if order is not None]

    async def update_tags(self, external_id: int, tags: List[str]) -> bool:
        """Replace the tag list on an order. Returns True on success."""
        payload = {"order": {"id": external_id, "tags": ", ".join(tags)}}
        try:
            await self._request("PUT", f"/orders/{external_id}.json", json=payload)
        except UpstreamUnavailable as exc:
            logger.warning("Tag update for order %s failed: %s", external_id, exc)
            return False
        return True


def parse_tags(value: Any) -> List[str]:
    """Shopify REST sends tags as one comma-separated string."""
    if not value:
        return []
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    return [t.strip() for t in str(value).split(",") if t.strip()]


def _order_list(data: Dict[str, Any]) -> List[Any]:
    orders = data.get("orders")
    if not isinstance(orders, list):
        if orders is not None:
            logger.warning("Shopify 'orders' is %s, expected a list", type(orders).__name__)
        return []
    return orders


def _parse_order(raw: Any) -> Optional[ExternalOrder]:
    """`_extract_fields`, or None when the payload is not a usable order."""
    if not isinstance(raw, dict):
        logger.warning("Skipping malformed Shopify order: %r", raw)
        return None
    try:
        return _extract_fields(raw)
    except (PydanticValidationError, AttributeError, TypeError) as exc:
        logger.warning("Skipping malformed Shopify order %s: %s", raw.get("id"), exc)
        return None


def _extract_fields(order: Dict) -> ExternalOrder:
    """Map a raw Shopify order to the fields this service uses."""
    customer = order.get("customer") or {}
    name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()

    return ExternalOrder(
        id=order.get("id"),
        admin_graphql_api_id=order.get("admin_graphql_api_id"),
        name=order.get("name"),
        order_number=order.get("order_number"),
        email=order.get("email"),
        financial_status=order.get("financial_status"),
        fulfillment_status=order.get("fulfillment_status"),
        total_price=order.get("total_price"),
        currency=order.get("currency"),
        created_at=order.get("created_at"),
        updated_at=order.get("updated_at"),
        customer=Customer(name=name, email=customer.get("email") or order.get("email") or ""),
        line_items=[
            LineItem(
                title=item.get("title"),
                variant_title=item.get("variant_title"),
                quantity=item.get("quantity") or 0,
                price=item.get("price"),
            )
            for item in order.get("line_items") or []
        ],
        tags=parse_tags(order.get("tags")),
    )
