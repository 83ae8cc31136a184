"""Order status endpoints used by the storefront and the admin dashboard.

- ``GET /order-status?order=#1001`` returns the merged order view.
- ``POST /order-status`` applies a partial tracking update.
- ``GET /shopify-orders`` lists recent Shopify orders.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from ..handlers.reconciler import OrderReconciler
from ..schemas import (
    OrderStatusResponse,
    OrderStatusUpdate,
    OrderSummary,
    OrderView,
    ShopifyOrdersResponse,
    UpdateResult,
)

router = APIRouter()


def get_reconciler(request: Request) -> OrderReconciler:
    return request.app.state.reconciler


def parse_update_payload(body: Any) -> OrderStatusUpdate:
    """Validate a decoded JSON body into an update, as a 400 on failure."""
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", error="Invalid JSON")
    try:
        return OrderStatusUpdate.model_validate(body)
    except PydanticValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        raise ValidationError(details) from exc


def update_fields(payload: OrderStatusUpdate) -> Dict[str, Any]:
    return payload.model_dump(exclude_unset=True, exclude_none=True, exclude={"order_number"})


def render_update(result: UpdateResult) -> Dict[str, Any]:
    body = OrderStatusResponse(order=result.order, shopify_tag_added=result.shopify_tag_added).model_dump(mode="json")
    # The flag is only reported when the completion hook ran
    if result.shopify_tag_added is None:
        body.pop("shopify_tag_added")
    return body


@router.get("/order-status", response_model=OrderView)
async def get_order_status(
    order: str | None = None,
    reconciler: OrderReconciler = Depends(get_reconciler),
) -> OrderView:
    """Return the tracking view for one order, enriched with Shopify data when available."""
    if not order:
        raise ValidationError("Please provide order parameter", error="Order number is required")
    return await reconciler.get_order(order)


@router.post("/order-status")
async def update_order_status(
    request: Request,
    reconciler: OrderReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    """Apply a partial tracking update from the admin dashboard."""
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON", error="Invalid JSON")

    payload = parse_update_payload(body)
    result = await reconciler.update_order(payload.order_number, update_fields(payload))
    return render_update(result)


@router.get("/shopify-orders", response_model=ShopifyOrdersResponse)
async def list_shopify_orders(
    limit: int = Query(250, ge=1, le=250),
    include_status: bool = False,
    reconciler: OrderReconciler = Depends(get_reconciler),
) -> ShopifyOrdersResponse:
    """List recent Shopify orders; `include_status` adds each order's tracking stage."""
    orders: list[OrderSummary] = await reconciler.list_orders(limit, include_tracking=include_status)
    return ShopifyOrdersResponse(count=len(orders), orders=orders)
