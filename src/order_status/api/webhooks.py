"""Webhook endpoint for the Riley automation.

Riley posts stage changes as the production team moves an order along. Its
payloads are loosely shaped, so field names are normalized here before the
update goes through the same write path as the admin dashboard.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from ..exceptions import ValidationError
from ..handlers.reconciler import OrderReconciler
from .orders import get_reconciler, parse_update_payload, render_update, update_fields

logger = logging.getLogger(__name__)

router = APIRouter()

FIELD_ALIASES = {
    "order_number": ("order_number", "orderNumber", "order", "order_name", "name"),
    "current_status": ("current_status", "currentStatus", "status", "stage"),
    "product_name": ("product_name", "productName", "product"),
    "project_id": ("project_id", "projectId", "project"),
    "revision_number": ("revision_number", "revisionNumber", "revision"),
}

# Flat URL fields Riley sends, mapped to the stage they link from
LINK_FIELDS = {
    "upload_url": "upload_photo",
    "delivery_url": "check_delivery",
    "revision_url": "check_revision",
}


def _normalize_stage(value: Any) -> Any:
    # "Check Delivery" / "check-delivery" -> "check_delivery"
    if isinstance(value, str):
        return "_".join(value.strip().lower().replace("-", " ").split())
    return value


def normalize_riley_payload(body: Dict[str, Any]) -> Dict[str, Any]:
    """Map Riley field aliases onto the update payload's field names."""
    if isinstance(body.get("data"), dict):
        body = {**body, **body["data"]}

    out: Dict[str, Any] = {}
    for field, aliases in FIELD_ALIASES.items():
        for alias in aliases:
            if body.get(alias) not in (None, ""):
                out[field] = body[alias]
                break

    if "current_status" in out:
        out["current_status"] = _normalize_stage(out["current_status"])
    if "order_number" in out:
        out["order_number"] = str(out["order_number"])

    links = dict(body["links"]) if isinstance(body.get("links"), dict) else {}
    for field, stage in LINK_FIELDS.items():
        if body.get(field):
            links[stage] = body[field]
    if links:
        out["links"] = links
    return out


@router.post("/riley")
async def riley_webhook(
    request: Request,
    reconciler: OrderReconciler = Depends(get_reconciler),
) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON", error="Invalid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object", error="Invalid JSON")

    logger.info("Riley webhook received for order %s", body.get("order_number") or body.get("order"))
    payload = parse_update_payload(normalize_riley_payload(body))
    result = await reconciler.update_order(payload.order_number, update_fields(payload))
    return render_update(result)
