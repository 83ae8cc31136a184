"""Order reconciliation: tracking records merged with Shopify order data.

Reads load the tracking record for an order, enrich it with the Shopify order
when one can be fetched and derive the step list. Writes merge the supplied
fields into the record, persist it, run the completion hook when the order
reaches the terminal stage and return the freshly merged view.

Order numbers are normalized the same way on both paths: percent-decoded,
stripped of whitespace and of any leading ``#``. The stripped form is the
storage key; the display form re-adds a single ``#``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Mapping, Optional
from urllib.parse import unquote

from ..exceptions import InternalError, NotFoundError, UpstreamUnavailable, ValidationError
from ..integrations.shopify import ShopifyClient
from ..integrations.store import KeyValueStore
from ..schemas import (
    STAGE_VALUES,
    ExternalOrder,
    OrderSummary,
    OrderView,
    Stage,
    TrackingRecord,
    UpdateResult,
    utc_now,
)
from .steps import CLICKABLE_STAGES, bind_stage_urls, derive_steps, is_valid_stage

logger = logging.getLogger(__name__)

# Fields a write may change; everything else on the record is server-managed
MERGE_FIELDS = ("current_status", "product_name", "project_id", "revision_number", "links")

CompletionHook = Callable[[str], Awaitable[bool]]


def normalize_order_number(raw: Any) -> str:
    if raw is None:
        return ""
    return unquote(str(raw)).strip().lstrip("#").strip()


def display_order_number(key: str) -> str:
    return f"#{key}"


def merge_tracking_fields(record: TrackingRecord, fields: Mapping[str, Any]) -> TrackingRecord:
    """Return `record` with the supplied fields applied.

    Fields that are absent or None keep their current value. `links` is
    merged per stage rather than replaced.
    """
    updates = {}
    for name in MERGE_FIELDS:
        value = fields.get(name)
        if value is None:
            continue
        updates[name] = getattr(value, "value", value)

    if "links" in updates:
        updates["links"] = {**record.links, **updates["links"]}
    updates["updated_at"] = utc_now()
    return record.model_copy(update=updates)


class OrderReconciler:
    def __init__(
        self,
        store: KeyValueStore,
        shopify: ShopifyClient,
        *,
        url_templates: Mapping[str, str],
        auto_create: bool = True,
        validate_status: bool = True,
        on_complete: Optional[CompletionHook] = None,
    ):
        self.store = store
        self.shopify = shopify
        self.url_templates = dict(url_templates)
        self.auto_create = auto_create
        self.validate_status = validate_status
        self.on_complete = on_complete

    # ---------- Read path ----------
    async def get_order(self, order_number: Any) -> OrderView:
        key = normalize_order_number(order_number)
        if not key:
            raise ValidationError("Please provide order parameter", error="Order number is required")

        store_available = True
        try:
            data = await self.store.get(key)
        except UpstreamUnavailable as exc:
            logger.warning("Tracking record for %s unavailable: %s", key, exc)
            data, store_available = None, False

        if data is not None:
            record = TrackingRecord.model_validate(data)
        elif not self.auto_create:
            raise NotFoundError(f"No tracking record for order {display_order_number(key)}")
        elif store_available:
            record = await self._auto_create(key)
        else:
            # Never write a record we merely failed to read
            record = TrackingRecord()

        external = await self.shopify.fetch_order_by_number(display_order_number(key))
        return self._merge(key, record, external)

    async def _auto_create(self, key: str) -> TrackingRecord:
        """Insert a default record unless a concurrent write created one first."""
        record = TrackingRecord()
        try:
            created = await self.store.add(key, record.model_dump(mode="json"))
        except UpstreamUnavailable as exc:
            logger.warning("Could not persist default record for %s: %s", key, exc)
            return record

        if created:
            logger.info("Created tracking record for %s", display_order_number(key))
            return record

        try:
            data = await self.store.get(key)
        except UpstreamUnavailable as exc:
            logger.warning("Tracking record for %s unavailable: %s", key, exc)
            return record
        return TrackingRecord.model_validate(data) if data is not None else record

    # ---------- Write path ----------
    async def update_order(self, order_number: Any, partial_fields: Mapping[str, Any]) -> UpdateResult:
        key = normalize_order_number(order_number)
        if not key:
            raise ValidationError("order_number is required", error="Missing required fields")
        self._validate(partial_fields)

        try:
            data = await self.store.get(key)
        except UpstreamUnavailable as exc:
            raise InternalError(str(exc)) from exc
        record = TrackingRecord.model_validate(data) if data is not None else TrackingRecord()

        merged = merge_tracking_fields(record, partial_fields)
        try:
            await self.store.set(key, merged.model_dump(mode="json"))
        except UpstreamUnavailable as exc:
            raise InternalError(str(exc)) from exc

        display = display_order_number(key)
        logger.info(
            "Order %s updated (%s), status=%s",
            display,
            ", ".join(n for n in MERGE_FIELDS if partial_fields.get(n) is not None) or "no fields",
            merged.current_status,
        )

        tag_added = None
        if merged.current_status == Stage.ORDER_COMPLETE.value and self.on_complete is not None:
            tag_added = await self._run_completion_hook(display)

        external = await self.shopify.fetch_order_by_number(display)
        return UpdateResult(order=self._merge(key, merged, external), shopify_tag_added=tag_added)

    def _validate(self, fields: Mapping[str, Any]) -> None:
        status = fields.get("current_status")
        if status is not None and self.validate_status and not is_valid_stage(status):
            raise ValidationError(
                f"Status must be one of: {', '.join(STAGE_VALUES)}",
                error="Invalid status",
            )

        revision = fields.get("revision_number")
        if revision is not None and (isinstance(revision, bool) or not isinstance(revision, int) or revision < 1):
            raise ValidationError("revision_number must be a positive integer", error="Invalid revision")

        links = fields.get("links")
        if links is not None:
            allowed = {stage.value for stage in CLICKABLE_STAGES}
            unknown = sorted(set(links) - allowed)
            if unknown:
                raise ValidationError(
                    f"links may only name {', '.join(sorted(allowed))}; got {', '.join(unknown)}",
                    error="Invalid links",
                )

    async def _run_completion_hook(self, display: str) -> bool:
        # The record is already committed; a failing hook only reports False
        try:
            return bool(await self.on_complete(display))
        except Exception:
            logger.exception("Completion hook failed for %s", display)
            return False

    # ---------- Batch listing ----------
    async def list_orders(self, limit: int = 250, include_tracking: bool = False) -> list[OrderSummary]:
        orders = await self.shopify.fetch_all_orders(limit)
        summaries = [_summarize(order) for order in orders]

        if include_tracking and summaries:
            statuses = await asyncio.gather(*(self._peek_status(s.order_number) for s in summaries))
            for summary, status in zip(summaries, statuses):
                summary.current_status = status
        return summaries

    async def _peek_status(self, order_number: Optional[str]) -> Optional[str]:
        """Current status without creating anything."""
        key = normalize_order_number(order_number)
        if not key:
            return None
        try:
            data = await self.store.get(key)
        except UpstreamUnavailable as exc:
            logger.warning("Tracking record for %s unavailable: %s", key, exc)
            return None
        if data is None:
            return Stage.UPLOAD_PHOTO.value if self.auto_create else None
        return data.get("current_status")

    # ---------- Merge ----------
    def _merge(self, key: str, record: TrackingRecord, external: Optional[ExternalOrder]) -> OrderView:
        bindings = bind_stage_urls(record.project_id, record.links, self.url_templates)
        steps = derive_steps(record.current_status, bindings, record.revision_number or 1)

        if external is None:
            return OrderView(
                order_number=display_order_number(key),
                order_id=key,
                current_status=record.current_status,
                product_name=record.product_name,
                project_id=record.project_id,
                revision_number=record.revision_number,
                steps=steps,
            )

        product_name = record.product_name
        if not product_name and external.line_items:
            product_name = external.line_items[0].title

        return OrderView(
            order_number=external.name or display_order_number(key),
            order_id=str(external.id) if external.id is not None else key,
            current_status=record.current_status,
            product_name=product_name,
            project_id=record.project_id,
            revision_number=record.revision_number,
            financial_status=external.financial_status,
            fulfillment_status=external.fulfillment_status,
            total_price=external.total_price,
            currency=external.currency,
            created_at=external.created_at,
            customer=external.customer,
            line_items=external.line_items,
            synced_with_shopify=True,
            steps=steps,
        )


def _summarize(order: ExternalOrder) -> OrderSummary:
    order_id = order.admin_graphql_api_id or f"gid://shopify/Order/{order.id}"
    return OrderSummary(
        order_number=order.name,
        order_id=order_id,
        created_at=order.created_at,
        total_price=order.total_price,
        financial_status=order.financial_status,
        fulfillment_status=order.fulfillment_status,
        customer=order.customer,
    )
