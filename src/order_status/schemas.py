"""Pydantic schemas for tracking records, Shopify data and API payloads."""

from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Stage(str, Enum):
    """The fixed order pipeline. Declaration order is progress order."""

    UPLOAD_PHOTO = "upload_photo"
    IN_PROGRESS = "in_progress"
    CHECK_DELIVERY = "check_delivery"
    CHECK_REVISION = "check_revision"
    ORDER_COMPLETE = "order_complete"


STAGE_VALUES = [stage.value for stage in Stage]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepView(BaseModel):
    id: str
    label: str
    status: Literal["completed", "in_progress", "pending"]
    clickable: bool
    url: str | None = None


class TrackingRecord(BaseModel):
    """Locally held tracking state for one order, stored as JSON."""

    current_status: str = Stage.UPLOAD_PHOTO.value
    project_id: str | None = None
    product_name: str | None = None
    revision_number: int | None = None
    # Explicit per-stage URLs; these win over the configured templates
    links: dict[str, str] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Customer(BaseModel):
    name: str = ""
    email: str = ""


class LineItem(BaseModel):
    title: str | None = None
    variant_title: str | None = None
    quantity: int = 0
    price: str | None = None


class ExternalOrder(BaseModel):
    """The subset of a Shopify order this service reads."""

    id: int | None = None
    admin_graphql_api_id: str | None = None
    name: str | None = None
    order_number: int | None = None
    email: str | None = None
    financial_status: str | None = None
    fulfillment_status: str | None = None
    total_price: str | None = None
    currency: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    customer: Customer = Field(default_factory=Customer)
    line_items: list[LineItem] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)


class OrderView(BaseModel):
    """Tracking record merged with Shopify data, as returned to clients."""

    order_number: str
    order_id: str
    current_status: str
    product_name: str | None = None
    project_id: str | None = None
    revision_number: int | None = None
    financial_status: str | None = None
    fulfillment_status: str | None = None
    total_price: str | None = None
    currency: str | None = None
    created_at: str | None = None
    customer: Customer | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    synced_with_shopify: bool = False
    steps: list[StepView] = Field(default_factory=list)


class OrderSummary(BaseModel):
    """One entry of the batch order listing."""

    order_number: str | None
    order_id: str
    created_at: str | None = None
    total_price: str | None = None
    financial_status: str | None = None
    fulfillment_status: str | None = None
    customer: Customer = Field(default_factory=Customer)
    current_status: str | None = None


class OrderStatusUpdate(BaseModel):
    """Partial update accepted by the write path. Null means "not supplied"."""

    model_config = ConfigDict(extra="ignore")

    order_number: str | None = None
    current_status: str | None = None
    product_name: str | None = None
    project_id: str | None = None
    revision_number: int | None = Field(default=None, ge=1)
    links: dict[str, str] | None = None

    @field_validator("order_number", mode="before")
    @classmethod
    def _numeric_order_number(cls, value):
        # Clients may send the bare Shopify order number as a JSON integer
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class UpdateResult(BaseModel):
    order: OrderView
    shopify_tag_added: bool | None = None


class OrderStatusResponse(BaseModel):
    success: bool = True
    message: str = "Order status updated successfully"
    order: OrderView
    shopify_tag_added: bool | None = None


class ShopifyOrdersResponse(BaseModel):
    success: bool = True
    count: int
    orders: list[OrderSummary]


class HealthResponse(BaseModel):
    status: str = "ok"
