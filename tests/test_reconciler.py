import pytest

from conftest import shopify_order
from order_status.exceptions import (
    InternalError,
    NotFoundError,
    UpstreamUnavailable,
    ValidationError,
)
from order_status.handlers.reconciler import (
    display_order_number,
    merge_tracking_fields,
    normalize_order_number,
)
from order_status.integrations.store import MemoryStore
from order_status.schemas import TrackingRecord


class BrokenStore(MemoryStore):
    async def get(self, key):
        raise UpstreamUnavailable("store down")

    async def set(self, key, value):
        raise UpstreamUnavailable("store down")


@pytest.mark.parametrize("raw", ["1001", "#1001", "%231001", "  #1001 ", "##1001"])
def test_normalize_order_number(raw):
    assert normalize_order_number(raw) == "1001"
    assert display_order_number(normalize_order_number(raw)) == "#1001"


def test_normalize_empty():
    assert normalize_order_number(None) == ""
    assert normalize_order_number(" # ") == ""


def test_merge_keeps_absent_fields():
    record = TrackingRecord(current_status="check_delivery", project_id="p1", revision_number=2)
    merged = merge_tracking_fields(record, {"product_name": "Kitchen", "current_status": None})

    assert merged.current_status == "check_delivery"
    assert merged.project_id == "p1"
    assert merged.revision_number == 2
    assert merged.product_name == "Kitchen"
    assert merged.updated_at >= record.updated_at


def test_merge_links_per_stage():
    record = TrackingRecord(links={"upload_photo": "https://a"})
    merged = merge_tracking_fields(record, {"links": {"check_delivery": "https://b"}})
    assert merged.links == {"upload_photo": "https://a", "check_delivery": "https://b"}


async def test_get_auto_creates_default_record(reconciler, store):
    view = await reconciler.get_order("%231001")

    assert view.current_status == "upload_photo"
    assert view.order_number == "#1001"
    assert view.steps[0].status == "in_progress"
    assert await store.get("1001") is not None


async def test_get_not_found_policy(make_reconciler, store):
    reconciler = make_reconciler(auto_create=False)
    with pytest.raises(NotFoundError):
        await reconciler.get_order("#1001")
    assert await store.get("1001") is None


async def test_get_requires_order_number(reconciler):
    with pytest.raises(ValidationError):
        await reconciler.get_order("")


async def test_write_then_read_round_trip(reconciler):
    await reconciler.update_order("#1001", {"current_status": "check_delivery"})
    view = await reconciler.get_order("1001")

    assert view.current_status == "check_delivery"
    step = next(s for s in view.steps if s.id == "check_delivery")
    assert step.status == "in_progress"


async def test_partial_update_preserves_status(reconciler):
    await reconciler.update_order("#1001", {"current_status": "check_revision", "project_id": "p9"})
    result = await reconciler.update_order("1001", {"product_name": "X"})

    assert result.order.current_status == "check_revision"
    assert result.order.project_id == "p9"
    assert result.order.product_name == "X"


async def test_update_rejects_unknown_status(reconciler, store):
    with pytest.raises(ValidationError):
        await reconciler.update_order("#1001", {"current_status": "shipped"})
    assert await store.get("1001") is None


async def test_update_accepts_unknown_status_when_validation_disabled(make_reconciler):
    reconciler = make_reconciler(validate_status=False)
    result = await reconciler.update_order("#1001", {"current_status": "shipped"})

    assert result.order.current_status == "shipped"
    assert all(s.status == "pending" for s in result.order.steps)


async def test_update_requires_order_number(reconciler):
    with pytest.raises(ValidationError):
        await reconciler.update_order(None, {"current_status": "in_progress"})


async def test_update_rejects_bad_revision_and_links(reconciler):
    with pytest.raises(ValidationError):
        await reconciler.update_order("#1001", {"revision_number": 0})
    with pytest.raises(ValidationError):
        await reconciler.update_order("#1001", {"links": {"order_complete": "https://x"}})


async def test_view_is_enriched_from_shopify(reconciler, fake_shopify):
    fake_shopify.add(shopify_order(6659812294735, "#1001"))
    await reconciler.update_order("1001", {"current_status": "check_delivery", "project_id": "p1"})

    view = await reconciler.get_order("#1001")
    assert view.synced_with_shopify
    assert view.order_id == "6659812294735"
    assert view.financial_status == "paid"
    assert view.customer.name == "Jane Doe"
    assert view.product_name == "Virtual Staging - 3 Photos"
    # Shopify's own statuses never replace the tracking stage
    assert view.current_status == "check_delivery"
    urls = {s.id: s.url for s in view.steps}
    assert urls["check_delivery"].endswith("/delivery/p1")
    assert urls["check_revision"] is None


async def test_record_product_name_wins_over_line_item(reconciler, fake_shopify):
    fake_shopify.add(shopify_order(1, "#1001"))
    result = await reconciler.update_order("#1001", {"product_name": "Living room"})
    assert result.order.product_name == "Living room"


async def test_read_degrades_without_shopify(make_reconciler, unconfigured_shopify):
    reconciler = make_reconciler(shopify=unconfigured_shopify)
    await reconciler.update_order("#1001", {"current_status": "in_progress", "product_name": "Kitchen"})

    view = await reconciler.get_order("#1001")
    assert not view.synced_with_shopify
    assert view.order_id == "1001"
    assert view.product_name == "Kitchen"
    assert view.financial_status is None


async def test_completion_tags_once(reconciler, fake_shopify):
    fake_shopify.add(shopify_order(42, "#1001", tags="vip"))

    first = await reconciler.update_order("#1001", {"current_status": "order_complete"})
    second = await reconciler.update_order("#1001", {"current_status": "order_complete"})

    assert first.shopify_tag_added is True
    assert second.shopify_tag_added is True
    assert fake_shopify.tags_of(42) == ["vip", "order_complete"]
    puts = [r for r in fake_shopify.requests if r.method == "PUT"]
    assert len(puts) == 1


async def test_completion_not_run_for_other_stages(reconciler, fake_shopify):
    fake_shopify.add(shopify_order(42, "#1001"))
    result = await reconciler.update_order("#1001", {"current_status": "check_revision"})

    assert result.shopify_tag_added is None
    assert fake_shopify.tags_of(42) == []


async def test_completion_failure_does_not_fail_write(reconciler, store, fake_shopify):
    fake_shopify.fail = True
    result = await reconciler.update_order("#1001", {"current_status": "order_complete"})

    assert result.shopify_tag_added is False
    assert (await store.get("1001"))["current_status"] == "order_complete"


async def test_completion_hook_exception_is_contained(make_reconciler, store):
    async def exploding_hook(order_number):
        raise RuntimeError("boom")

    reconciler = make_reconciler(on_complete=exploding_hook)
    result = await reconciler.update_order("#1001", {"current_status": "order_complete"})

    assert result.shopify_tag_added is False
    assert result.order.current_status == "order_complete"


async def test_store_read_failure_on_get_does_not_overwrite(make_reconciler):
    store = BrokenStore()
    reconciler = make_reconciler()
    reconciler.store = store

    view = await reconciler.get_order("#1001")
    assert view.current_status == "upload_photo"


async def test_auto_create_does_not_clobber_concurrent_write(make_reconciler):
    # The record is committed by another request after our read missed it
    class StaleReadStore(MemoryStore):
        def __init__(self):
            super().__init__()
            self.stale_reads = 1

        async def get(self, key):
            if self.stale_reads:
                self.stale_reads -= 1
                return None
            return await super().get(key)

    store = StaleReadStore()
    await store.set("1001", TrackingRecord(current_status="check_delivery").model_dump(mode="json"))
    reconciler = make_reconciler()
    reconciler.store = store

    view = await reconciler.get_order("#1001")

    assert view.current_status == "check_delivery"
    assert (await store.get("1001"))["current_status"] == "check_delivery"


async def test_store_failure_on_update_is_internal_error(make_reconciler):
    reconciler = make_reconciler()
    reconciler.store = BrokenStore()

    with pytest.raises(InternalError):
        await reconciler.update_order("#1001", {"current_status": "in_progress"})


async def test_list_orders_with_tracking(reconciler, fake_shopify):
    fake_shopify.add(shopify_order(1, "#1001"))
    fake_shopify.add(shopify_order(2, "#1002"))
    await reconciler.update_order("#1002", {"current_status": "check_delivery"})

    summaries = await reconciler.list_orders(10, include_tracking=True)

    by_number = {s.order_number: s for s in summaries}
    assert by_number["#1001"].current_status == "upload_photo"
    assert by_number["#1002"].current_status == "check_delivery"
    assert by_number["#1001"].order_id == "gid://shopify/Order/1"
    assert by_number["#1001"].customer.email == "jane@example.com"


async def test_list_orders_never_creates_records(make_reconciler, store, fake_shopify):
    fake_shopify.add(shopify_order(1, "#1001"))
    reconciler = make_reconciler(auto_create=False)

    summaries = await reconciler.list_orders(include_tracking=True)

    assert summaries[0].current_status is None
    assert await store.get("1001") is None


async def test_list_orders_without_shopify(make_reconciler, unconfigured_shopify):
    reconciler = make_reconciler(shopify=unconfigured_shopify)
    assert await reconciler.list_orders() == []
