"""Post-commit hook for orders that reach the terminal stage.

Adds a marker tag to the Shopify order so Shopify Flow can send the
completion notification. Adding the tag is idempotent: an order that
already carries it is left untouched.
"""
import logging

from ..integrations.shopify import ShopifyClient

logger = logging.getLogger(__name__)


class CompletionTagger:
    def __init__(self, shopify: ShopifyClient, tag: str):
        self.shopify = shopify
        self.tag = tag

    async def __call__(self, order_number: str) -> bool:
        """Tag `order_number` (display form, e.g. ``#1001``). True if tagged."""
        order = await self.shopify.fetch_order_by_number(order_number)
        if order is None or order.id is None:
            logger.warning("Cannot tag %s: order not available from Shopify", order_number)
            return False

        if any(t.lower() == self.tag.lower() for t in order.tags):
            logger.info("Order %s already tagged %r", order_number, self.tag)
            return True

        ok = await self.shopify.update_tags(order.id, order.tags + [self.tag])
        if ok:
            logger.info("Tagged order %s with %r", order_number, self.tag)
        return ok
