"""Receipt submission."""

from __future__ import annotations

import structlog

from fidelity.bridge.notifier import Notifier
from fidelity.db.engine import Database
from fidelity.errors import DiscordConfigError, NotificationFailedError, ShopError, SubjectNotFoundError
from fidelity.models import LineItem, Receipt, total_points

logger = structlog.get_logger()


class ReceiptService:
    def __init__(self, *, db: Database, notifier: Notifier) -> None:
        self.db = db
        self.notifier = notifier

    async def submit(self, user_id: str, image_url: str, items: list[tuple[str, int]]) -> Receipt:
        """Record an uploaded receipt and announce it for approval.

        ``items`` is a list of ``(product_id, quantity)`` pairs. A receipt that
        cannot be announced is removed again, since nobody could approve it.
        """
        if not items:
            raise ShopError("The product list cannot be empty")
        if any(quantity < 1 for _product_id, quantity in items):
            raise ShopError("Quantities must be at least 1")

        user = await self.db.user_get(user_id)
        if user is None:
            raise SubjectNotFoundError("User not found")

        products = await self.db.product_get_many(product_id for product_id, _quantity in items)
        missing = [product_id for product_id, _quantity in items if product_id not in products]
        if missing:
            raise SubjectNotFoundError("One or more products were not found")

        line_items = [
            LineItem(
                product_id=product_id,
                name=products[product_id].name,
                quantity=quantity,
                points_cost=products[product_id].points_cost,
            )
            for product_id, quantity in items
        ]
        receipt = await self.db.receipt_create(user.id, image_url, line_items)
        logger.info(
            "receipts.created",
            receipt_id=receipt.id,
            user_id=user.id,
            potential_points=total_points(line_items),
        )

        try:
            message_id = await self.notifier.notify(receipt, line_items)
        except DiscordConfigError as exc:
            logger.error("receipts.notification_unconfigured", receipt_id=receipt.id, error=str(exc))
            message_id = None

        if message_id is None:
            await self.db.receipt_delete(receipt.id)
            logger.warning("receipts.withdrawn", receipt_id=receipt.id)
            raise NotificationFailedError("The receipt could not be sent for approval, please retry")

        return receipt
