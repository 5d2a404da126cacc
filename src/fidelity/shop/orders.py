"""Order placement: points are only charged once an admin can see the order."""

from __future__ import annotations

import structlog

from fidelity.bridge.notifier import Notifier
from fidelity.bridge.updater import MessageUpdater
from fidelity.db.engine import Database
from fidelity.errors import (
    DiscordConfigError,
    InsufficientPointsError,
    NotificationFailedError,
    ShopError,
    SubjectNotFoundError,
)
from fidelity.models import Order, OrderStatus

logger = structlog.get_logger()


class OrderService:
    def __init__(self, *, db: Database, notifier: Notifier, updater: MessageUpdater) -> None:
        self.db = db
        self.notifier = notifier
        self.updater = updater

    async def place(self, user_id: str, product_id: str, quantity: int = 1) -> Order:
        if quantity < 1:
            raise ShopError("Quantity must be at least 1")

        product = await self.db.product_get(product_id)
        if product is None:
            raise SubjectNotFoundError("Product not found")
        if not product.in_stock:
            raise ShopError("This product is currently unavailable")

        user = await self.db.user_get(user_id)
        if user is None:
            raise SubjectNotFoundError("User not found")

        total = product.points_cost * quantity
        if user.points < total:
            raise InsufficientPointsError(required=total, available=user.points)

        order = await self.db.order_create(user.id, product.id, quantity, total)
        logger.info("orders.created", order_id=order.id, user_id=user.id, total_points=total)

        try:
            message_id = await self.notifier.notify(order)
        except DiscordConfigError as exc:
            logger.error("orders.notification_unconfigured", order_id=order.id, error=str(exc))
            message_id = None

        if message_id is None:
            await self._cancel(order)
            raise NotificationFailedError("The order could not be announced and was cancelled")

        if not await self.db.order_charge(order.id):
            # balance spent by a concurrent order since the check above
            await self._cancel(order)
            await self.updater.update_message(message_id, "Cancelled (insufficient points)", is_success=False)
            current = await self.db.user_get(user.id)
            raise InsufficientPointsError(required=total, available=current.points if current else 0)

        logger.info("orders.charged", order_id=order.id, user_id=user.id, total_points=total)
        return order

    async def _cancel(self, order: Order) -> None:
        await self.db.order_transition(order.id, OrderStatus.CANCELLED, [OrderStatus.PENDING])
        order.status = OrderStatus.CANCELLED
        logger.warning("orders.cancelled", order_id=order.id)
