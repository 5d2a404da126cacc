"""Interaction router: turns button clicks into ledger transitions.

Receipts::

    pending --approve(points)--> approved   (terminal)
    pending --reject-----------> rejected   (terminal)
    pending --request custom---> pending    (posts a point-selection message)

Orders::

    pending ----process-------> processing
    pending|processing --complete--> completed  (terminal)

Every transition is a conditional UPDATE; a click on a subject that already
moved on is answered with StaleInteractionError and changes nothing.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from fidelity.bridge.actions import Action, ActionKind, parse_action
from fidelity.bridge.notifier import Notifier, point_selection_header
from fidelity.bridge.updater import MessageUpdater
from fidelity.db.engine import Database
from fidelity.errors import (
    BridgeUnavailableError,
    InvalidActionError,
    StaleInteractionError,
    SubjectNotFoundError,
)
from fidelity.models import Order, OrderStatus, Receipt, ReceiptStatus

logger = structlog.get_logger()

Ack = dict[str, Any]
ActionHandler = Callable[[Action, str], Awaitable[Ack]]

AWAITING_SELECTION = "Awaiting custom points selection..."
PROCESSING = "Processing ⏳"
COMPLETED = "Completed ✨"
REJECTED = "Rejected"


class InteractionRouter:
    """Dispatches decoded actions to their state-mutation handlers."""

    def __init__(self, *, db: Database, notifier: Notifier, updater: MessageUpdater) -> None:
        self.db = db
        self.notifier = notifier
        self.updater = updater
        self._handlers: dict[ActionKind, ActionHandler] = {
            ActionKind.APPROVE: self._approve,
            ActionKind.APPROVE_FULL: self._approve,
            ActionKind.REQUEST_CUSTOM: self._request_custom_points,
            ActionKind.APPROVE_CUSTOM: self._approve_custom_points,
            ActionKind.CANCEL_CUSTOM: self._cancel_custom_points,
            ActionKind.REJECT: self._reject,
            ActionKind.PROCESS: self._process_order,
            ActionKind.COMPLETE: self._complete_order,
        }

    async def handle(self, custom_id: str, message_id: str) -> Ack:
        """Entry point for both the gateway listener and the HTTP relay."""
        if not (message_id or "").strip():
            raise InvalidActionError("A message id is required")
        action = parse_action(custom_id)
        return await self.dispatch(action, message_id.strip())

    async def dispatch(self, action: Action, message_id: str) -> Ack:
        logger.info(
            "interactions.received",
            kind=action.kind.value,
            subject_id=action.subject_id,
            points=action.points,
            message_id=message_id,
        )
        return await self._handlers[action.kind](action, message_id)

    # ── Receipts ────────────────────────────────────────────────────

    async def _approve(self, action: Action, message_id: str) -> Ack:
        points = int(action.points or 0)
        await self._approve_receipt(action.subject_id, points)
        updated = await self.updater.update_message(message_id, f"Approved ({points} points)")
        return {
            "message": "Receipt approved",
            "receipt_id": action.subject_id,
            "points": points,
            "message_updated": updated is not None,
        }

    async def _reject(self, action: Action, message_id: str) -> Ack:
        receipt = await self._receipt(action.subject_id)
        if not await self.db.receipt_reject(receipt.id):
            raise await self._stale_receipt(receipt.id)
        logger.info("interactions.receipt_rejected", receipt_id=receipt.id)
        updated = await self.updater.update_message(message_id, REJECTED, is_success=False)
        return {
            "message": "Receipt rejected",
            "receipt_id": receipt.id,
            "message_updated": updated is not None,
        }

    async def _request_custom_points(self, action: Action, message_id: str) -> Ack:
        receipt = await self._receipt(action.subject_id)
        if not receipt.is_multi_product:
            raise InvalidActionError("Custom points are only offered for multi-product receipts")
        if receipt.status is not ReceiptStatus.PENDING:
            raise await self._stale_receipt(receipt.id)
        user = await self.db.user_get(receipt.user_id)
        if user is None:
            raise SubjectNotFoundError(f"Owner of receipt {receipt.id} not found")

        selection_id = await self.notifier.send_point_selection(receipt, user)
        if selection_id is None:
            raise BridgeUnavailableError("Could not post the custom points selection")

        # Buttons stay live: the receipt is still pending until a value is picked
        updated = await self.updater.update_message(message_id, AWAITING_SELECTION, disable_buttons=False)
        return {
            "message": "Custom points selection sent",
            "receipt_id": receipt.id,
            "selection_message_id": selection_id,
            "message_updated": updated is not None,
        }

    async def _approve_custom_points(self, action: Action, message_id: str) -> Ack:
        points = int(action.points or 0)
        receipt = await self._approve_receipt(action.subject_id, points)

        original_updated = None
        if receipt.discord_message_id:
            original_updated = await self.updater.update_message(
                receipt.discord_message_id,
                f"Approved ({points} custom points)",
            )
        else:
            logger.warning("interactions.original_message_unknown", receipt_id=receipt.id)

        await self.updater.replace_content(
            message_id,
            f"{point_selection_header(receipt.id)}\n✅ {points} points awarded.",
        )
        return {
            "message": "Receipt approved with custom points",
            "receipt_id": receipt.id,
            "points": points,
            "message_updated": original_updated is not None,
        }

    async def _cancel_custom_points(self, action: Action, message_id: str) -> Ack:
        receipt = await self._receipt(action.subject_id)
        collapsed = await self.updater.replace_content(
            message_id,
            f"{point_selection_header(receipt.id)}\n❌ Custom points selection cancelled.",
        )
        return {
            "message": "Custom points selection cancelled",
            "receipt_id": receipt.id,
            "message_updated": collapsed is not None,
        }

    async def _approve_receipt(self, receipt_id: str, points: int) -> Receipt:
        receipt = await self._receipt(receipt_id)
        if not await self.db.receipt_approve(receipt.id, points):
            raise await self._stale_receipt(receipt.id)
        logger.info("interactions.receipt_approved", receipt_id=receipt.id, user_id=receipt.user_id, points=points)
        return receipt

    async def _receipt(self, receipt_id: str) -> Receipt:
        receipt = await self.db.receipt_get(receipt_id)
        if receipt is None:
            raise SubjectNotFoundError(f"Receipt {receipt_id} not found")
        return receipt

    async def _stale_receipt(self, receipt_id: str) -> StaleInteractionError:
        current = await self.db.receipt_get(receipt_id)
        status = current.status.value if current else "removed"
        logger.warning("interactions.stale", subject="receipt", subject_id=receipt_id, status=status)
        return StaleInteractionError(f"This receipt has already been {status}")

    # ── Orders ──────────────────────────────────────────────────────

    async def _process_order(self, action: Action, message_id: str) -> Ack:
        order = await self._transition_order(action.subject_id, OrderStatus.PROCESSING, [OrderStatus.PENDING])
        # Keep the buttons so "Completed" can still be clicked
        updated = await self.updater.update_message(message_id, PROCESSING, disable_buttons=False)
        return {
            "message": "Order is being processed",
            "order_id": order.id,
            "message_updated": updated is not None,
        }

    async def _complete_order(self, action: Action, message_id: str) -> Ack:
        order = await self._transition_order(
            action.subject_id,
            OrderStatus.COMPLETED,
            [OrderStatus.PENDING, OrderStatus.PROCESSING],
        )
        updated = await self.updater.update_message(message_id, COMPLETED)
        return {
            "message": "Order completed",
            "order_id": order.id,
            "message_updated": updated is not None,
        }

    async def _transition_order(
        self,
        order_id: str,
        status: OrderStatus,
        allowed_from: list[OrderStatus],
    ) -> Order:
        order = await self.db.order_get(order_id)
        if order is None:
            raise SubjectNotFoundError(f"Order {order_id} not found")
        if not await self.db.order_transition(order.id, status, allowed_from):
            current = await self.db.order_get(order.id)
            current_status = current.status.value if current else "removed"
            logger.warning(
                "interactions.stale",
                subject="order",
                subject_id=order.id,
                status=current_status,
                requested=status.value,
            )
            raise StaleInteractionError(f"This order is already {current_status}")
        logger.info("interactions.order_transitioned", order_id=order.id, status=status.value)
        return order
