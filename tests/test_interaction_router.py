from __future__ import annotations

import asyncio

import pytest

from fidelity.bridge.notifier import Notifier
from fidelity.bridge.router import InteractionRouter
from fidelity.db.engine import Database
from fidelity.errors import InvalidActionError, StaleInteractionError, SubjectNotFoundError
from fidelity.models import LineItem, OrderStatus, ReceiptStatus

from fakes import FakeChannel


async def _announced_receipt(db: Database, notifier: Notifier, items: list[LineItem] | None = None):
    user = await db.user_create("alice", points=5)
    if items is None:
        product = await db.product_create("Diamond", 10)
        items = [LineItem(product_id=product.id, name=product.name, quantity=1, points_cost=10)]
    receipt = await db.receipt_create(user.id, "/uploads/r.png", items)
    message_id = await notifier.notify(receipt, items)
    assert message_id is not None
    return user, receipt, message_id


def _multi_items() -> list[LineItem]:
    return [
        LineItem(product_id="a", name="Apple", quantity=2, points_cost=5),
        LineItem(product_id="b", name="Bread", quantity=1, points_cost=10),
    ]


@pytest.mark.asyncio
async def test_single_receipt_approval_scenario(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier)
    approve = channel.messages[int(message_id)].buttons[0].custom_id
    assert approve == f"approve_receipt:{receipt.id}:10"

    ack = await interaction_router.handle(approve, message_id)

    assert ack["points"] == 10
    assert ack["message_updated"] is True
    assert (await db.user_get(user.id)).points == 15
    stored = await db.receipt_get(receipt.id)
    assert stored.status is ReceiptStatus.APPROVED
    assert stored.points_awarded == 10
    message = channel.messages[int(message_id)]
    assert "**Status:** Approved (10 points)" in message.embeds[0].description
    assert all(button.disabled for button in message.buttons)


@pytest.mark.asyncio
async def test_second_approval_is_stale_and_not_credited(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier)
    custom_id = f"approve_receipt:{receipt.id}:10"

    await interaction_router.handle(custom_id, message_id)
    with pytest.raises(StaleInteractionError, match="already been approved"):
        await interaction_router.handle(custom_id, message_id)

    assert (await db.user_get(user.id)).points == 15


@pytest.mark.asyncio
async def test_simultaneous_clicks_credit_once(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier)
    custom_id = f"approve_receipt:{receipt.id}:10"

    results = await asyncio.gather(
        *(interaction_router.handle(custom_id, message_id) for _ in range(3)),
        return_exceptions=True,
    )

    assert sum(isinstance(result, dict) for result in results) == 1
    assert sum(isinstance(result, StaleInteractionError) for result in results) == 2
    assert (await db.user_get(user.id)).points == 15


@pytest.mark.asyncio
async def test_reject_after_approve_is_refused(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
) -> None:
    _user, receipt, message_id = await _announced_receipt(db, notifier)

    await interaction_router.handle(f"approve_receipt:{receipt.id}:10", message_id)
    with pytest.raises(StaleInteractionError):
        await interaction_router.handle(f"reject_receipt:{receipt.id}", message_id)

    assert (await db.receipt_get(receipt.id)).status is ReceiptStatus.APPROVED


@pytest.mark.asyncio
async def test_approve_after_reject_is_refused(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier)

    ack = await interaction_router.handle(f"reject_receipt:{receipt.id}", message_id)
    assert ack["message_updated"] is True
    assert channel.messages[int(message_id)].embeds[0].colour.value == 0xFF0000

    with pytest.raises(StaleInteractionError, match="already been rejected"):
        await interaction_router.handle(f"approve_receipt:{receipt.id}:10", message_id)
    assert (await db.user_get(user.id)).points == 5


@pytest.mark.asyncio
async def test_full_total_approval_awards_computed_total(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier, _multi_items())
    approve_full = channel.messages[int(message_id)].buttons[0].custom_id

    ack = await interaction_router.handle(approve_full, message_id)

    assert ack["points"] == 20
    assert (await db.user_get(user.id)).points == 25


@pytest.mark.asyncio
async def test_custom_points_flow(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier, _multi_items())

    ack = await interaction_router.handle(f"approve_receipt_custom:{receipt.id}", message_id)

    selection = channel.messages[int(ack["selection_message_id"])]
    assert [len(row.children) for row in selection.components] == [5, 3, 1]
    assert selection.components[2].children[0].custom_id == f"cancel_custom_points:{receipt.id}"
    original = channel.messages[int(message_id)]
    assert "Awaiting custom points selection" in original.embeds[0].description
    assert not any(button.disabled for button in original.buttons)
    assert (await db.receipt_get(receipt.id)).status is ReceiptStatus.PENDING

    await interaction_router.handle(f"approve_receipt_points:{receipt.id}:25", str(selection.id))

    assert (await db.user_get(user.id)).points == 30
    assert "**Status:** Approved (25 custom points)" in original.embeds[0].description
    assert all(button.disabled for button in original.buttons)
    assert selection.components == []
    assert "25 points awarded" in selection.content


@pytest.mark.asyncio
async def test_cancel_custom_points_leaves_receipt_pending(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    _user, receipt, message_id = await _announced_receipt(db, notifier, _multi_items())
    ack = await interaction_router.handle(f"approve_receipt_custom:{receipt.id}", message_id)
    selection = channel.messages[int(ack["selection_message_id"])]

    await interaction_router.handle(f"cancel_custom_points:{receipt.id}", str(selection.id))

    assert "cancelled" in selection.content
    assert selection.components == []
    assert (await db.receipt_get(receipt.id)).status is ReceiptStatus.PENDING


@pytest.mark.asyncio
async def test_custom_points_refused_for_single_product(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
) -> None:
    _user, receipt, message_id = await _announced_receipt(db, notifier)

    with pytest.raises(InvalidActionError):
        await interaction_router.handle(f"approve_receipt_custom:{receipt.id}", message_id)


@pytest.mark.asyncio
async def test_order_process_then_complete_scenario(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    user = await db.user_create("dave", points=100)
    product = await db.product_create("Trident", 50)
    order = await db.order_create(user.id, product.id, 1, 50)
    message_id = await notifier.notify(order)
    message = channel.messages[int(message_id)]

    await interaction_router.handle(f"process_order:{order.id}", message_id)
    assert (await db.order_get(order.id)).status is OrderStatus.PROCESSING
    assert not any(button.disabled for button in message.buttons)

    await interaction_router.handle(f"complete_order:{order.id}", message_id)
    assert (await db.order_get(order.id)).status is OrderStatus.COMPLETED
    assert all(button.disabled for button in message.buttons)
    assert len(message.edits) == 2

    with pytest.raises(StaleInteractionError, match="already completed"):
        await interaction_router.handle(f"process_order:{order.id}", message_id)
    assert (await db.order_get(order.id)).status is OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_order_can_complete_without_processing(
    interaction_router: InteractionRouter,
    db: Database,
) -> None:
    user = await db.user_create("erin", points=100)
    product = await db.product_create("Saddle", 10)
    order = await db.order_create(user.id, product.id, 1, 10)

    ack = await interaction_router.handle(f"complete_order:{order.id}", "1234")

    assert ack["message_updated"] is False
    assert (await db.order_get(order.id)).status is OrderStatus.COMPLETED


@pytest.mark.asyncio
async def test_unknown_subject_and_bad_input(interaction_router: InteractionRouter) -> None:
    with pytest.raises(SubjectNotFoundError):
        await interaction_router.handle("reject_receipt:missing", "1")
    with pytest.raises(SubjectNotFoundError):
        await interaction_router.handle("process_order:missing", "1")
    with pytest.raises(InvalidActionError):
        await interaction_router.handle("explode:r-1", "1")
    with pytest.raises(InvalidActionError):
        await interaction_router.handle("reject_receipt:r-1", " ")


@pytest.mark.asyncio
async def test_edit_failure_keeps_committed_approval(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier)
    channel.messages[int(message_id)].fail_edit = True

    ack = await interaction_router.handle(f"approve_receipt:{receipt.id}:10", message_id)

    assert ack["message_updated"] is False
    assert (await db.receipt_get(receipt.id)).status is ReceiptStatus.APPROVED
    assert (await db.user_get(user.id)).points == 15


@pytest.mark.asyncio
async def test_edit_timeout_keeps_committed_rejection(
    interaction_router: InteractionRouter,
    notifier: Notifier,
    db: Database,
    channel: FakeChannel,
) -> None:
    user, receipt, message_id = await _announced_receipt(db, notifier)
    channel.messages[int(message_id)].edit_error = asyncio.TimeoutError()

    ack = await interaction_router.handle(f"reject_receipt:{receipt.id}", message_id)

    assert ack["message_updated"] is False
    assert (await db.receipt_get(receipt.id)).status is ReceiptStatus.REJECTED
    assert (await db.user_get(user.id)).points == 5
