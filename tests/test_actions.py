from __future__ import annotations

import pytest

from fidelity.bridge.actions import (
    Action,
    ActionButton,
    ActionKind,
    build_view,
    chunk_buttons,
    parse_action,
)
from fidelity.errors import InvalidActionError


def test_parse_action_reads_points_for_approve() -> None:
    action = parse_action("approve_receipt:r-1:10")

    assert action == Action(ActionKind.APPROVE, "r-1", 10)
    assert action.custom_id == "approve_receipt:r-1:10"


def test_parse_action_without_points() -> None:
    assert parse_action("reject_receipt:r-1") == Action(ActionKind.REJECT, "r-1")
    assert parse_action("complete_order:o-9").kind is ActionKind.COMPLETE
    assert parse_action("approve_receipt_custom:r-2").points is None


def test_parse_action_distinguishes_overlapping_prefixes() -> None:
    # "approve_receipt" is a prefix of the full/custom/points variants
    assert parse_action("approve_receipt_full:r-1:20").kind is ActionKind.APPROVE_FULL
    assert parse_action("approve_receipt_points:r-1:25").kind is ActionKind.APPROVE_CUSTOM
    assert parse_action("cancel_custom_points:r-1").kind is ActionKind.CANCEL_CUSTOM


@pytest.mark.parametrize(
    "custom_id",
    [
        "",
        "   ",
        "delete_everything:r-1",
        "approve_receipt:r-1",
        "approve_receipt:r-1:ten",
        "approve_receipt:r-1:0",
        "approve_receipt:r-1:-5",
        "reject_receipt:r-1:10",
        "process_order",
        "process_order::",
        "x" * 101,
    ],
)
def test_parse_action_rejects_malformed_ids(custom_id: str) -> None:
    with pytest.raises(InvalidActionError):
        parse_action(custom_id)


def test_action_requires_points_only_where_meaningful() -> None:
    with pytest.raises(InvalidActionError):
        Action(ActionKind.APPROVE_FULL, "r-1")
    with pytest.raises(InvalidActionError):
        Action(ActionKind.PROCESS, "o-1", 5)


def test_targets_order() -> None:
    assert ActionKind.PROCESS.targets_order
    assert ActionKind.COMPLETE.targets_order
    assert not ActionKind.REJECT.targets_order


def test_chunk_buttons_groups_five_per_row() -> None:
    buttons = [ActionButton(label=str(p), action=Action(ActionKind.APPROVE_CUSTOM, "r", p)) for p in range(1, 9)]

    rows = chunk_buttons(buttons)

    assert [len(row) for row in rows] == [5, 3]


@pytest.mark.asyncio
async def test_build_view_assigns_rows() -> None:
    rows = [
        [ActionButton(label="A", action=Action(ActionKind.PROCESS, "o-1"))],
        [ActionButton(label="B", action=Action(ActionKind.COMPLETE, "o-1"))],
    ]

    view = build_view(rows)

    assert view.timeout is None
    assert [(item.custom_id, item.row) for item in view.children] == [
        ("process_order:o-1", 0),
        ("complete_order:o-1", 1),
    ]


@pytest.mark.asyncio
async def test_build_view_is_finished_before_sending() -> None:
    view = build_view([[ActionButton(label="A", action=Action(ActionKind.REJECT, "r-1"))]])

    assert view.is_finished()
    assert view.children[0].custom_id == "reject_receipt:r-1"
