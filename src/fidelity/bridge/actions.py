"""Button actions and their wire encoding.

Discord hands back a button's ``custom_id`` verbatim when it is clicked. The
ids keep the colon-delimited format the shop has always used
(``<kind>:<subject_id>[:<points>]``) so buttons already posted keep working,
but nothing past :func:`parse_action` sees the raw string.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

import discord

from fidelity.errors import InvalidActionError

CUSTOM_ID_MAX_LENGTH = 100
BUTTONS_PER_ROW = 5


class ActionKind(StrEnum):
    APPROVE = "approve_receipt"
    APPROVE_FULL = "approve_receipt_full"
    REQUEST_CUSTOM = "approve_receipt_custom"
    APPROVE_CUSTOM = "approve_receipt_points"
    CANCEL_CUSTOM = "cancel_custom_points"
    REJECT = "reject_receipt"
    PROCESS = "process_order"
    COMPLETE = "complete_order"

    @property
    def takes_points(self) -> bool:
        return self in _POINTS_KINDS

    @property
    def targets_order(self) -> bool:
        return self in (ActionKind.PROCESS, ActionKind.COMPLETE)


_POINTS_KINDS = frozenset({ActionKind.APPROVE, ActionKind.APPROVE_FULL, ActionKind.APPROVE_CUSTOM})


@dataclass(frozen=True)
class Action:
    """A decoded button click."""

    kind: ActionKind
    subject_id: str
    points: int | None = None

    def __post_init__(self) -> None:
        if not self.subject_id or ":" in self.subject_id:
            raise InvalidActionError(f"Invalid subject id for {self.kind.value}")
        if self.kind.takes_points:
            if self.points is None or self.points <= 0:
                raise InvalidActionError(f"{self.kind.value} requires a positive point amount")
        elif self.points is not None:
            raise InvalidActionError(f"{self.kind.value} does not take points")

    @property
    def custom_id(self) -> str:
        parts = [self.kind.value, self.subject_id]
        if self.points is not None:
            parts.append(str(self.points))
        return ":".join(parts)


def parse_action(custom_id: str) -> Action:
    """Decode a button ``custom_id``; raises InvalidActionError on anything unknown."""
    text = (custom_id or "").strip()
    if not text or len(text) > CUSTOM_ID_MAX_LENGTH:
        raise InvalidActionError("Missing or oversized action identifier")

    parts = text.split(":")
    try:
        kind = ActionKind(parts[0])
    except ValueError:
        raise InvalidActionError(f"Unsupported interaction type: {parts[0]}") from None

    expected = 3 if kind.takes_points else 2
    if len(parts) != expected:
        raise InvalidActionError(f"Malformed {kind.value} action: {text}")

    points: int | None = None
    if kind.takes_points:
        try:
            points = int(parts[2])
        except ValueError:
            raise InvalidActionError(f"Invalid point amount in {text}") from None

    return Action(kind=kind, subject_id=parts[1], points=points)


@dataclass(frozen=True)
class ActionButton:
    """A button descriptor attached to an outbound message."""

    label: str
    action: Action
    style: discord.ButtonStyle = discord.ButtonStyle.primary

    def to_item(self, row: int | None = None) -> discord.ui.Button:
        return discord.ui.Button(
            label=self.label,
            custom_id=self.action.custom_id,
            style=self.style,
            row=row,
        )


def chunk_buttons(buttons: list[ActionButton], size: int = BUTTONS_PER_ROW) -> list[list[ActionButton]]:
    return [buttons[i : i + size] for i in range(0, len(buttons), size)]


def build_view(rows: list[list[ActionButton]]) -> discord.ui.View:
    """Lay out button rows into a static view (needs a running loop)."""
    view = discord.ui.View(timeout=None)
    for row_index, row in enumerate(rows):
        for button in row:
            view.add_item(button.to_item(row=row_index))
    # clicks arrive through on_interaction; a finished view is never stored by the client
    view.stop()
    return view
