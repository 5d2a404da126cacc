"""Discord notification/approval bridge."""

from fidelity.bridge.actions import Action, ActionButton, ActionKind, parse_action
from fidelity.bridge.notifier import Notifier
from fidelity.bridge.router import InteractionRouter
from fidelity.bridge.session import DiscordSession, SessionState, SessionStatus
from fidelity.bridge.updater import MessageUpdater

__all__ = [
    "Action",
    "ActionButton",
    "ActionKind",
    "DiscordSession",
    "InteractionRouter",
    "MessageUpdater",
    "Notifier",
    "SessionState",
    "SessionStatus",
    "parse_action",
]
