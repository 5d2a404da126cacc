"""Error types shared by the bridge, the shop workflows and the API."""

from __future__ import annotations


class FidelityError(Exception):
    """Base error; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500


class DiscordConfigError(FidelityError):
    """Bot token or channel id missing. Not retryable."""

    status_code = 503


class BridgeUnavailableError(FidelityError):
    """The Discord session could not be brought up in time."""

    status_code = 503


class InvalidActionError(FidelityError):
    status_code = 400


class SubjectNotFoundError(FidelityError):
    status_code = 404


class StaleInteractionError(FidelityError):
    """The subject already left the state the action expects."""

    status_code = 409


class ShopError(FidelityError):
    status_code = 400


class InsufficientPointsError(ShopError):
    def __init__(self, required: int, available: int) -> None:
        super().__init__(f"Insufficient points: {required} required, {available} available")
        self.required = required
        self.available = available


class NotificationFailedError(FidelityError):
    """The approval message could not be posted, so the workflow was reverted."""

    status_code = 503
