from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import discord
import pytest

from fidelity.bridge.client import ERROR_REPLY, BridgeClient, dispatch_interaction
from fidelity.errors import StaleInteractionError


def _interaction(custom_id: str = "reject_receipt:r-1", kind=discord.InteractionType.component):
    return SimpleNamespace(
        type=kind,
        data={"custom_id": custom_id},
        message=SimpleNamespace(id=987654321),
        response=SimpleNamespace(defer=AsyncMock()),
        followup=SimpleNamespace(send=AsyncMock()),
    )


@pytest.mark.asyncio
async def test_button_click_is_deferred_then_routed() -> None:
    interaction = _interaction()
    handler = AsyncMock(return_value={"message": "Receipt rejected"})

    await dispatch_interaction(interaction, handler)

    interaction.response.defer.assert_awaited_once()
    handler.assert_awaited_once_with("reject_receipt:r-1", "987654321")
    interaction.followup.send.assert_not_awaited()


@pytest.mark.asyncio
async def test_router_errors_are_shown_to_the_clicker() -> None:
    interaction = _interaction()
    handler = AsyncMock(side_effect=StaleInteractionError("This receipt has already been approved"))

    await dispatch_interaction(interaction, handler)

    interaction.followup.send.assert_awaited_once_with("This receipt has already been approved", ephemeral=True)


@pytest.mark.asyncio
async def test_unexpected_errors_get_a_generic_reply() -> None:
    interaction = _interaction()
    handler = AsyncMock(side_effect=RuntimeError("db locked"))

    await dispatch_interaction(interaction, handler)

    interaction.followup.send.assert_awaited_once_with(ERROR_REPLY, ephemeral=True)


@pytest.mark.asyncio
async def test_non_component_interactions_are_ignored() -> None:
    interaction = _interaction(kind=discord.InteractionType.application_command)
    handler = AsyncMock()

    await dispatch_interaction(interaction, handler)

    interaction.response.defer.assert_not_awaited()
    handler.assert_not_awaited()


@pytest.mark.asyncio
async def test_missing_handler_still_answers() -> None:
    interaction = _interaction()

    await dispatch_interaction(interaction, None)

    interaction.response.defer.assert_awaited_once()
    interaction.followup.send.assert_awaited_once_with(ERROR_REPLY, ephemeral=True)


@pytest.mark.asyncio
async def test_client_ready_hook_calls_session_handler() -> None:
    client = BridgeClient()
    calls: list[str] = []
    client.ready_handler = lambda: calls.append("ready")

    await client.on_ready()

    assert calls == ["ready"]
