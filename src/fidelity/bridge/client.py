"""discord.py client wired to the bridge."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

import discord
import structlog

from fidelity.errors import FidelityError

logger = structlog.get_logger()

InteractionHandler = Callable[[str, str], Awaitable[dict[str, Any]]]

ERROR_REPLY = "Something went wrong while processing this action."


class BridgeClient(discord.Client):
    """Gateway client that reports readiness and forwards button clicks.

    ``ready_handler`` is installed by the session, ``interaction_handler`` by
    the application once the interaction router exists.
    """

    def __init__(self, **discord_kwargs: Any) -> None:
        intents = discord.Intents.none()
        intents.guilds = True
        intents.guild_messages = True
        super().__init__(intents=intents, **discord_kwargs)
        self.ready_handler: Callable[[], None] | None = None
        self.interaction_handler: InteractionHandler | None = None

    async def on_ready(self) -> None:
        logger.info("discord.client.ready", user=str(self.user))
        if self.ready_handler:
            self.ready_handler()

    async def on_disconnect(self) -> None:
        logger.warning("discord.client.disconnected")

    async def on_resumed(self) -> None:
        logger.info("discord.client.resumed")

    async def on_interaction(self, interaction: discord.Interaction) -> None:
        await dispatch_interaction(interaction, self.interaction_handler)


async def dispatch_interaction(interaction: Any, handler: InteractionHandler | None) -> None:
    """Acknowledge a button click at once, then route it."""
    if interaction.type != discord.InteractionType.component:
        return
    data = interaction.data or {}
    custom_id = str(data.get("custom_id") or "")
    message = interaction.message
    if not custom_id or message is None:
        return

    # The ack window is 3 seconds; routing touches the database and Discord.
    await interaction.response.defer()

    if handler is None:
        logger.warning("discord.interaction.no_handler", custom_id=custom_id)
        await interaction.followup.send(ERROR_REPLY, ephemeral=True)
        return

    try:
        result = await handler(custom_id, str(message.id))
        logger.info("discord.interaction.handled", custom_id=custom_id, result=result.get("message"))
    except FidelityError as exc:
        logger.warning(
            "discord.interaction.rejected",
            custom_id=custom_id,
            message_id=str(message.id),
            error=str(exc),
        )
        await interaction.followup.send(str(exc), ephemeral=True)
    except Exception as exc:
        logger.exception(
            "discord.interaction.failed",
            custom_id=custom_id,
            message_id=str(message.id),
            error=str(exc),
        )
        await interaction.followup.send(ERROR_REPLY, ephemeral=True)
