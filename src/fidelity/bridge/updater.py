"""In-place edits of approval messages after their subject changes state.

The database write always happens first. When an edit here fails, the ledger is
right and the Discord message is stale; the failure is logged with both ids
for manual reconciliation and nothing is rolled back.
"""

from __future__ import annotations

import re
from typing import Any

import discord
import structlog

from fidelity.bridge.session import TRANSPORT_ERRORS, DiscordSession
from fidelity.errors import DiscordConfigError

logger = structlog.get_logger()

COLOR_IN_PROGRESS = 0x3498DB
COLOR_SUCCESS = 0x00FF00
COLOR_FAILURE = 0xFF0000

BADGE_IN_PROGRESS = "🔄"
BADGE_SUCCESS = "✅"
BADGE_FAILURE = "❌"

IN_PROGRESS_MARKERS = ("Processing", "Awaiting")

_STATUS_LINE_RE = re.compile(r"\*\*Status:\*\*.*$", re.MULTILINE)
_BADGE_RE = re.compile(rf"^[{BADGE_IN_PROGRESS}{BADGE_SUCCESS}{BADGE_FAILURE}]\s")


def is_in_progress(status_text: str) -> bool:
    return any(marker in status_text for marker in IN_PROGRESS_MARKERS)


def status_color(status_text: str, is_success: bool) -> int:
    if not is_success:
        return COLOR_FAILURE
    return COLOR_IN_PROGRESS if is_in_progress(status_text) else COLOR_SUCCESS


def status_badge(status_text: str, is_success: bool) -> str:
    if is_in_progress(status_text):
        return BADGE_IN_PROGRESS
    return BADGE_SUCCESS if is_success else BADGE_FAILURE


def with_status_line(description: str | None, status_text: str) -> str:
    """Rewrite the ``**Status:**`` line, or append one."""
    line = f"**Status:** {status_text}"
    text = description or ""
    if _STATUS_LINE_RE.search(text):
        return _STATUS_LINE_RE.sub(lambda _match: line, text, count=1)
    return f"{text}\n\n{line}" if text else line


def with_status_badge(title: str | None, status_text: str, is_success: bool) -> str:
    badge = status_badge(status_text, is_success)
    text = title or ""
    if _BADGE_RE.match(text):
        return _BADGE_RE.sub(f"{badge} ", text, count=1)
    return f"{badge} {text}".rstrip()


def restyle_embed(embed: discord.Embed | None, status_text: str, is_success: bool) -> discord.Embed:
    updated = embed.copy() if embed is not None else discord.Embed()
    updated.colour = status_color(status_text, is_success)
    updated.description = with_status_line(updated.description, status_text)
    updated.title = with_status_badge(updated.title, status_text, is_success)
    return updated


def disabled_view(components: list[Any]) -> discord.ui.View:
    """Rebuild every button of a message with ``disabled=True``.

    Labels, styles, emojis, URLs, custom ids and rows are kept.
    """
    view = discord.ui.View(timeout=None)
    for row_index, row in enumerate(components):
        for child in getattr(row, "children", []):
            if child.type != discord.ComponentType.button:
                continue
            view.add_item(
                discord.ui.Button(
                    style=child.style,
                    label=child.label,
                    custom_id=child.custom_id,
                    url=child.url,
                    emoji=child.emoji,
                    disabled=True,
                    row=row_index,
                )
            )
    # a finished view is never stored by the client
    view.stop()
    return view


class MessageUpdater:
    """Reflects approval/processing state onto previously sent messages."""

    def __init__(self, session: DiscordSession) -> None:
        self.session = session

    async def update_message(
        self,
        message_id: str,
        status_text: str,
        is_success: bool = True,
        disable_buttons: bool = True,
    ) -> str | None:
        message = await self._fetch(message_id)
        if message is None:
            return None

        embed = restyle_embed(message.embeds[0] if message.embeds else None, status_text, is_success)
        changes: dict[str, Any] = {"embed": embed}
        if disable_buttons:
            changes["view"] = disabled_view(message.components)

        try:
            await message.edit(**changes)
        except TRANSPORT_ERRORS as exc:
            logger.error(
                "updater.edit_failed",
                message_id=message_id,
                status=status_text,
                error=str(exc),
            )
            return None

        logger.info(
            "updater.message_updated",
            message_id=message_id,
            status=status_text,
            buttons_disabled=disable_buttons,
        )
        return str(message.id)

    async def replace_content(self, message_id: str, content: str) -> str | None:
        """Turn a message into static text with no components."""
        message = await self._fetch(message_id)
        if message is None:
            return None
        try:
            await message.edit(content=content, embeds=[], view=None)
        except TRANSPORT_ERRORS as exc:
            logger.error("updater.collapse_failed", message_id=message_id, error=str(exc))
            return None
        logger.info("updater.message_collapsed", message_id=message_id)
        return str(message.id)

    async def _fetch(self, message_id: str) -> Any | None:
        try:
            connected = await self.session.ensure_connected()
        except DiscordConfigError as exc:
            logger.error("updater.not_configured", message_id=message_id, error=str(exc))
            return None
        if not connected:
            logger.error("updater.not_connected", message_id=message_id)
            return None

        channel = await self.session.text_channel()
        if channel is None:
            logger.error("updater.channel_missing", message_id=message_id)
            return None

        try:
            return await channel.fetch_message(int(message_id))
        except (*TRANSPORT_ERRORS, ValueError) as exc:
            logger.error("updater.message_missing", message_id=message_id, error=str(exc))
            return None
