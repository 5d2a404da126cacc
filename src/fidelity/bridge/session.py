"""Discord session: the one long-lived bot connection of the process.

Lifecycle::

    disconnected -> connecting -> ready
         ^              |           |
         +---- retry ---+<- drop ---+
                        |
                        +-> failed  (max attempts reached or token rejected)

The gateway runs with discord.py's own reconnect disabled; a supervisor task
owns retries so they are bounded, logged and cancellable on shutdown.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import aiohttp
import discord
import structlog

from fidelity.bridge.client import BridgeClient
from fidelity.config import DiscordConfig
from fidelity.errors import DiscordConfigError

logger = structlog.get_logger()

# Failures of a single REST call: API errors plus dropped sockets and timeouts
TRANSPORT_ERRORS = (discord.HTTPException, aiohttp.ClientError, OSError, asyncio.TimeoutError)


class SessionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    READY = "ready"
    FAILED = "failed"


@dataclass
class SessionStatus:
    """Runtime status snapshot for the Discord session."""

    state: SessionState
    configured: bool
    ready: bool
    attempt: int
    max_attempts: int
    last_error: str | None = None
    ready_at: str | None = None


class DiscordSession:
    """Owns connect, readiness and bounded reconnects of the bot client."""

    def __init__(self, config: DiscordConfig, client: Any | None = None) -> None:
        self.config = config
        self.client = client if client is not None else BridgeClient()
        self.client.ready_handler = self._mark_ready

        self.state = SessionState.DISCONNECTED
        self.attempt = 0
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self._last_error: str | None = None
        self._ready_at: str | None = None

    @property
    def max_attempts(self) -> int:
        return self.config.max_reconnect_attempts

    @property
    def connecting(self) -> bool:
        return self.state is SessionState.CONNECTING

    def is_ready(self) -> bool:
        return self.state is SessionState.READY and self.client.is_ready()

    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self.state,
            configured=self.config.configured,
            ready=self.is_ready(),
            attempt=self.attempt,
            max_attempts=self.max_attempts,
            last_error=self._last_error,
            ready_at=self._ready_at,
        )

    def require_config(self) -> None:
        if not self.config.bot_token.strip():
            raise DiscordConfigError("Discord bot token is not configured")
        if not self.config.channel_id.strip():
            raise DiscordConfigError("Discord channel id is not configured")

    async def connect(self) -> bool:
        """Log in and start the gateway unless already up or underway."""
        self.require_config()

        if self.is_ready():
            logger.debug("discord.session.already_ready")
            return True
        if self.state is SessionState.CONNECTING:
            logger.info("discord.session.connect_in_progress")
            return False
        if self.state is SessionState.FAILED:
            logger.warning("discord.session.connect_refused", reason="permanently_failed")
            return False

        self._stopping = False
        self._set_state(SessionState.CONNECTING)
        logger.info("discord.session.connecting")
        try:
            await self._login()
        except discord.LoginFailure as exc:
            self._fail(f"login rejected: {exc}")
            return False
        except Exception as exc:
            self.attempt += 1
            self._last_error = str(exc) or type(exc).__name__
            logger.error(
                "discord.session.login_failed",
                error=self._last_error,
                attempt=self.attempt,
                max_attempts=self.max_attempts,
            )
            if self.attempt >= self.max_attempts:
                self._fail("max connection attempts reached")
            else:
                self._set_state(SessionState.DISCONNECTED)
            return False

        self._task = asyncio.create_task(self._supervise(), name="discord-session")
        return True

    async def ensure_connected(self, timeout_s: float | None = None) -> bool:
        """Return once the session is ready, or False after ``timeout_s``."""
        if self.is_ready():
            return True
        if not self.connecting:
            if not await self.connect():
                return False

        timeout = self.config.ready_timeout_s if timeout_s is None else timeout_s
        interval = self.config.ready_poll_interval_s
        for _ in range(max(1, math.ceil(timeout / interval))):
            if self.is_ready():
                return True
            await asyncio.sleep(interval)

        ready = self.is_ready()
        if not ready:
            logger.warning("discord.session.ready_timeout", timeout_s=timeout, state=self.state.value)
        return ready

    async def stop(self) -> None:
        """Cancel pending retries and close the gateway."""
        self._stopping = True
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if not self.client.is_closed():
            await self.client.close()
        if self.state is not SessionState.FAILED:
            self._set_state(SessionState.DISCONNECTED)
        logger.info("discord.session.stopped")

    async def text_channel(self) -> Any | None:
        """Resolve the configured approval channel."""
        channel_id = int(self.config.channel_id)
        channel = self.client.get_channel(channel_id)
        if channel is None:
            try:
                channel = await self.client.fetch_channel(channel_id)
            except TRANSPORT_ERRORS as exc:
                logger.error("discord.session.channel_fetch_failed", channel_id=channel_id, error=str(exc))
                return None
        if not hasattr(channel, "send") or not hasattr(channel, "fetch_message"):
            logger.error("discord.session.channel_not_textual", channel_id=channel_id)
            return None
        return channel

    async def _login(self) -> None:
        if self.client.is_closed():
            # a closed discord.py client must be reset before it can log in again
            self.client.clear()
        await self.client.login(self.config.bot_token.strip())

    async def _supervise(self) -> None:
        while not self._stopping:
            try:
                await self.client.connect(reconnect=False)
                reason = "gateway closed"
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                reason = str(exc) or type(exc).__name__

            if self._stopping:
                break

            self._last_error = reason
            self._set_state(SessionState.DISCONNECTED)
            logger.warning("discord.session.dropped", reason=reason, attempt=self.attempt)
            if not await self._reconnect():
                break

    async def _reconnect(self) -> bool:
        while not self._stopping:
            if self.attempt >= self.max_attempts:
                self._fail("max reconnect attempts reached")
                return False

            self.attempt += 1
            self._set_state(SessionState.CONNECTING)
            logger.info(
                "discord.session.reconnect_scheduled",
                attempt=self.attempt,
                max_attempts=self.max_attempts,
                delay_s=self.config.reconnect_delay_s,
            )
            await asyncio.sleep(self.config.reconnect_delay_s)

            try:
                await self._login()
                return True
            except asyncio.CancelledError:
                raise
            except discord.LoginFailure as exc:
                self._fail(f"login rejected: {exc}")
                return False
            except Exception as exc:
                self._last_error = str(exc) or type(exc).__name__
                logger.error(
                    "discord.session.reconnect_failed",
                    attempt=self.attempt,
                    error=self._last_error,
                )
        return False

    def _mark_ready(self) -> None:
        self.attempt = 0
        self._ready_at = datetime.now(UTC).isoformat()
        self._set_state(SessionState.READY)
        logger.info("discord.session.ready")

    def _fail(self, reason: str) -> None:
        self._last_error = reason
        self._set_state(SessionState.FAILED)
        logger.error(
            "discord.session.gave_up",
            reason=reason,
            attempt=self.attempt,
            max_attempts=self.max_attempts,
            hint="restart the process to retry",
        )

    def _set_state(self, state: SessionState) -> None:
        if state is not self.state:
            logger.debug("discord.session.state", previous=self.state.value, current=state.value)
        self.state = state
