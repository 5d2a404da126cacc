"""Discord bridge endpoints: interaction relay and session status."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, field_validator

from fidelity.api.middleware.auth import verify_relay_secret
from fidelity.errors import DiscordConfigError, FidelityError

logger = structlog.get_logger()

router = APIRouter()


class InteractionCallback(BaseModel):
    """Button click relayed to the bridge.

    Accepts both the current field names and the ones sent by the old relay.
    """

    action_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("actionId", "interactionId", "action_id"),
    )
    custom_id: str = Field(validation_alias=AliasChoices("customActionString", "customId", "custom_id"))
    message_id: str = Field(validation_alias=AliasChoices("remoteMessageId", "messageId", "message_id"))

    @field_validator("action_id", "custom_id", "message_id", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


@router.post("/api/discord/interactions")
async def discord_interaction(
    request: Request,
    body: InteractionCallback,
    _secret: None = Depends(verify_relay_secret),
) -> dict:
    interaction_router = request.app.state.interaction_router
    try:
        return await interaction_router.handle(body.custom_id, body.message_id)
    except FidelityError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception(
            "interactions.unexpected_error",
            custom_id=body.custom_id,
            message_id=body.message_id,
            action_id=body.action_id,
            error=str(exc),
        )
        raise HTTPException(status_code=500, detail="Server error") from exc


@router.get("/api/discord/status")
async def discord_status(request: Request) -> Any:
    session = request.app.state.discord_session
    try:
        session.require_config()
    except DiscordConfigError as exc:
        return JSONResponse(
            status_code=500,
            content={"connected": False, "config_error": True, "message": str(exc)},
        )

    if session.is_ready():
        return {"connected": True, "message": "Discord is connected"}

    logger.info("discord.status.connect_requested", state=session.state.value)
    success = await session.connect()
    status = session.status()
    return {
        "connected": session.is_ready(),
        "connecting": success or session.connecting,
        "state": status.state.value,
        "attempt": status.attempt,
        "max_attempts": status.max_attempts,
        "last_error": status.last_error,
        "message": "Connection started" if success else "Could not start a Discord connection",
    }
