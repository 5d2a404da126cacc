"""API key and relay secret checks."""

from __future__ import annotations

import secrets

import structlog
from fastapi import Header, HTTPException, Request, Security
from fastapi.security import APIKeyHeader

logger = structlog.get_logger()

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


async def verify_api_key(
    request: Request,
    api_key: str | None = Security(_api_key_header),
) -> str | None:
    """Verify the API key if auth is enabled."""
    config_key = request.app.state.config.api_key

    # No auth configured, allow all
    if not config_key:
        return None

    if not api_key:
        logger.warning("auth.missing_key", path=request.url.path)
        raise HTTPException(status_code=401, detail="Missing API key. Provide X-API-Key header.")

    if not secrets.compare_digest(api_key, config_key):
        logger.warning("auth.invalid_key", path=request.url.path)
        raise HTTPException(status_code=403, detail="Invalid API key.")

    return api_key


async def verify_relay_secret(
    request: Request,
    x_fidelity_relay_secret: str | None = Header(default=None),
) -> None:
    """Guard the interaction relay when a shared secret is configured."""
    expected = request.app.state.config.discord.relay_secret.strip()
    if not expected:
        return
    if not secrets.compare_digest((x_fidelity_relay_secret or "").strip(), expected):
        logger.warning("auth.invalid_relay_secret", path=request.url.path)
        raise HTTPException(status_code=401, detail="Invalid relay secret")
