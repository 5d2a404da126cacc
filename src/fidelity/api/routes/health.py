"""Health check endpoint."""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from fidelity import __version__

logger = structlog.get_logger()

router = APIRouter()

_start_time = time.time()


@router.get("/health")
async def health(request: Request) -> JSONResponse:
    """Database reachability plus the Discord session snapshot."""
    db = request.app.state.db
    session = request.app.state.discord_session

    try:
        db_ok = await db.ping()
    except Exception as exc:
        logger.error("health.db_failed", error=str(exc))
        db_ok = False

    status = session.status()
    body = {
        "status": "healthy" if db_ok else "unhealthy",
        "version": __version__,
        "uptime_seconds": round(time.time() - _start_time, 1),
        "database": "ok" if db_ok else "unreachable",
        "discord": {
            "configured": status.configured,
            "config_error": not status.configured,
            "state": status.state.value,
            "ready": status.ready,
            "attempt": status.attempt,
            "max_attempts": status.max_attempts,
            "last_error": status.last_error,
            "ready_at": status.ready_at,
        },
    }
    # Discord problems degrade the bridge only; the shop stays up
    return JSONResponse(status_code=200 if db_ok else 500, content=body)
