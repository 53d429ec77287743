"""REST endpoints for health and ephemeral session tokens."""
import time
from datetime import datetime, timezone
from typing import AsyncIterator

import httpx
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from voice_agent.core.config import settings
from voice_agent.core.logging import logger

router = APIRouter(prefix="/api")

_started_at = time.monotonic()


async def get_upstream_client() -> AsyncIterator[httpx.AsyncClient]:
    """HTTP client for the upstream realtime API."""
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as client:
        yield client


@router.get("/health")
async def health_check():
    """
    Health check endpoint.

    Returns:
        Status, uptime and the configured model/voice
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": round(time.monotonic() - _started_at, 3),
        "config": {
            "model": settings.model_name,
            "voice": settings.voice_id,
            "port": settings.port,
        },
    }


@router.get("/session")
async def create_session_token(client: httpx.AsyncClient = Depends(get_upstream_client)):
    """
    Mint an ephemeral realtime session token.

    Stateless pass-through: the upstream body is relayed unchanged on
    success, and upstream failures are relayed with their status code.
    """
    try:
        response = await client.post(
            f"{settings.openai_base_url}/realtime/sessions",
            headers={
                "Authorization": f"Bearer {settings.openai_api_key}",
                "Content-Type": "application/json",
            },
            json={"model": settings.model_name, "voice": settings.voice_id},
        )
    except httpx.HTTPError as e:
        logger.error(f"Error generating ephemeral token: {e}")
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error while generating session token",
                "message": str(e),
            },
        )

    if response.status_code >= 400:
        logger.error(f"Upstream API error: {response.status_code} {response.text[:200]}")
        return JSONResponse(
            status_code=response.status_code,
            content={
                "error": f"Upstream API Error: {response.status_code} {response.reason_phrase}",
                "details": response.text,
            },
        )

    session_data = response.json()
    # Never log the token itself.
    logger.info(f"Ephemeral token generated successfully for model: {session_data.get('model')}")
    return session_data
