"""FastAPI application entrypoint."""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from voice_agent.api import rest_status
from voice_agent.core.config import settings
from voice_agent.core.logging import setup_logging

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="Realtime Voice Agent",
    description="Ephemeral token issuer and health endpoint for realtime voice sessions",
    version="0.1.0"
)

# Browser clients fetch session tokens cross-origin; no cookies are involved
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["*"],
)

# Include routers
app.include_router(rest_status.router)


@app.on_event("startup")
async def startup_event():
    """Log configuration on startup."""
    from voice_agent.core.logging import logger

    logger.info(f"Starting Realtime Voice Agent on {settings.host}:{settings.port}")
    logger.info(f"Model: {settings.model_name}, Voice: {settings.voice_id}")
    if not settings.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; /api/session will be rejected upstream")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown."""
    from voice_agent.core.logging import logger
    logger.info("Shutting down Realtime Voice Agent")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "voice_agent.main:app",
        host=settings.host,
        port=settings.port,
        reload=True
    )
