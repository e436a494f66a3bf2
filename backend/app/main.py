"""
Drue Backend API
FastAPI application for Gmail push notifications and mailbox actions.
"""

import logging
import os
from typing import List

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.errors import ApiError, api_error_handler
from app.routers import gmail, me
from app.services.push_pipeline import get_dispatcher

# Configure logging to output to console
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Drue API",
    description="Gmail push-notification ingestion and mailbox actions",
    version="0.1.0",
)


def get_cors_origins() -> List[str]:
    """
    Build the list of allowed CORS origins.

    Always includes http://localhost:5173 (Vite dev server). Additional
    origins are read from the CORS_ORIGINS environment variable as a
    comma-separated list, e.g.:
        CORS_ORIGINS=https://drue.app,https://preview.drue.app

    Duplicates are removed while preserving order.
    """
    always_included = ["http://localhost:5173"]

    extra_origins: List[str] = []
    cors_env = os.getenv("CORS_ORIGINS", "").strip()
    if cors_env:
        extra_origins = [o.strip() for o in cors_env.split(",") if o.strip()]

    # Deduplicate while preserving order
    seen: set = set()
    origins: List[str] = []
    for origin in always_included + extra_origins:
        if origin not in seen:
            seen.add(origin)
            origins.append(origin)

    return origins


# CORS configuration: origins are resolved at startup from environment
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(ApiError, api_error_handler)

# Include routers
app.include_router(gmail.router, prefix="/api/gmail", tags=["gmail"])
app.include_router(me.router, prefix="/api/me", tags=["me"])


@app.on_event("startup")
async def log_startup_url() -> None:
    """
    Log the URL the API is accessible at.

    The port is taken from ``HOST_PORT`` so Docker-mapped ports are reported
    correctly. Defaults to 8000.
    """
    host_port = os.getenv("HOST_PORT", "8000")
    logger.info("Drue API running at http://localhost:%s", host_port)


@app.on_event("shutdown")
async def drain_push_notifications() -> None:
    """Let in-flight Gmail syncs finish before the process exits."""
    dispatcher = get_dispatcher()
    if dispatcher.pending:
        logger.info("Waiting for %d in-flight Gmail sync(s)", dispatcher.pending)
    await dispatcher.drain()


@app.get("/")
async def root():
    return {"service": "drue-api", "status": "running"}


@app.get("/health")
async def health():
    return {"ok": True, "service": "drue-api"}
