"""Entry point for the call session orchestrator service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import shutdown_orchestrator
from api.routes import router as api_router
from api.webhook_routes import router as webhook_router
from calls.errors import CallError
from config.settings import get_settings

LOGGER = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await shutdown_orchestrator()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Call Session Orchestrator",
    description="Bridges telephony providers to a speech pipeline for agent-driven phone calls.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")
app.include_router(webhook_router, prefix="/api")


@app.exception_handler(CallError)
async def call_error_handler(request: Request, exc: CallError) -> JSONResponse:
    LOGGER.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.api_route(
    "/{path:path}",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"],
    include_in_schema=False,
)
async def fallback(path: str) -> JSONResponse:
    return JSONResponse({"status": "ok"})
