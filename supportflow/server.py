"""FastAPI server for the SupportFlow support agent.

Run with:
    uvicorn supportflow.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from supportflow.api.routes import router
from supportflow.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from supportflow.runtime import open_runtime
from supportflow.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Open storage and provider clients once and share them via app state."""
    logger.info("Opening SupportFlow runtime…")
    application.state.runtime = await open_runtime()
    logger.info("Agent ready.")
    try:
        yield
    finally:
        runtime = application.state.runtime
        application.state.runtime = None
        await runtime.aclose()
        metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="SupportFlow",
    description=(
        "Customer support agent for the ShopHub store: answers questions from "
        "the help-center knowledge base and looks up orders and products."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (needed for the chat widget) ───────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header so the client
    can quote it in support tickets.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "SupportFlow",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
        "stream": "/api/chat/stream",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting SupportFlow API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "supportflow.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
