"""
habitloop.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn habitloop.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from habitloop.api.deps import get_config, get_engine, get_hub  # noqa: E402
from habitloop.api.routes.challenges import router as challenges_router  # noqa: E402
from habitloop.api.routes.chat import router as chat_router  # noqa: E402
from habitloop.api.routes.profile import router as profile_router  # noqa: E402
from habitloop.api.routes.rewards import router as rewards_router  # noqa: E402
from habitloop.api.routes.stats import router as stats_router  # noqa: E402
from habitloop.engine.chat_hub import ChatListener  # noqa: E402
from habitloop.errors import DomainError, StoreUnavailable  # noqa: E402
from habitloop.services.chat_service import load_message  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) ``cors_origins`` from config.yaml
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return [origin.rstrip("/") for origin in get_config().cors_origins]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — warm the engine, start the chat listener."""
    engine = get_engine()
    listener: ChatListener | None = None
    if engine.dialect.name == "postgresql":
        listener = ChatListener(engine, get_hub(), load_message)
        listener.start()
    logger.info("HabitLoop API started — engine ready (%s)", engine.url.database)
    yield
    if listener is not None:
        listener.stop()
    logger.info("HabitLoop API shutting down")


app = FastAPI(
    title="HabitLoop API",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DomainError)
async def domain_error_handler(_request: Request, exc: DomainError) -> JSONResponse:
    """Expected failures → 4xx with a machine-readable code."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


@app.exception_handler(StoreUnavailable)
async def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": "Storage temporarily unavailable", "code": exc.code},
    )


# Mount routers
app.include_router(challenges_router, prefix="/api")
app.include_router(rewards_router, prefix="/api")
app.include_router(profile_router, prefix="/api")
app.include_router(chat_router, prefix="/api")
app.include_router(stats_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
