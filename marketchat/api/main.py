"""
marketchat.api.main — FastAPI application entry point
========================================================

Run with::

    uvicorn marketchat.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from marketchat.api.deps import get_config, get_engine  # noqa: E402
from marketchat.api.routes.chat import router as chat_router  # noqa: E402
from marketchat.api.routes.chat import ws_router  # noqa: E402
from marketchat.database.engine import init_db  # noqa: E402
from marketchat.engine.relay import MessageRelay  # noqa: E402
from marketchat.services.chat_store import SqlChatStore  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) FRONTEND_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    frontend_url = os.getenv("FRONTEND_URL", "").strip()
    if frontend_url:
        return [frontend_url.rstrip("/")]

    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle: build the relay over a warm engine.

    A relay already installed on ``app.state`` (tests, embedding) is kept.
    """
    cfg = get_config()
    if getattr(app.state, "relay", None) is None:
        engine = get_engine()
        init_db(engine)
        app.state.relay = MessageRelay(SqlChatStore(engine), cfg)
        logger.info("%s started (%s)", cfg.service_name, engine.url.database)
    yield
    stats = app.state.relay.chat_stats()
    logger.info(
        "%s shutting down with %d connected users", cfg.service_name, stats["total_connected"]
    )


app = FastAPI(
    title="Analyst Marketplace Chat",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat_router, prefix="/api")
app.include_router(ws_router)


@app.get("/api/health")
def health():
    return {"status": "ok"}
