"""FastAPI entry point for the Syllabind generation service."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.settings import get_settings
from services.middleware import RequestIdMiddleware
from services.syllabind_store import get_syllabind_store
from services.url_validator import close_url_validator

logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle — start/stop shared resources."""
    get_syllabind_store()
    if not settings.anthropic_api_key:
        logger.warning("ANTHROPIC_API_KEY is not set; only ?mock=true generation will work")
    if not settings.session_secret:
        logger.warning("SESSION_SECRET is not set; every socket will be rejected with 4401")

    yield

    await close_url_validator()


app = FastAPI(
    title="Syllabind Generator",
    description="AI Syllabind generation orchestrator (WebSocket + Claude tool use)",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware stack (outermost first) ─────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

# ── Register routers ────────────────────────────────────────
from api.generation import router as generation_router  # noqa: E402
from api.generation_ws import router as generation_ws_router  # noqa: E402
from api.health import router as health_router  # noqa: E402

app.include_router(health_router)
app.include_router(generation_router)
app.include_router(generation_ws_router)


if __name__ == "__main__":
    if settings.debug:
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            reload=True,
        )
    else:
        # Production: gunicorn main:app -c deploy/gunicorn.conf.py
        uvicorn.run(
            "main:app",
            host="0.0.0.0",
            port=settings.service_port,
            timeout_keep_alive=75,
        )
