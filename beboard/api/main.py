"""
beboard.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn beboard.api.main:app --reload --port 8000
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from beboard.api.auth import router as auth_router  # noqa: E402
from beboard.api.deps import get_cache, get_clock, get_config, get_engine, get_hub  # noqa: E402
from beboard.api.rate_limit import configure_rate_limiter  # noqa: E402
from beboard.api.routes.admin import router as admin_router  # noqa: E402
from beboard.api.routes.categories import router as categories_router  # noqa: E402
from beboard.api.routes.challenges import router as challenges_router  # noqa: E402
from beboard.api.routes.comments import router as comments_router  # noqa: E402
from beboard.api.routes.friends import router as friends_router  # noqa: E402
from beboard.api.routes.notifications import router as notifications_router  # noqa: E402
from beboard.api.routes.posts import router as posts_router  # noqa: E402
from beboard.api.routes.users import router as users_router  # noqa: E402
from beboard.database.engine import run_db  # noqa: E402
from beboard.engine import cache as cache_mod  # noqa: E402
from beboard.engine import notifications as notifications_mod  # noqa: E402
from beboard.engine.listener import PgNotifyListener  # noqa: E402
from beboard.errors import BoardError  # noqa: E402
from beboard.services.challenge_service import start_due_challenges  # noqa: E402

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
    datefmt="%H:%M:%S",
)
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


async def _challenge_starter(engine, clock, interval: int) -> None:
    """Periodically move due RECRUITING challenges to IN_PROGRESS."""
    while True:
        try:
            await run_db(start_due_challenges, engine, clock=clock)
        except Exception:
            logger.exception("Challenge auto-start sweep failed")
        await asyncio.sleep(interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown: rate limiter, LISTEN thread, auto-start loop."""
    engine = get_engine()
    cfg = get_config()
    hub = get_hub()
    hub.bind_loop(asyncio.get_running_loop())
    configure_rate_limiter(
        engine=engine,
        max_requests=cfg.admin_rate_limit,
        window_seconds=cfg.admin_rate_limit_window_seconds,
        clock=get_clock(),
    )

    listener = None
    if engine.dialect.name == "postgresql":
        listener = PgNotifyListener(engine)
        listener.register(notifications_mod.NOTIFY_CHANNEL, hub.handle_notify)
        listener.register(cache_mod.NOTIFY_CHANNEL, get_cache().handle_notify)
        listener.start()

    starter = asyncio.create_task(
        _challenge_starter(engine, get_clock(), cfg.challenge_start_interval_seconds)
    )
    logger.info("BeBoard API started — engine ready (%s)", engine.url.database)
    yield

    starter.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await starter
    if listener is not None:
        listener.stop()
    logger.info("BeBoard API shutting down")


app = FastAPI(
    title="BeBoard API",
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


@app.exception_handler(BoardError)
async def board_error_handler(request: Request, exc: BoardError) -> JSONResponse:
    logger.debug("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": str(exc)},
    )


app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(categories_router, prefix="/api")
app.include_router(posts_router, prefix="/api")
app.include_router(comments_router, prefix="/api")
app.include_router(challenges_router, prefix="/api")
app.include_router(friends_router, prefix="/api")
app.include_router(notifications_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
