"""FastAPI application entrypoint.

All routes prefixed /v1. Auto-generated OpenAPI docs at /docs.

The SupportDesk (unit-of-work factory + notifier + event bus), the
RoutingHub and the TimeoutSupervisor are created once during the lifespan
and stored on app.state for injection via Depends().
"""

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from livedesk.api.v1.chat import router as chat_router
from livedesk.api.v1.health import router as health_router
from livedesk.api.v1.operators import router as operators_router
from livedesk.api.v1.tickets import router as tickets_router
from livedesk.api.websocket import router as websocket_router
from livedesk.core.config import settings
from livedesk.core.exceptions import LiveDeskError
from livedesk.db.postgres import async_session_factory, close_postgres
from livedesk.realtime.hub import RoutingHub
from livedesk.services.desk import SupportDesk
from livedesk.services.notifications import Notifier
from livedesk.services.supervisor import TimeoutSupervisor


def _configure_logging() -> None:
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


_configure_logging()

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle.

    Wires the desk, hub and supervisor and attaches them to app.state.
    Retrieved in request handlers via Depends() in livedesk/api/deps.py.
    """
    # --- Startup ---
    logger.info("app_startup", env=settings.app_env)

    notifier = Notifier(
        webhook_url=settings.notification_webhook_url,
        timeout_seconds=settings.notification_timeout_seconds,
        max_retries=settings.notification_max_retries,
    )
    desk = SupportDesk(async_session_factory, notifier=notifier, config=settings)
    app.state.desk = desk
    app.state.hub = RoutingHub(desk)

    supervisor = TimeoutSupervisor(desk)
    supervisor.start()
    app.state.supervisor = supervisor

    logger.info("app_services_ready")
    yield

    # --- Shutdown ---
    logger.info("app_shutdown")

    supervisor.shutdown()
    await notifier.aclose()
    await close_postgres()


app = FastAPI(
    title="LiveDesk Support Session API",
    description="Live operator queue, presence tracking and escalation to tickets.",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS: permissive for development, locked down in production
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if not settings.is_production else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LiveDeskError)
async def livedesk_error_handler(request: Request, exc: LiveDeskError) -> JSONResponse:
    """Structured error response for all LiveDesk exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


# Mount all v1 routers
app.include_router(health_router, prefix="/v1")
app.include_router(chat_router, prefix="/v1")
app.include_router(operators_router, prefix="/v1")
app.include_router(tickets_router, prefix="/v1")
app.include_router(websocket_router, prefix="/v1")
