"""FastAPI application factory"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.orm import sessionmaker
from starlette.responses import Response

from paydesk.api.middleware import RequestIDMiddleware, MetricsMiddleware
from paydesk.api.v1 import installments, notifications, sales
from paydesk.config import Settings, settings as default_settings
from paydesk.infrastructure.database.session import build_engine, build_session_factory, init_db
from paydesk.infrastructure.observability.logging import setup_logging
from paydesk.services.event_channel import EventChannel
from paydesk.services.installment_ledger import InstallmentLedger
from paydesk.services.notification_scheduler import NotificationScheduler
from paydesk.services.sales_service import SalesService
from paydesk.utils.date_utils import utcnow

# Setup structured logging
setup_logging(default_settings.log_level)


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """
    Create and configure FastAPI application.

    The ledger, sales service, scheduler and event channel are built once
    here and shared through app.state. The scheduler loop runs for the
    lifetime of the app when enabled.
    """
    settings = settings or default_settings
    if session_factory is None:
        session_factory = build_session_factory(build_engine(settings.database_url))

    channel = EventChannel(settings.event_buffer_size)
    scheduler = NotificationScheduler(session_factory, channel, settings, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(session_factory.kw["bind"])
        stop_event = asyncio.Event()
        task = None
        if settings.scheduler_enabled:
            task = asyncio.create_task(scheduler.run(stop_event))
        yield
        stop_event.set()
        if task is not None:
            await task
            logging.info("Scheduler task finished")

    app = FastAPI(
        title="Paydesk",
        description="Installment payment ledger and operational notifications",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.clock = clock
    app.state.session_factory = session_factory
    app.state.event_channel = channel
    app.state.scheduler = scheduler
    app.state.ledger = InstallmentLedger(session_factory, clock)
    app.state.sales_service = SalesService(session_factory, scheduler, clock)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(sales.router, prefix="/v1", tags=["sales"])
    app.include_router(installments.router, prefix="/v1", tags=["installments"])
    app.include_router(notifications.router, prefix="/v1", tags=["notifications"])

    return app


app = create_app()
