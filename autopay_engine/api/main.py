"""FastAPI application factory"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from sqlalchemy.engine import Engine as DatabaseEngine
from starlette.responses import Response

from autopay_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from autopay_engine.api.v1 import gas, risk, route, subscription, tools
from autopay_engine.config import Settings, settings
from autopay_engine.infrastructure.database import session
from autopay_engine.infrastructure.database.models import Base
from autopay_engine.infrastructure.observability.logging import setup_logging
from autopay_engine.services.engine import Engine, build_engine

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


def create_app(
    engine: Optional[Engine] = None,
    config: Settings = settings,
    bind: Optional[DatabaseEngine] = None,
) -> FastAPI:
    """Create and configure FastAPI application"""
    bind = bind or session.engine

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if config.auto_create_tables:
            Base.metadata.create_all(bind=bind)

        stop = asyncio.Event()
        scheduler_task = None
        if config.scheduler_enabled:
            scheduler_task = asyncio.create_task(app.state.engine.scheduler.run_forever(stop))

        yield

        stop.set()
        if scheduler_task is not None:
            await scheduler_task

    app = FastAPI(
        title="AutoPay Engine",
        description="Recurring cross-chain payments: routing, gas, risk, and scheduled execution",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.engine = engine or build_engine(config, session.SessionLocal)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": config.service_name}

    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(subscription.router, prefix="/v1", tags=["subscriptions"])
    app.include_router(route.router, prefix="/v1", tags=["routes"])
    app.include_router(gas.router, prefix="/v1", tags=["gas"])
    app.include_router(risk.router, prefix="/v1", tags=["risk"])
    app.include_router(tools.router, prefix="/mcp", tags=["tools"])

    return app


app = create_app()
