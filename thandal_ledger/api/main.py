"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from thandal_ledger.api.dependencies import get_clock
from thandal_ledger.api.middleware import RequestIDMiddleware, MetricsMiddleware
from thandal_ledger.api.v1 import capital, loans, repayments, risk
from thandal_ledger.infrastructure.database.session import SessionLocal
from thandal_ledger.infrastructure.observability.logging import setup_logging
from thandal_ledger.services.scheduler import DayCloseScheduler
from thandal_ledger.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Thandal Ledger",
        description="Daily-installment repayment ledger, day-close and capital tracking",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    scheduler = DayCloseScheduler(settings=settings, session_factory=SessionLocal, clock=get_clock())
    app.state.day_close_scheduler = scheduler

    @app.on_event("startup")
    async def start_scheduler():
        await app.state.day_close_scheduler.start()

    @app.on_event("shutdown")
    async def stop_scheduler():
        await app.state.day_close_scheduler.stop()

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(loans.router, prefix="/v1", tags=["loans"])
    app.include_router(repayments.router, prefix="/v1", tags=["repayments"])
    app.include_router(capital.router, prefix="/v1", tags=["capital"])
    app.include_router(risk.router, prefix="/v1", tags=["risk"])

    return app


app = create_app()
