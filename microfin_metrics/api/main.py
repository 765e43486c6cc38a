"""FastAPI application factory"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from microfin_metrics.api.middleware import RequestIDMiddleware, MetricsMiddleware
from microfin_metrics.api.v1 import events, metrics, snapshots
from microfin_metrics.infrastructure.clients.webhook import DashboardWebhookClient
from microfin_metrics.infrastructure.notifications.bus import WebhookForwarder, metrics_bus
from microfin_metrics.infrastructure.observability.logging import setup_logging
from microfin_metrics.config import settings

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Live dashboards get pushed every ledger write when a webhook is configured
    unsubscribe = None
    if settings.dashboard_webhook_url:
        unsubscribe = metrics_bus.subscribe(WebhookForwarder(DashboardWebhookClient()))
    yield
    if unsubscribe is not None:
        unsubscribe()


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Microfinance Metrics Engine",
        description="Metric ledger, branch snapshots and financial reporting",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def prometheus_metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(metrics.router, prefix="/v1", tags=["metrics"])
    app.include_router(events.router, prefix="/v1", tags=["events"])
    app.include_router(snapshots.router, prefix="/v1", tags=["snapshots"])

    return app


app = create_app()
