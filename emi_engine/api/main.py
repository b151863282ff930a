"""FastAPI application factory"""

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from emi_engine.api.middleware import RequestIDMiddleware, MetricsMiddleware
from emi_engine.api.v1 import applications, batch, ledger, plans
from emi_engine.infrastructure.observability.logging import setup_logging
from emi_engine.config import settings

# Setup structured logging
setup_logging(settings.log_level)


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="EMI Engine",
        description="EMI installment lifecycle, penalty ledger and reminder batch",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

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
    app.include_router(plans.router, prefix="/v1", tags=["plans"])
    app.include_router(applications.router, prefix="/v1", tags=["applications"])
    app.include_router(ledger.router, prefix="/v1", tags=["ledger"])
    app.include_router(batch.router, prefix="/v1", tags=["batch"])

    return app


app = create_app()
