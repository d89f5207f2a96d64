"""
Main FastAPI application entry point for the LeaseDesk billing service.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from leasedesk.billing.exceptions import BillingError
from leasedesk.logging import setup_logging
from leasedesk.routers import get_api_info, register_routers
from leasedesk.settings import settings


def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    """Render billing errors with their own status code and error payload."""
    logger = structlog.get_logger(__name__)
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "billing.request.error",
        path=request.url.path,
        error_code=exc.error_code,
        status_code=exc.status_code,
        error=exc.message,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle events."""
    setup_logging()
    logger = structlog.get_logger(__name__)
    logger.info(
        "service.startup.complete",
        service=settings.app_name,
        version=settings.app_version,
        environment=settings.environment.value,
    )

    yield

    logger.info("service.shutdown.complete")


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="LeaseDesk Billing",
        description="Rent payments, autopay billing and processor reconciliation",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
    )

    app.add_exception_handler(BillingError, billing_error_handler)
    register_routers(app)

    # Health check endpoint (public - no auth required)
    @app.get("/health")
    async def health_check() -> dict[str, Any]:
        """Health check endpoint for monitoring."""
        return {
            "status": "healthy",
            "version": settings.app_version,
            "environment": settings.environment.value,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get("/api/v1/info")
    async def api_v1_info() -> dict[str, Any]:
        """API info endpoint."""
        return get_api_info()

    return app


# Create application instance
app = create_application()


# For development server
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "leasedesk.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.observability.log_level.value.lower(),
    )
