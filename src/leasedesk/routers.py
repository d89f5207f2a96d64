"""
Centralized router registration for all API endpoints.

Authentication is declared per endpoint: tenants and admins use JWT bearer
tokens, the batch trigger uses the cron secret and the webhook endpoint is
authenticated by its signature.
"""

import importlib
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import FastAPI

logger = structlog.get_logger(__name__)


@dataclass
class RouterConfig:
    """Configuration for a router to be registered."""

    module_path: str
    router_name: str
    prefix: str
    tags: Sequence[str] | None
    description: str = ""


ROUTER_CONFIGS = [
    RouterConfig(
        module_path="leasedesk.billing.payments.router",
        router_name="router",
        prefix="/api/v1",
        tags=["Billing - Payments"],
        description="Checkout, manual payments, refunds and payment history",
    ),
    RouterConfig(
        module_path="leasedesk.billing.autopay.router",
        router_name="router",
        prefix="/api/v1",
        tags=["Billing - Autopay"],
        description="Autopay enrollment and the monthly batch trigger",
    ),
    RouterConfig(
        module_path="leasedesk.billing.webhooks.router",
        router_name="router",
        prefix="/api/v1",
        tags=["Billing - Webhooks"],
        description="Payment processor webhooks",
    ),
]


def _register_router(app: FastAPI, config: RouterConfig) -> None:
    """Import a router module and mount its router on the application."""
    module = importlib.import_module(config.module_path)
    router = getattr(module, config.router_name)

    router_tags = list(config.tags) if config.tags is not None else None
    app.include_router(router, prefix=config.prefix, tags=router_tags)
    logger.info(
        "router.registered",
        module=config.module_path,
        prefix=config.prefix,
        description=config.description,
    )


def register_routers(app: FastAPI) -> None:
    """Register every configured router."""
    for config in ROUTER_CONFIGS:
        _register_router(app, config)
    logger.info("routers.registration.complete", count=len(ROUTER_CONFIGS))


def get_api_info() -> dict[str, Any]:
    """Summary of the mounted API surface."""
    return {
        "version": "v1",
        "endpoints": {
            config.module_path.rsplit(".", 2)[-2]: config.description for config in ROUTER_CONFIGS
        },
    }
