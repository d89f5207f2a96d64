"""Authentication helpers for the billing API."""

from leasedesk.auth.core import (
    JWTService,
    Role,
    UserInfo,
    get_current_user,
    jwt_service,
    require_admin,
    require_tenant,
    verify_cron_secret,
)

__all__ = [
    "JWTService",
    "Role",
    "UserInfo",
    "get_current_user",
    "jwt_service",
    "require_admin",
    "require_tenant",
    "verify_cron_secret",
]
