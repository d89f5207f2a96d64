"""
Auth boundary for the billing API.

User accounts, sessions and role management live in the portal's auth service.
This module only verifies the bearer tokens it issues and exposes the
role checks the billing endpoints need.
"""

import hmac
from enum import Enum
from typing import Any, cast

import structlog
from authlib.jose import JoseError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict

from leasedesk.settings import settings

logger = structlog.get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


class Role(str, Enum):
    """Portal roles."""

    ADMIN = "admin"
    TENANT = "tenant"
    APPLICANT = "applicant"


class UserInfo(BaseModel):
    """User information decoded from an access token."""

    model_config = ConfigDict(extra="forbid")

    user_id: str
    role: Role
    email: str | None = None
    full_name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class JWTService:
    """Verifies access tokens issued by the portal auth service."""

    def __init__(self, secret: str | None = None, algorithm: str | None = None) -> None:
        self.secret = secret or settings.jwt.secret_key
        self.algorithm = algorithm or settings.jwt.algorithm
        self.header = {"alg": self.algorithm}

    def create_access_token(
        self, subject: str, additional_claims: dict[str, Any] | None = None
    ) -> str:
        """Create an access token (used by tooling and tests)."""
        data: dict[str, Any] = {"sub": subject, "iss": settings.jwt.issuer}
        if additional_claims:
            data.update(additional_claims)
        token = jwt.encode(self.header, data, self.secret)
        return token.decode("utf-8") if isinstance(token, bytes) else token

    def verify_token(self, token: str) -> dict[str, Any]:
        """Verify and decode a token.

        Raises:
            HTTPException: If the token is invalid or expired
        """
        try:
            claims_raw = jwt.decode(token, self.secret)
            claims_raw.validate()
            return cast(dict[str, Any], dict(claims_raw))
        except JoseError as e:
            logger.info("auth.token.invalid", error=str(e))
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or expired token",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e


jwt_service = JWTService()


def _claims_to_user_info(claims: dict[str, Any]) -> UserInfo:
    try:
        role = Role(claims.get("role", ""))
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role in token"
        ) from e

    return UserInfo(
        user_id=str(claims["sub"]),
        role=role,
        email=claims.get("email"),
        full_name=claims.get("name"),
    )


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> UserInfo:
    """Get current authenticated user from a Bearer token."""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    claims = jwt_service.verify_token(credentials.credentials)
    if "sub" not in claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has no subject")
    return _claims_to_user_info(claims)


async def require_admin(current_user: UserInfo = Depends(get_current_user)) -> UserInfo:
    """Allow only admin users."""
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden - Admin only")
    return current_user


async def require_tenant(current_user: UserInfo = Depends(get_current_user)) -> UserInfo:
    """Allow only tenant users."""
    if current_user.role != Role.TENANT:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Only tenants can manage autopay"
        )
    return current_user


async def verify_cron_secret(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """Authenticate the scheduled billing trigger against the shared cron secret."""
    expected = settings.billing.cron_secret
    if not expected:
        logger.error("auth.cron_secret.not_configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing trigger is not configured",
        )

    presented = credentials.credentials if credentials else ""
    if not hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
