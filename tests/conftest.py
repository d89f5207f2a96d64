"""
Global pytest configuration and fixtures for the LeaseDesk billing tests.

Environment is configured before any ``leasedesk`` import so the settings
singleton picks up test values.
"""

import os
import sys

os.environ["ENVIRONMENT"] = "test"
os.environ.pop("DATABASE_URL", None)
os.environ["DATABASE__URL"] = "sqlite+aiosqlite:///./pytest-leasedesk.db"
os.environ["JWT__SECRET_KEY"] = "test-jwt-secret-key"
os.environ["BILLING__CRON_SECRET"] = "test-cron-secret"
os.environ["BILLING__STRIPE_API_KEY"] = "sk_test_leasedesk"
os.environ["BILLING__STRIPE_WEBHOOK_SECRET"] = "whsec_test_leasedesk"
os.environ["OBSERVABILITY__LOG_FORMAT"] = "console"

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest  # noqa: E402

from leasedesk.auth.core import Role, UserInfo, jwt_service  # noqa: E402
from leasedesk.billing.config import set_billing_config  # noqa: E402
from leasedesk.billing.metrics import set_billing_metrics  # noqa: E402


@pytest.fixture(autouse=True)
def reset_billing_globals():
    """Each test builds billing config and metrics from scratch."""
    set_billing_config(None)
    set_billing_metrics(None)
    yield
    set_billing_config(None)
    set_billing_metrics(None)


@pytest.fixture
def admin_user() -> UserInfo:
    return UserInfo(user_id="admin-1", role=Role.ADMIN, email="admin@leasedesk.test")


@pytest.fixture
def tenant_user() -> UserInfo:
    return UserInfo(
        user_id="user-1",
        role=Role.TENANT,
        email="tenant@leasedesk.test",
        full_name="Terry Tenant",
    )


@pytest.fixture
def other_tenant_user() -> UserInfo:
    return UserInfo(user_id="user-2", role=Role.TENANT, email="other@leasedesk.test")


def bearer_for(user: UserInfo) -> dict[str, str]:
    """Authorization header carrying a token for ``user``."""
    token = jwt_service.create_access_token(
        user.user_id,
        {"role": user.role.value, "email": user.email, "name": user.full_name},
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return bearer_for
