"""
Billing module.

Rent payment lifecycle for the LeaseDesk tenant portal:
- Payment ledger with one live payment per tenant and billing period
- Stripe checkout, refunds and webhook reconciliation
- Monthly autopay batch with per-enrollment isolation
- Manual (cash, check, money order) payment entry
"""

from leasedesk.billing.exceptions import (
    BillingAuthorizationError,
    BillingConfigurationError,
    BillingError,
    DuplicatePaymentError,
    EnrollmentNotFoundError,
    LedgerInconsistencyError,
    PaymentMethodNotFoundError,
    PaymentNotFoundError,
    PaymentValidationError,
    ProcessorError,
    RefundNotAllowedError,
    SignatureInvalidError,
    TenantNotFoundError,
)

__all__ = [
    "BillingError",
    "BillingAuthorizationError",
    "BillingConfigurationError",
    "DuplicatePaymentError",
    "EnrollmentNotFoundError",
    "LedgerInconsistencyError",
    "PaymentMethodNotFoundError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "ProcessorError",
    "RefundNotAllowedError",
    "SignatureInvalidError",
    "TenantNotFoundError",
]
