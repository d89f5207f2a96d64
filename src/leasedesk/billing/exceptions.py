"""
Billing system exceptions.

Custom exceptions for billing operations with clear error messages.
Each error carries an HTTP status code, a machine-readable error code,
context and a recovery hint.
"""

from typing import Any


class BillingError(Exception):
    """
    Base billing system error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "BILLING_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class PaymentValidationError(BillingError):
    """Bad input, rejected before any side effect."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message,
            "VALIDATION_ERROR",
            status_code=400,
            context=context,
            recovery_hint=recovery_hint,
        )


class RefundNotAllowedError(PaymentValidationError):
    """Payment is not eligible for a processor refund."""

    def __init__(self, message: str, payment_id: str, status: str | None = None) -> None:
        context: dict[str, Any] = {"payment_id": payment_id}
        if status:
            context["status"] = status

        super().__init__(
            message,
            context=context,
            recovery_hint="Only completed processor payments can be refunded",
        )
        self.error_code = "REFUND_NOT_ALLOWED"


class BillingNotFoundError(BillingError):
    """Base class for missing tenant/payment/enrollment errors."""

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        super().__init__(
            message, "NOT_FOUND", status_code=404, context=context, recovery_hint=recovery_hint
        )


class PaymentNotFoundError(BillingNotFoundError):
    """Payment not found error."""

    def __init__(self, message: str, payment_id: str | None = None) -> None:
        context = {}
        if payment_id:
            context["payment_id"] = payment_id

        super().__init__(
            message, context=context, recovery_hint="Verify the payment ID and ensure it exists"
        )
        self.error_code = "PAYMENT_NOT_FOUND"


class TenantNotFoundError(BillingNotFoundError):
    """Tenant not found error."""

    def __init__(self, message: str, tenant_id: str | None = None, user_id: str | None = None):
        context = {}
        if tenant_id:
            context["tenant_id"] = tenant_id
        if user_id:
            context["user_id"] = user_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the tenant exists and has an active lease",
        )
        self.error_code = "TENANT_NOT_FOUND"


class EnrollmentNotFoundError(BillingNotFoundError):
    """Autopay enrollment not found error."""

    def __init__(self, message: str, tenant_id: str | None = None) -> None:
        context = {}
        if tenant_id:
            context["tenant_id"] = tenant_id

        super().__init__(message, context=context, recovery_hint="Enroll in autopay first")
        self.error_code = "ENROLLMENT_NOT_FOUND"


class PaymentMethodNotFoundError(BillingNotFoundError):
    """Saved payment method not found or not usable."""

    def __init__(self, message: str, payment_method_id: str | None = None) -> None:
        context = {}
        if payment_method_id:
            context["payment_method_id"] = payment_method_id

        super().__init__(
            message,
            context=context,
            recovery_hint="Verify the payment method belongs to you and is active",
        )
        self.error_code = "PAYMENT_METHOD_NOT_FOUND"


class DuplicatePaymentError(BillingError):
    """A live payment already exists for the tenant and billing period."""

    def __init__(
        self,
        message: str,
        tenant_id: str,
        existing_payment_id: str | None = None,
        existing_status: str | None = None,
    ):
        context: dict[str, Any] = {"tenant_id": tenant_id}
        if existing_payment_id:
            context["existing_payment_id"] = existing_payment_id
        if existing_status:
            context["status"] = existing_status

        super().__init__(
            message,
            "DUPLICATE_PAYMENT",
            status_code=409,
            context=context,
            recovery_hint="Wait for the existing payment to settle or fail before retrying",
        )


class ProcessorError(BillingError):
    """The remote payment processor rejected the request or was unreachable."""

    def __init__(
        self,
        message: str,
        processor_code: str | None = None,
        operation: str | None = None,
    ):
        context = {}
        if processor_code:
            context["processor_code"] = processor_code
        if operation:
            context["operation"] = operation

        super().__init__(
            message,
            "PROCESSOR_ERROR",
            status_code=502,
            context=context,
            recovery_hint="Retry the payment or use a different payment method",
        )
        self.processor_code = processor_code


class SignatureInvalidError(BillingError):
    """Webhook authenticity check failed."""

    def __init__(self, message: str = "Invalid webhook signature") -> None:
        super().__init__(
            message,
            "SIGNATURE_INVALID",
            status_code=400,
            recovery_hint="Check the webhook signing secret",
        )


class LedgerInconsistencyError(BillingError):
    """Processor action succeeded but the local ledger could not be updated."""

    def __init__(
        self,
        message: str,
        payment_id: str,
        processor_reference: str | None = None,
    ):
        context = {"payment_id": payment_id}
        if processor_reference:
            context["processor_reference"] = processor_reference

        super().__init__(
            message,
            "LEDGER_INCONSISTENCY",
            status_code=500,
            context=context,
            recovery_hint="Reconcile the payment manually against the processor dashboard",
        )
        self.payment_id = payment_id
        self.processor_reference = processor_reference


class BillingConfigurationError(BillingError):
    """Billing configuration errors."""

    def __init__(
        self, message: str, config_key: str | None = None, recovery_hint: str | None = None
    ):
        context = {}
        if config_key:
            context["config_key"] = config_key

        super().__init__(
            message,
            "BILLING_CONFIG_ERROR",
            status_code=500,
            context=context,
            recovery_hint=recovery_hint or "Check billing configuration settings",
        )


class BillingAuthorizationError(BillingError):
    """Caller may not act on this tenant's billing records."""

    def __init__(self, message: str = "Forbidden", tenant_id: str | None = None) -> None:
        context = {}
        if tenant_id:
            context["tenant_id"] = tenant_id

        super().__init__(message, "FORBIDDEN", status_code=403, context=context)
