"""
Billing module configuration
"""

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class StripeConfig(BaseModel):
    """Stripe configuration"""

    model_config = ConfigDict()

    api_key: str = Field(..., description="Stripe API key")
    webhook_secret: str | None = Field(None, description="Stripe webhook secret")
    publishable_key: str | None = Field(None, description="Stripe publishable key")
    max_network_retries: int = Field(2, description="Client-side network retries")


class CurrencyConfig(BaseModel):
    """Currency configuration - Single currency support"""

    model_config = ConfigDict()

    default_currency: str = Field("USD", description="Default currency code")
    locale: str = Field("en_US", description="Locale used when formatting amounts")


class FeeConfig(BaseModel):
    """Processor fee schedule used for fee estimates."""

    model_config = ConfigDict()

    bank_fee_rate: Decimal = Field(Decimal("0.008"), description="Bank debit fee rate")
    bank_fee_cap_minor: int = Field(500, description="Bank debit fee cap in minor units")
    card_fee_rate: Decimal = Field(Decimal("0.029"), description="Card fee rate")
    card_fee_fixed_minor: int = Field(30, description="Card fixed fee in minor units")


class AutopayConfig(BaseModel):
    """Autopay configuration"""

    model_config = ConfigDict()

    default_discount: Decimal = Field(Decimal("25.00"), description="Default autopay discount")
    run_day: int = Field(1, ge=1, le=28, description="Day of month the batch runs")
    run_hour: int = Field(6, ge=0, le=23, description="Hour (UTC) the batch runs")


class BillingConfig(BaseModel):
    """Main billing configuration"""

    model_config = ConfigDict()

    stripe: StripeConfig | None = None
    currency: CurrencyConfig = Field(default_factory=CurrencyConfig)
    fees: FeeConfig = Field(default_factory=FeeConfig)
    autopay: AutopayConfig = Field(default_factory=AutopayConfig)

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """Create configuration from settings."""
        from leasedesk.settings import settings

        billing = settings.billing
        stripe_config = None
        if billing.stripe_api_key:
            stripe_config = StripeConfig(
                api_key=billing.stripe_api_key,
                webhook_secret=billing.stripe_webhook_secret or None,
                publishable_key=billing.stripe_publishable_key or None,
                max_network_retries=billing.stripe_max_network_retries,
            )

        return cls(
            stripe=stripe_config,
            currency=CurrencyConfig(
                default_currency=billing.default_currency,
                locale=billing.default_locale,
            ),
            autopay=AutopayConfig(
                default_discount=billing.default_autopay_discount,
                run_day=billing.autopay_run_day,
                run_hour=billing.autopay_run_hour,
            ),
        )


# Global configuration instance
_billing_config: BillingConfig | None = None


def get_billing_config() -> BillingConfig:
    """Get the global billing configuration instance"""
    global _billing_config
    if _billing_config is None:
        _billing_config = BillingConfig.from_env()
    return _billing_config


def set_billing_config(config: BillingConfig | None) -> None:
    """Set the global billing configuration instance"""
    global _billing_config
    _billing_config = config
