from __future__ import annotations

from marketrun.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    env_value,
    missing_env,
    provider_name,
    require_env,
)
from marketrun.integrations.payments.alatpay_provider import ALATPAY_BASE, AlatPayPaymentsProvider
from marketrun.integrations.payments.base import PaymentsProvider
from marketrun.integrations.payments.mock_provider import MockPaymentsProvider

ALATPAY_KEYS = ("ALATPAY_SUBSCRIPTION_KEY", "ALATPAY_BUSINESS_ID", "ALATPAY_MERCHANT_ID")


def build_payments_provider() -> PaymentsProvider:
    provider = provider_name("PAYMENTS_PROVIDER", "mock")
    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:payments")
    if provider == "mock":
        return MockPaymentsProvider()
    if provider != "alatpay":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:payments_provider={provider}")

    keys = require_env("alatpay", *ALATPAY_KEYS)
    return AlatPayPaymentsProvider(
        subscription_key=keys["ALATPAY_SUBSCRIPTION_KEY"],
        business_id=keys["ALATPAY_BUSINESS_ID"],
        merchant_id=keys["ALATPAY_MERCHANT_ID"],
        base_url=env_value("ALATPAY_API_URL", ALATPAY_BASE),
    )


def payment_health() -> dict:
    """Provider name and readiness for ``GET /api/payments/health``; never raises."""
    provider = provider_name("PAYMENTS_PROVIDER", "mock")
    missing = missing_env(*ALATPAY_KEYS) if provider == "alatpay" else []
    if provider == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "provider": provider, "missing": missing}
