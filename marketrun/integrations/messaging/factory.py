from __future__ import annotations

from marketrun.integrations.common import (
    IntegrationDisabledError,
    IntegrationMisconfiguredError,
    missing_env,
    provider_name,
    require_env,
)
from marketrun.integrations.messaging.base import MessagingProvider
from marketrun.integrations.messaging.mock_provider import MockMessagingProvider
from marketrun.integrations.messaging.onesignal_provider import OneSignalMessagingProvider

ONESIGNAL_KEYS = ("ONESIGNAL_APP_ID", "ONESIGNAL_API_KEY")


def build_messaging_provider() -> MessagingProvider:
    provider = provider_name("MESSAGING_PROVIDER", "mock")
    if provider == "disabled":
        raise IntegrationDisabledError("INTEGRATION_DISABLED:push")
    if provider == "mock":
        return MockMessagingProvider()
    if provider != "onesignal":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:messaging_provider={provider}")
    keys = require_env("onesignal", *ONESIGNAL_KEYS)
    return OneSignalMessagingProvider(app_id=keys["ONESIGNAL_APP_ID"], api_key=keys["ONESIGNAL_API_KEY"])


def messaging_health() -> dict:
    provider = provider_name("MESSAGING_PROVIDER", "mock")
    missing = missing_env(*ONESIGNAL_KEYS) if provider == "onesignal" else []
    if provider == "disabled":
        status = "disabled"
    elif missing:
        status = "misconfigured"
    else:
        status = "configured"
    return {"status": status, "provider": provider, "missing": missing}
