from __future__ import annotations

from marketrun.integrations.chat.base import ChatProvider
from marketrun.integrations.chat.disabled_provider import DisabledChatProvider
from marketrun.integrations.chat.local_provider import LocalChatProvider
from marketrun.integrations.common import IntegrationMisconfiguredError, provider_name


def build_chat_provider() -> ChatProvider:
    provider = provider_name("CHAT_PROVIDER", "local")
    if provider == "local":
        return LocalChatProvider()
    if provider == "disabled":
        return DisabledChatProvider()
    raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:chat_provider={provider}")
