from __future__ import annotations

from marketrun.integrations.chat.base import ChatProvider
from marketrun.integrations.common import IntegrationResult


class DisabledChatProvider(ChatProvider):
    name = "disabled"

    def activate_chat(self, *, order_id: int, activated_by: str) -> IntegrationResult:
        return IntegrationResult(ok=False, code="INTEGRATION_DISABLED", message="chat disabled")

    def save_message(self, *, order_id: int, sender_id: int | None, sender_type: str, body: str) -> IntegrationResult:
        return IntegrationResult(ok=False, code="INTEGRATION_DISABLED", message="chat disabled")
