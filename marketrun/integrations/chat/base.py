from __future__ import annotations

from marketrun.integrations.common import IntegrationResult


class ChatProvider:
    name = "unknown"

    def activate_chat(self, *, order_id: int, activated_by: str) -> IntegrationResult:
        raise NotImplementedError

    def save_message(self, *, order_id: int, sender_id: int | None, sender_type: str, body: str) -> IntegrationResult:
        raise NotImplementedError
