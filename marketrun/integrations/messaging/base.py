from __future__ import annotations

from marketrun.integrations.common import IntegrationResult


class MessagingProvider:
    """Push delivery to a single user's devices, addressed by our user id."""

    name = "unknown"

    def send_push(self, *, user_id: int, title: str, body: str, data: dict | None = None) -> IntegrationResult:
        raise NotImplementedError
