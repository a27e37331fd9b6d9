from __future__ import annotations

from marketrun.integrations.common import IntegrationResult, env_value
from marketrun.integrations.messaging.base import MessagingProvider


class MockMessagingProvider(MessagingProvider):
    """Records pushes in memory. ``MOCK_NOTIFY_FORCE_FAIL=1`` or a ``[fail]`` body simulates an outage."""

    name = "mock"

    def __init__(self):
        self.sent: list[dict] = []

    def send_push(self, *, user_id: int, title: str, body: str, data: dict | None = None) -> IntegrationResult:
        if "[fail]" in (body or "").lower() or env_value("MOCK_NOTIFY_FORCE_FAIL") == "1":
            return IntegrationResult(ok=False, code="PUSH_PROVIDER_DOWN", message="mock forced failure")
        record = {"user_id": int(user_id), "title": title, "body": body, "data": dict(data or {})}
        self.sent.append(record)
        return IntegrationResult(ok=True, code="OK", message="mock_sent", raw=record)
