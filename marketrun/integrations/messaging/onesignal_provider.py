from __future__ import annotations

import requests

from marketrun.integrations.common import IntegrationResult
from marketrun.integrations.messaging.base import MessagingProvider

ONESIGNAL_URL = "https://onesignal.com/api/v1/notifications"

_ERROR_CODES = {
    401: "PUSH_AUTH_FAILED",
    403: "PUSH_AUTH_FAILED",
    429: "PUSH_RATE_LIMITED",
    400: "PUSH_INVALID_RECIPIENT",
    422: "PUSH_INVALID_RECIPIENT",
}


class OneSignalMessagingProvider(MessagingProvider):
    """Targets devices registered under ``external_user_id == str(user_id)``."""

    name = "onesignal"

    def __init__(self, *, app_id: str, api_key: str, timeout: float = 12.0):
        self.app_id = app_id
        self.api_key = api_key
        self.timeout = timeout

    def send_push(self, *, user_id: int, title: str, body: str, data: dict | None = None) -> IntegrationResult:
        payload = {
            "app_id": self.app_id,
            "include_external_user_ids": [str(user_id)],
            "headings": {"en": title},
            "contents": {"en": body},
            "data": data or {},
        }
        headers = {"Authorization": f"Basic {self.api_key}", "Content-Type": "application/json"}
        try:
            r = requests.post(ONESIGNAL_URL, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout:
            return IntegrationResult(ok=False, code="PUSH_PROVIDER_DOWN", message="timeout")
        except requests.RequestException as e:
            return IntegrationResult(ok=False, code="PUSH_PROVIDER_DOWN", message=str(e)[:200])

        try:
            parsed = r.json() if r.content else {}
        except ValueError:
            parsed = {"text": r.text[:500]}
        raw = parsed if isinstance(parsed, dict) else {"payload": parsed}
        if 200 <= r.status_code < 300:
            return IntegrationResult(ok=True, code="OK", message="sent", raw=raw)
        detail = str(raw.get("errors") or raw.get("message") or "")
        return IntegrationResult(
            ok=False,
            code=_ERROR_CODES.get(r.status_code, "PUSH_PROVIDER_DOWN"),
            message=(detail or f"http_{r.status_code}")[:200],
            raw=raw,
        )
