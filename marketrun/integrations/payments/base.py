from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class VirtualAccountResult:
    provider_transaction_id: str
    account_number: str
    bank_code: str
    amount: float
    currency: str
    status: str
    expires_at: datetime | None = None
    raw: dict | None = None


@dataclass
class TransactionStatusResult:
    provider_transaction_id: str
    status: str
    amount: float
    currency: str
    raw: dict | None = None


class PaymentsProvider:
    name = "unknown"

    def generate_virtual_account(
        self,
        *,
        order_number: str,
        amount: float,
        currency: str,
        description: str,
        customer: dict,
    ) -> VirtualAccountResult:
        raise NotImplementedError

    def get_transaction_status(self, provider_transaction_id: str) -> TransactionStatusResult:
        raise NotImplementedError

    def validate_webhook_payload(self, payload: dict) -> bool:
        raise NotImplementedError


def map_provider_status(raw_status: str | None) -> str:
    status = (raw_status or "").strip().lower()
    if status in ("completed", "successful", "success"):
        return "completed"
    if status in ("failed", "failure"):
        return "failed"
    if status == "expired":
        return "expired"
    return "pending"
