from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from marketrun.integrations.common import env_value
from marketrun.integrations.payments.base import PaymentsProvider, TransactionStatusResult, VirtualAccountResult


class MockPaymentsProvider(PaymentsProvider):
    """Deterministic provider for local runs and tests.

    Every virtual account reports ``MOCK_PAYMENT_STATUS`` (default ``completed``)
    when its status is queried.
    """

    name = "mock"

    def generate_virtual_account(self, *, order_number: str, amount: float, currency: str, description: str, customer: dict) -> VirtualAccountResult:
        txn_id = f"mock-{uuid.uuid4().hex[:20]}"
        return VirtualAccountResult(
            provider_transaction_id=txn_id,
            account_number="0000000000",
            bank_code="000",
            amount=float(amount),
            currency=currency,
            status="pending",
            expires_at=datetime.utcnow() + timedelta(minutes=30),
            raw={
                "order_number": order_number,
                "description": description,
                "customer": customer or {},
            },
        )

    def get_transaction_status(self, provider_transaction_id: str) -> TransactionStatusResult:
        status = env_value("MOCK_PAYMENT_STATUS", "completed").lower()
        return TransactionStatusResult(
            provider_transaction_id=provider_transaction_id,
            status=status,
            amount=0.0,
            currency="NGN",
            raw={"id": provider_transaction_id, "provider": self.name, "status": status},
        )

    def validate_webhook_payload(self, payload: dict) -> bool:
        return isinstance(payload, dict) and bool(((payload.get("Value") or {}).get("Data") or {}).get("Id"))
