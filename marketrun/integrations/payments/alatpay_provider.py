from __future__ import annotations

import logging
import time
from datetime import datetime

import requests

from marketrun.integrations.payments.base import PaymentsProvider, TransactionStatusResult, VirtualAccountResult

logger = logging.getLogger(__name__)

ALATPAY_BASE = "https://apibox.alatpay.ng"


def _parse_ts(value) -> datetime | None:
    raw = (str(value or "")).strip()
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


class AlatPayPaymentsProvider(PaymentsProvider):
    name = "alatpay"

    def __init__(self, *, subscription_key: str, business_id: str, merchant_id: str, base_url: str = ALATPAY_BASE, max_retries: int = 3):
        self.subscription_key = subscription_key
        self.business_id = business_id
        self.merchant_id = merchant_id
        self.base_url = (base_url or ALATPAY_BASE).rstrip("/")
        self.max_retries = max(0, int(max_retries))

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "Ocp-Apim-Subscription-Key": self.subscription_key,
        }

    def _request(self, method: str, path: str, *, payload: dict | None = None) -> dict:
        url = f"{self.base_url}{path}"
        attempt = 0
        while True:
            try:
                r = requests.request(method, url, headers=self._headers(), json=payload, timeout=25)
            except (requests.Timeout, requests.ConnectionError) as e:
                if attempt >= self.max_retries:
                    raise RuntimeError(f"ALATPAY_UNREACHABLE:{e}") from e
                logger.warning("alatpay_retry method=%s path=%s attempt=%s err=%s", method, path, attempt + 1, e)
            else:
                if r.status_code >= 500 and attempt < self.max_retries:
                    logger.warning("alatpay_retry method=%s path=%s attempt=%s status=%s", method, path, attempt + 1, r.status_code)
                else:
                    j = r.json() if r.content else {}
                    if r.status_code < 200 or r.status_code >= 300 or not (isinstance(j, dict) and j.get("status")):
                        msg = ((j.get("message") if isinstance(j, dict) else "") or f"HTTP {r.status_code}").strip()
                        raise RuntimeError(f"ALATPAY_REQUEST_FAILED:{msg}")
                    return j
            time.sleep(min(8.0, 1.0 * (2 ** attempt)))
            attempt += 1

    def generate_virtual_account(self, *, order_number: str, amount: float, currency: str, description: str, customer: dict) -> VirtualAccountResult:
        payload = {
            "businessId": self.business_id,
            "amount": float(amount),
            "currency": currency,
            "orderId": order_number,
            "description": description,
            "customer": {
                "email": (customer or {}).get("email") or "",
                "phone": (customer or {}).get("phone") or "",
                "firstName": (customer or {}).get("first_name") or "",
                "lastName": (customer or {}).get("last_name") or "",
                "metadata": (customer or {}).get("metadata") or "",
            },
        }
        j = self._request("POST", "/bank-transfer/api/v1/bankTransfer/virtualAccount", payload=payload)
        data = j.get("data") or {}
        return VirtualAccountResult(
            provider_transaction_id=(data.get("transactionId") or "").strip(),
            account_number=(data.get("virtualBankAccountNumber") or "").strip(),
            bank_code=(data.get("virtualBankCode") or "").strip(),
            amount=float(data.get("amount") or amount),
            currency=(data.get("currency") or currency).strip().upper(),
            status=(data.get("status") or "pending").strip().lower(),
            expires_at=_parse_ts(data.get("expiredAt")),
            raw=j,
        )

    def get_transaction_status(self, provider_transaction_id: str) -> TransactionStatusResult:
        ref = (provider_transaction_id or "").strip()
        j = self._request("GET", f"/bank-transfer/api/v1/bankTransfer/transactions/{ref}")
        data = j.get("data") or {}
        try:
            amount = float(data.get("amount") or 0.0)
        except (TypeError, ValueError):
            amount = 0.0
        return TransactionStatusResult(
            provider_transaction_id=(data.get("id") or ref),
            status=(data.get("status") or "").strip().lower(),
            amount=amount,
            currency=(data.get("currency") or "NGN").strip().upper(),
            raw=j,
        )

    def validate_webhook_payload(self, payload: dict) -> bool:
        if not isinstance(payload, dict):
            return False
        data = (payload.get("Value") or {}).get("Data")
        if not isinstance(data, dict):
            return False
        return data.get("BusinessId") == self.business_id and data.get("MerchantId") == self.merchant_id
