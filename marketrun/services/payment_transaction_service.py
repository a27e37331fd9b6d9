from __future__ import annotations

import hashlib
import logging
import uuid
from datetime import datetime, timedelta

from flask import current_app

from marketrun.extensions import db
from marketrun.integrations.payments.base import map_provider_status
from marketrun.integrations.payments.factory import build_payments_provider
from marketrun.models import Order, PaymentTransaction, User, WebhookEvent
from marketrun.services.order_lifecycle_service import OrderStatus
from marketrun.services.payment_confirmation_service import confirm_payment
from marketrun.services.trail_service import TrailAction, add_trail
from marketrun.utils.dispatch_settings import get_dispatch_settings
from marketrun.utils.errors import BadRequestError, ForbiddenError, NotFoundError
from marketrun.utils.json_safe import safe_json

logger = logging.getLogger(__name__)


class TransactionStatus:
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    TERMINAL = {COMPLETED, FAILED, EXPIRED, CANCELLED}
    ALLOWED = {
        PENDING: {PENDING, COMPLETED, FAILED, EXPIRED, CANCELLED},
        COMPLETED: {COMPLETED},
        FAILED: {FAILED, COMPLETED},
        EXPIRED: {EXPIRED, COMPLETED},
        CANCELLED: {CANCELLED},
    }


def _set_status(txn: PaymentTransaction, target: str, *, provider_response: dict | None = None) -> bool:
    current = (txn.status or TransactionStatus.PENDING).strip().lower()
    if target not in TransactionStatus.ALLOWED.get(current, {current}):
        logger.warning("payment_txn_transition_blocked txn_id=%s from=%s to=%s", txn.id, current, target)
        return False
    now = datetime.utcnow()
    txn.status = target
    txn.attempts = int(txn.attempts or 0) + 1
    txn.last_attempt_at = now
    if target == TransactionStatus.COMPLETED and txn.processed_at is None:
        txn.processed_at = now
    if provider_response is not None:
        txn.provider_response_json = safe_json(provider_response)
    txn.updated_at = now
    db.session.add(txn)
    return current != target


def initialize_payment(order_id, user_id, *, idempotency_key: str | None = None, commit: bool = True) -> PaymentTransaction:
    """Open a virtual account for an unpaid order.

    A repeated call with the same idempotency key returns the stored record.
    Without a key, an existing pending record blocks a new one.
    """
    key = (idempotency_key or "").strip()[:128]
    settings = get_dispatch_settings()
    try:
        order = db.session.get(Order, int(order_id))
        if order is None:
            raise NotFoundError("Order not found")
        user = db.session.get(User, int(user_id))
        if user is None:
            raise NotFoundError("User not found")
        if int(order.customer_id) != int(user.id):
            raise ForbiddenError("You can only pay for your own orders")
        if order.payment_status == "completed":
            raise BadRequestError("Order is already paid")
        if order.status == OrderStatus.CANCELLED:
            raise BadRequestError("Cannot pay for a cancelled order")
        amount = round(float(order.total_amount or 0.0), 2)
        if amount <= 0:
            raise BadRequestError("Amount must be greater than zero")

        provider = build_payments_provider()
        if key:
            existing = PaymentTransaction.query.filter_by(
                reference_id=int(order.id), reference_type="order", provider=provider.name, idempotency_key=key
            ).first()
            if existing is not None:
                return existing
        pending = PaymentTransaction.query.filter_by(
            reference_id=int(order.id), reference_type="order", provider=provider.name, status=TransactionStatus.PENDING
        ).all()
        if pending and not key:
            raise BadRequestError("A pending payment already exists for this order")
        for old in pending:
            _set_status(old, TransactionStatus.CANCELLED)

        account = provider.generate_virtual_account(
            order_number=order.order_number,
            amount=amount,
            currency=settings.currency,
            description=f"Payment for order {order.order_number}",
            customer={
                "email": user.email,
                "phone": user.phone or "",
                "first_name": user.first_name or "User",
                "last_name": user.last_name or "",
                "metadata": safe_json({"user_id": int(user.id)}),
            },
        )
        if not account.provider_transaction_id:
            raise BadRequestError("Payment provider returned no transaction id")
        expires_at = account.expires_at or (datetime.utcnow() + timedelta(minutes=settings.payment_expiry_minutes))
        txn = PaymentTransaction(
            reference_id=int(order.id),
            reference_type="order",
            user_id=int(user.id),
            provider=provider.name,
            provider_transaction_id=account.provider_transaction_id,
            amount=amount,
            currency=account.currency or settings.currency,
            status=TransactionStatus.PENDING,
            idempotency_key=key or f"auto-{uuid.uuid4().hex}",
            provider_response_json=safe_json(
                {
                    "account_number": account.account_number,
                    "bank_code": account.bank_code,
                    "raw": account.raw or {},
                }
            ),
            attempts=0,
            last_attempt_at=datetime.utcnow(),
            expires_at=expires_at,
        )
        db.session.add(txn)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    logger.info("payment_initialized order_id=%s txn=%s provider=%s amount=%s", order.id, txn.provider_transaction_id, txn.provider, amount)
    return txn


def _apply_provider_status(txn: PaymentTransaction, raw_status: str, *, source: str, raw: dict | None) -> dict:
    local = map_provider_status(raw_status)
    result = {"transaction_id": txn.provider_transaction_id, "status": local, "confirmation": None}
    if local == TransactionStatus.COMPLETED:
        _set_status(txn, TransactionStatus.COMPLETED, provider_response=raw)
        if txn.reference_type == "order":
            result["confirmation"] = confirm_payment(
                txn.reference_id, txn.provider_transaction_id, source, performed_by=f"payments:{txn.provider}", commit=False
            )
    elif local in (TransactionStatus.FAILED, TransactionStatus.EXPIRED):
        _set_status(txn, local, provider_response=raw)
    else:
        txn.attempts = int(txn.attempts or 0) + 1
        txn.last_attempt_at = datetime.utcnow()
        db.session.add(txn)
    result["status"] = txn.status
    return result


def sync_transaction(provider_transaction_id: str, *, source: str = "api_sync", commit: bool = True) -> dict:
    """Ask the provider for the current status and apply it locally."""
    ref = (provider_transaction_id or "").strip()
    if not ref:
        raise BadRequestError("provider_transaction_id is required")
    try:
        txn = PaymentTransaction.query.filter_by(provider_transaction_id=ref).first()
        if txn is None:
            raise NotFoundError("Transaction not found")
        if txn.status == TransactionStatus.COMPLETED:
            result = {"transaction_id": ref, "status": txn.status, "confirmation": None, "already_processed": True}
        else:
            provider = build_payments_provider()
            remote = provider.get_transaction_status(ref)
            result = _apply_provider_status(txn, remote.status, source=source, raw=remote.raw)
        if commit:
            db.session.commit()
    except Exception:
        if commit:
            db.session.rollback()
        raise
    return result


def _webhook_event_id(data: dict) -> str:
    base = f"{data.get('Id', '')}:{data.get('Status', '')}:{data.get('Amount', '')}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()[:32]


def process_alatpay_webhook(*, payload: dict, request_id: str = "", source: str = "webhook") -> tuple[dict, int]:
    if not isinstance(payload, dict):
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "payload must be an object"}, 400
    value = payload.get("Value")
    data = value.get("Data") if isinstance(value, dict) else None
    if not isinstance(data, dict) or not str(data.get("Id") or "").strip():
        return {"ok": False, "error": "INVALID_PAYLOAD", "message": "Value.Data.Id is required"}, 400

    provider = build_payments_provider()
    if not provider.validate_webhook_payload(payload):
        logger.warning("webhook_rejected provider=%s request_id=%s", provider.name, request_id)
        return {"ok": False, "error": "INVALID_WEBHOOK"}, 400

    txn_ref = str(data.get("Id")).strip()
    provider_status = str(data.get("Status") or "")
    event_id = _webhook_event_id(data)
    event = WebhookEvent.query.filter_by(event_id=event_id).first()
    if event is not None and event.is_replay:
        return {"ok": True, "replayed": True}, 200
    if event is None:
        event = WebhookEvent(
            provider=provider.name,
            event_id=event_id,
            provider_transaction_id=txn_ref,
            provider_status=provider_status[:32] or None,
        )
    event.start_attempt(request_id=request_id, payload_json=safe_json(payload))
    db.session.add(event)
    try:
        txn = PaymentTransaction.query.filter_by(provider_transaction_id=txn_ref).first()
        if txn is None:
            event.mark_processed(ignored=True)
            db.session.commit()
            logger.warning("webhook_transaction_not_found txn=%s", txn_ref)
            return {"ok": True, "ignored": True}, 200
        result = _apply_provider_status(txn, provider_status, source=source, raw=payload)
        event.mark_processed()
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("webhook_processing_failed txn=%s", txn_ref)
        failed = WebhookEvent.query.filter_by(event_id=event_id).first()
        if failed is None:
            failed = WebhookEvent(
                provider=provider.name,
                event_id=event_id,
                provider_transaction_id=txn_ref,
                provider_status=provider_status[:32] or None,
            )
            failed.start_attempt(request_id=request_id, payload_json=safe_json(payload))
        failed.mark_failed(e)
        db.session.add(failed)
        db.session.commit()
        return {"ok": False, "error": "WEBHOOK_PROCESSING_FAILED", "message": type(e).__name__}, 500
    return {"ok": True, "status": result["status"], "confirmation": result["confirmation"]}, 200


def expire_stale_transactions(*, now: datetime | None = None, limit: int = 200) -> dict:
    """Re-check pending transactions past their expiry with the provider.

    Paid ones are confirmed; the rest are marked expired along with their order's
    payment status. Each transaction commits on its own.
    """
    now = now or datetime.utcnow()
    summary = {"processed": 0, "expired": [], "completed": [], "errors": []}
    stale = (
        PaymentTransaction.query.filter(
            PaymentTransaction.status == TransactionStatus.PENDING,
            PaymentTransaction.expires_at.isnot(None),
            PaymentTransaction.expires_at <= now,
        )
        .order_by(PaymentTransaction.expires_at.asc())
        .limit(max(1, int(limit)))
        .all()
    )
    if not stale:
        return summary
    provider = build_payments_provider()
    for txn in stale:
        ref = txn.provider_transaction_id
        try:
            remote = provider.get_transaction_status(ref)
            local = map_provider_status(remote.status)
            if local == TransactionStatus.COMPLETED:
                _apply_provider_status(txn, remote.status, source="api_sync", raw=remote.raw)
                summary["completed"].append(ref)
            else:
                _set_status(txn, TransactionStatus.EXPIRED, provider_response=remote.raw)
                order = db.session.get(Order, int(txn.reference_id)) if txn.reference_type == "order" else None
                if order is not None and order.payment_status == "pending":
                    order.payment_status = "expired"
                    db.session.add(order)
                    add_trail(
                        order.id,
                        TrailAction.PAYMENT_EXPIRED,
                        description="Payment window expired",
                        previous_value={"payment_status": "pending"},
                        new_value={"payment_status": "expired"},
                        metadata={"transaction_id": ref, "provider_status": remote.status},
                    )
                summary["expired"].append(ref)
            db.session.commit()
            summary["processed"] += 1
        except Exception as e:
            db.session.rollback()
            logger.error("payment_expiry_check_failed txn=%s err=%s", ref, e)
            summary["errors"].append(ref)
    return summary
