from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from marketrun.extensions import db
from marketrun.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from marketrun.integrations.payments.factory import payment_health
from marketrun.models import PaymentTransaction, User
from marketrun.services.payment_transaction_service import initialize_payment, sync_transaction
from marketrun.utils.errors import ForbiddenError, NotFoundError, UnauthorizedError
from marketrun.utils.observability import current_trace_id

payments_bp = Blueprint("payments_bp", __name__, url_prefix="/api/payments")


def _current_user() -> User | None:
    uid = getattr(g, "auth_user_id", None)
    if uid is None:
        return None
    return db.session.get(User, int(uid))


def _require_user() -> User:
    u = _current_user()
    if not u:
        raise UnauthorizedError("Unauthorized")
    return u


def _idempotency_key() -> str:
    k = request.headers.get("Idempotency-Key") or request.headers.get("X-Idempotency-Key") or ""
    return k.strip()[:128]


@payments_bp.errorhandler(IntegrationDisabledError)
@payments_bp.errorhandler(IntegrationMisconfiguredError)
def _payments_unavailable(error):
    current_app.logger.warning("payments_unavailable err=%s", error)
    return jsonify(
        {
            "ok": False,
            "error": "PAYMENTS_UNAVAILABLE",
            "message": str(error),
            "status": 503,
            "trace_id": current_trace_id(),
        }
    ), 503


@payments_bp.get("/health")
def payments_health():
    return jsonify({"ok": True, **payment_health()}), 200


@payments_bp.post("/orders/<int:order_id>/initialize")
def initialize_order_payment(order_id: int):
    u = _require_user()
    txn = initialize_payment(order_id, u.id, idempotency_key=_idempotency_key() or None)
    details = txn.provider_response()
    return jsonify(
        {
            "ok": True,
            "transaction": txn.to_dict(),
            "account_number": details.get("account_number"),
            "bank_code": details.get("bank_code"),
        }
    ), 201


@payments_bp.post("/transactions/<string:transaction_id>/verify")
def verify_transaction(transaction_id: str):
    u = _require_user()
    txn = PaymentTransaction.query.filter_by(provider_transaction_id=transaction_id.strip()).first()
    if txn is None:
        raise NotFoundError("Transaction not found")
    if not u.is_admin and int(txn.user_id or 0) != int(u.id):
        raise ForbiddenError("Forbidden")
    result = sync_transaction(txn.provider_transaction_id, source="api_sync")
    return jsonify({"ok": True, **result}), 200


@payments_bp.get("/orders/<int:order_id>/transactions")
def order_transactions(order_id: int):
    u = _require_user()
    q = PaymentTransaction.query.filter_by(reference_type="order", reference_id=int(order_id))
    if not u.is_admin:
        q = q.filter(PaymentTransaction.user_id == int(u.id))
    rows = q.order_by(PaymentTransaction.created_at.desc()).all()
    return jsonify({"ok": True, "items": [t.to_dict() for t in rows]}), 200
