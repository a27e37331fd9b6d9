from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from marketrun.extensions import db
from marketrun.services.payment_transaction_service import process_alatpay_webhook
from marketrun.utils.observability import current_trace_id

webhooks_bp = Blueprint("webhooks_bp", __name__, url_prefix="/api/webhooks")


@webhooks_bp.post("/alatpay")
def alatpay_webhook():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"ok": False, "error": "INVALID_PAYLOAD", "message": "JSON object expected"}), 400

    if current_app.config.get("PAYMENT_WEBHOOK_QUEUE"):
        try:
            from marketrun.tasks.dispatch_tasks import process_payment_webhook_task

            process_payment_webhook_task.delay(
                payload=payload,
                request_id=current_trace_id(),
                trace_id=current_trace_id(),
            )
            return jsonify({"ok": True, "queued": True, "trace_id": current_trace_id()}), 200
        except Exception as e:
            # Broker down: process inline below.
            current_app.logger.warning("webhook_queue_failed err=%s", e)

    try:
        body, status = process_alatpay_webhook(payload=payload, request_id=current_trace_id(), source="webhook")
    except Exception:
        db.session.rollback()
        current_app.logger.exception("alatpay_webhook_route_failed")
        return jsonify({"ok": False, "error": "WEBHOOK_HANDLER_FAILED", "trace_id": current_trace_id()}), 500
    return jsonify(body), int(status)
