"""Celery entry points for push delivery, queued webhooks and the periodic sweeps.

All tasks run inside the Flask app context (see ``marketrun.celery_app``) and
emit one JSON log line per attempt.
"""
from __future__ import annotations

import json
import os
import time
from datetime import datetime

from celery import shared_task
from flask import current_app


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    payload = {
        "event": "dispatch_task",
        "task_name": task_name,
        "status": status,
        "duration_ms": int(max(0.0, time.perf_counter() - float(started_at)) * 1000.0),
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra)
    try:
        current_app.logger.info(json.dumps(payload, default=str))
    except RuntimeError:
        pass


def _backoff(task) -> int | None:
    """Seconds until the next retry, or None once retries are used up."""
    retries = int(task.request.retries or 0)
    if retries >= int(task.max_retries or 0):
        return None
    return int(min(900, 5 * (2 ** retries)))


def _sweep_limit(name: str, default: int, maximum: int) -> int:
    try:
        value = int((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = default
    return max(1, min(value, maximum))


def _run_sweep(task, task_name: str, sweep, *, trace_id: str, **summary_keys):
    started = time.perf_counter()
    try:
        result = sweep()
    except Exception as exc:
        countdown = _backoff(task)
        if countdown is None:
            _task_log(task_name, status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
            raise
        _task_log(task_name, status="retrying", started_at=started, trace_id=trace_id, detail=str(exc), countdown=countdown)
        raise task.retry(exc=exc, countdown=countdown)
    counts = {key: pick(result) for key, pick in summary_keys.items()}
    _task_log(task_name, status="ok" if result.get("ok") else "partial", started_at=started, trace_id=trace_id, **counts)
    return result


@shared_task(bind=True, name="marketrun.tasks.dispatch_tasks.send_push_notification", max_retries=5)
def send_push_notification_task(self, *, user_id: int, title: str, body: str, data: dict | None = None, trace_id: str = ""):
    from marketrun.services.notification_service import send_push_now

    started = time.perf_counter()
    try:
        result = send_push_now(int(user_id), str(title or ""), str(body or ""), data or {})
    except Exception as exc:
        result = {"ok": False, "code": "PUSH_PROVIDER_DOWN", "message": str(exc)}

    if result.get("ok") or result.get("code") == "INTEGRATION_UNAVAILABLE":
        status = "ok" if result.get("ok") else "skipped"
        _task_log("send_push_notification", status=status, started_at=started, trace_id=trace_id, user_id=user_id)
        return result

    detail = str(result.get("message") or "")
    countdown = _backoff(self)
    if countdown is None:
        _task_log("send_push_notification", status="failed", started_at=started, trace_id=trace_id, user_id=user_id, detail=detail)
        return result
    _task_log(
        "send_push_notification",
        status="retrying",
        started_at=started,
        trace_id=trace_id,
        user_id=user_id,
        detail=detail,
        countdown=countdown,
    )
    raise self.retry(exc=RuntimeError(str(result.get("code") or "push_failed")), countdown=countdown)


@shared_task(bind=True, name="marketrun.tasks.dispatch_tasks.process_payment_webhook", max_retries=5)
def process_payment_webhook_task(self, *, payload: dict, request_id: str = "", trace_id: str = ""):
    """Apply a queued AlatPay webhook; a 5xx outcome is retried like an exception."""
    from marketrun.services.payment_transaction_service import process_alatpay_webhook

    started = time.perf_counter()
    try:
        body, code = process_alatpay_webhook(payload=payload if isinstance(payload, dict) else {}, request_id=request_id, source="webhook")
        if int(code) >= 500:
            raise RuntimeError(f"webhook_status_{int(code)}")
    except Exception as exc:
        countdown = _backoff(self)
        if countdown is None:
            _task_log("process_payment_webhook", status="failed", started_at=started, trace_id=trace_id, detail=str(exc))
            raise
        _task_log("process_payment_webhook", status="retrying", started_at=started, trace_id=trace_id, detail=str(exc), countdown=countdown)
        raise self.retry(exc=exc, countdown=countdown)
    _task_log("process_payment_webhook", status="ok", started_at=started, trace_id=trace_id, status_code=int(code))
    return {"ok": int(code) < 400, "status_code": int(code), "body": body}


@shared_task(bind=True, name="marketrun.tasks.dispatch_tasks.run_pending_assignment_sweep", max_retries=3)
def run_pending_assignment_sweep_task(self, *, trace_id: str = ""):
    from marketrun.jobs.dispatch_runner import run_pending_assignment_sweep

    limit = _sweep_limit("DISPATCH_SWEEP_LIMIT", 50, 500)
    return _run_sweep(
        self,
        "run_pending_assignment_sweep",
        lambda: run_pending_assignment_sweep(limit=limit),
        trace_id=trace_id,
        processed=lambda r: r.get("processed"),
        assigned=lambda r: r.get("assigned"),
    )


@shared_task(bind=True, name="marketrun.tasks.dispatch_tasks.run_payment_expiry_sweep", max_retries=3)
def run_payment_expiry_sweep_task(self, *, trace_id: str = ""):
    from marketrun.jobs.dispatch_runner import run_payment_expiry_sweep

    limit = _sweep_limit("PAYMENT_EXPIRY_SWEEP_LIMIT", 200, 1000)
    return _run_sweep(
        self,
        "run_payment_expiry_sweep",
        lambda: run_payment_expiry_sweep(limit=limit),
        trace_id=trace_id,
        processed=lambda r: r.get("processed"),
        expired=lambda r: len(r.get("expired") or []),
    )
