"""Trace ids, structured request logs and optional Sentry reporting.

Every request gets a trace id, taken from ``X-Request-Id`` when the caller
sends one. It is echoed on the response, stamped on error envelopes and
stored on webhook events, so a single id follows an order through the logs.
"""
from __future__ import annotations

import json
import os
import time
import uuid
from datetime import datetime

from flask import g, has_request_context, request

TRACE_HEADER = "X-Request-Id"

REDACTED_HEADERS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "x-api-key",
        "idempotency-key",
        "ocp-apim-subscription-key",
        "x-alatpay-signature",
    }
)

# Polled by load balancers; logging them drowns out dispatch traffic.
QUIET_PATHS = frozenset({"/api/health", "/"})


def current_trace_id() -> str:
    if not has_request_context():
        return ""
    return getattr(g, "request_id", "") or ""


def _sample_rate() -> float:
    try:
        rate = float((os.getenv("SENTRY_TRACES_SAMPLE_RATE") or "0").strip())
    except ValueError:
        return 0.0
    return max(0.0, min(rate, 1.0))


def init_sentry(app) -> bool:
    dsn = (os.getenv("SENTRY_DSN") or "").strip()
    if not dsn:
        app.logger.info("sentry_disabled_no_dsn")
        return False
    try:
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=dsn,
            environment=(os.getenv("SENTRY_ENVIRONMENT") or os.getenv("MARKETRUN_ENV") or "dev"),
            release=(os.getenv("GIT_SHA") or "unknown"),
            integrations=[FlaskIntegration()],
            send_default_pii=False,
            traces_sample_rate=_sample_rate(),
            before_send=scrub_event,
        )
    except Exception as e:
        app.logger.warning("sentry_init_failed err=%s", e)
        return False
    app.logger.info("sentry_enabled")
    return True


def scrub_event(event, hint):
    """Sentry ``before_send`` hook: blank out credentials and payment keys."""
    req = event.get("request") or {}
    headers = req.get("headers") or {}
    req["headers"] = {k: ("[REDACTED]" if k.lower() in REDACTED_HEADERS else v) for k, v in headers.items()}
    event["request"] = req
    return event


def _request_log_line(response) -> dict:
    started = getattr(g, "request_started_at", None)
    view_args = request.view_args or {}
    line = {
        "ts": datetime.utcnow().isoformat(),
        "request_id": current_trace_id(),
        "method": request.method,
        "path": request.path,
        "status": int(response.status_code),
        "latency_ms": round((time.perf_counter() - float(started)) * 1000.0, 2) if started is not None else None,
        "user_id": getattr(g, "auth_user_id", None),
        "role": getattr(g, "auth_role", None),
    }
    if "order_id" in view_args:
        line["order_id"] = view_args["order_id"]
    return line


def install_request_observers(app) -> None:
    @app.before_request
    def _assign_trace_id():
        g.request_id = (request.headers.get(TRACE_HEADER) or "").strip()[:64] or uuid.uuid4().hex
        g.request_started_at = time.perf_counter()

    @app.after_request
    def _log_request(response):
        if not getattr(g, "request_id", ""):
            g.request_id = uuid.uuid4().hex
        response.headers[TRACE_HEADER] = g.request_id
        if request.path not in QUIET_PATHS:
            app.logger.info(json.dumps(_request_log_line(response), default=str))
        return response
