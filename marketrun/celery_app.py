from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry

TASK_PREFIX = "marketrun.tasks.dispatch_tasks."

# (beat entry, task, interval env var, default seconds)
PERIODIC_SWEEPS = (
    ("pending-assignment-sweep", "run_pending_assignment_sweep", "DISPATCH_SWEEP_INTERVAL_SECONDS", 120),
    ("payment-expiry-sweep", "run_payment_expiry_sweep", "PAYMENT_EXPIRY_SWEEP_INTERVAL_SECONDS", 300),
)

TASK_ROUTES = {
    TASK_PREFIX + "send_push_notification": {"queue": "notifications"},
}

_SIGNALS_BOUND = False


def _env(name: str) -> str:
    return (os.getenv(name) or "").strip()


def _broker_url() -> str:
    return _env("CELERY_BROKER_URL") or _env("REDIS_URL") or "redis://localhost:6379/0"


def _interval_seconds(name: str, default: int) -> float:
    try:
        value = int(_env(name) or default)
    except ValueError:
        value = default
    return float(max(30, value))


def beat_schedule() -> dict:
    return {
        entry: {"task": TASK_PREFIX + task, "schedule": _interval_seconds(env_name, default)}
        for entry, task, env_name, default in PERIODIC_SWEEPS
    }


def _trace_id(kwargs) -> str:
    return str((kwargs or {}).get("trace_id") or "").strip() if isinstance(kwargs, dict) else ""


def _task_event(event: str, **fields) -> str:
    return json.dumps({"event": event, "timestamp": datetime.utcnow().isoformat(), **fields}, default=str)


def _bind_task_observers(flask_app) -> None:
    global _SIGNALS_BOUND
    if _SIGNALS_BOUND:
        return

    @task_failure.connect(weak=False)
    def _on_task_failure(sender=None, task_id=None, exception=None, args=None, kwargs=None, einfo=None, **extra):
        flask_app.logger.error(
            _task_event(
                "dispatch_task_failure",
                task_name=getattr(sender, "name", ""),
                task_id=str(task_id or ""),
                trace_id=_trace_id(kwargs),
                exception=str(exception or ""),
            )
        )

    @task_retry.connect(weak=False)
    def _on_task_retry(request=None, reason=None, einfo=None, **extra):
        flask_app.logger.warning(
            _task_event(
                "dispatch_task_retry",
                task_name=str(getattr(request, "task", "") or ""),
                task_id=str(getattr(request, "id", "") or ""),
                trace_id=_trace_id(getattr(request, "kwargs", None)),
                reason=str(reason or ""),
                retry_count=int(getattr(request, "retries", 0) or 0),
            )
        )

    _SIGNALS_BOUND = True


def create_celery_app(flask_app) -> Celery:
    """Celery bound to ``flask_app``; every task body runs inside its app context."""
    broker = _broker_url()
    celery = Celery("marketrun", broker=broker, backend=_env("CELERY_RESULT_BACKEND") or _env("REDIS_URL") or broker)
    celery.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        timezone="UTC",
        enable_utc=True,
        task_default_queue="dispatch",
        task_routes=TASK_ROUTES,
        beat_schedule=beat_schedule(),
    )

    class FlaskContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = FlaskContextTask
    celery.autodiscover_tasks(["marketrun.tasks"], related_name="dispatch_tasks")
    _bind_task_observers(flask_app)
    return celery
