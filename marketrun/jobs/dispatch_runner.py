"""Periodic sweeps: retry agent assignment for waiting orders and expire unpaid transactions."""
from __future__ import annotations

import logging
from datetime import datetime

from marketrun.extensions import db
from marketrun.models import JobRun
from marketrun.services.assignment_service import auto_assign_agent, get_pending_agent_assignment_orders
from marketrun.services.payment_transaction_service import expire_stale_transactions

logger = logging.getLogger(__name__)


def _error_note(errors: int) -> str | None:
    return f"errors={errors}" if errors else None


def run_pending_assignment_sweep(*, limit: int = 50) -> dict:
    """Each waiting order is tried in its own transaction so one failure does not block the rest."""
    started_at = datetime.utcnow()
    counts = {"processed": 0, "assigned": 0, "waiting": 0, "errors": 0}

    for order in get_pending_agent_assignment_orders(limit=limit):
        counts["processed"] += 1
        try:
            agent_id = auto_assign_agent(order, commit=False)
            db.session.commit()
        except Exception as e:
            counts["errors"] += 1
            db.session.rollback()
            logger.warning("pending_assignment_failed order_id=%s err=%s", order.id, e)
            continue
        counts["waiting" if agent_id is None else "assigned"] += 1

    result = {"ok": counts["errors"] == 0, **counts, "ts": datetime.utcnow().isoformat()}
    JobRun.record("pending_assignment_sweep", started_at=started_at, summary=result, error=_error_note(counts["errors"]))
    logger.info(
        "pending_assignment_sweep processed=%s assigned=%s waiting=%s errors=%s",
        counts["processed"],
        counts["assigned"],
        counts["waiting"],
        counts["errors"],
    )
    return result


def run_payment_expiry_sweep(*, limit: int = 200) -> dict:
    started_at = datetime.utcnow()
    try:
        summary = expire_stale_transactions(limit=limit)
    except Exception as e:
        db.session.rollback()
        logger.error("payment_expiry_sweep_failed err=%s", e)
        JobRun.record("payment_expiry_sweep", started_at=started_at, error=str(e) or type(e).__name__)
        raise
    errors = list(summary.get("errors") or [])
    result = {
        "ok": not errors,
        "processed": int(summary.get("processed") or 0),
        "expired": list(summary.get("expired") or []),
        "completed": list(summary.get("completed") or []),
        "errors": errors,
        "ts": datetime.utcnow().isoformat(),
    }
    JobRun.record("payment_expiry_sweep", started_at=started_at, summary=result, error=_error_note(len(errors)))
    return result
