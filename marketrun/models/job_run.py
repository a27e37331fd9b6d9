from datetime import datetime
import logging

from marketrun.extensions import db
from marketrun.utils.json_safe import load_json_object, safe_json

logger = logging.getLogger(__name__)


class JobRun(db.Model):
    """Audit row written after every dispatch or payment-expiry sweep."""

    __tablename__ = "job_runs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(64), nullable=False, index=True)
    ran_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)
    ok = db.Column(db.Boolean, nullable=False, default=True, index=True)
    duration_ms = db.Column(db.Integer, nullable=True)
    processed = db.Column(db.Integer, nullable=False, default=0)
    summary_json = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    @classmethod
    def record(cls, job_name: str, *, started_at: datetime, summary: dict | None = None, error: str | None = None):
        """Persist one run in its own commit. A failure to write is logged, never raised."""
        summary = summary or {}
        finished = datetime.utcnow()
        row = cls(
            job_name=(job_name or "unknown").strip()[:64],
            ran_at=finished,
            ok=not error,
            duration_ms=max(0, int((finished - started_at).total_seconds() * 1000)),
            processed=max(0, int(summary.get("processed") or 0)),
            summary_json=safe_json(summary, limit=4000),
            error=(error or "")[:1000] or None,
        )
        try:
            db.session.add(row)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            logger.warning("job_run_record_failed job=%s err=%s", job_name, e)
            return None
        return row

    def summary(self) -> dict:
        return load_json_object(self.summary_json)

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "job_name": self.job_name or "",
            "ran_at": self.ran_at.isoformat() if self.ran_at else None,
            "ok": bool(self.ok),
            "duration_ms": self.duration_ms,
            "processed": int(self.processed or 0),
            "summary": self.summary(),
            "error": self.error or "",
        }
