"""MarketRun backend: order dispatch for market-run shopping.

``create_app()`` wires configuration, the JSON error envelope, bearer-token
auth, request tracing and the order/agent/payment blueprints.
"""
import json
import os
import subprocess
from pathlib import Path

import click
from flask import Flask, g, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from marketrun.extensions import cors, db, migrate
from marketrun.integrations.messaging.factory import messaging_health
from marketrun.models import User
from marketrun.segments.segment_agents import agents_bp
from marketrun.segments.segment_orders_api import admin_orders_bp, orders_bp
from marketrun.segments.segment_payment_webhooks import webhooks_bp
from marketrun.segments.segment_payments import payments_bp
from marketrun.utils.errors import MarketRunError
from marketrun.utils.jwt_utils import token_subject
from marketrun.utils.observability import current_trace_id, init_sentry, install_request_observers

SERVICE_NAME = "marketrun-backend"
PRODUCTION_ENVS = ("prod", "production")
_REPO_ROOT = Path(__file__).resolve().parents[1]


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    try:
        value = int((os.getenv(name) or "").strip() or default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def _env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        cfg = Config(str(_REPO_ROOT / "migrations" / "alembic.ini"))
        cfg.set_main_option("script_location", str(_REPO_ROOT / "migrations"))
        heads = ScriptDirectory.from_config(cfg).get_heads()
    except Exception:
        return "unknown"
    return heads[0] if heads else "unknown"


def _git_sha() -> str:
    for env_key in ("RENDER_GIT_COMMIT", "GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        out = subprocess.check_output(["git", "rev-parse", "HEAD"], cwd=str(_REPO_ROOT), stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return "unknown"
    return out.decode().strip()


def _database_url(env: str) -> str:
    url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not url:
        if env in PRODUCTION_ENVS:
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        instance_dir = _REPO_ROOT / "instance"
        instance_dir.mkdir(exist_ok=True)
        url = "sqlite:///" + str(instance_dir / "marketrun.db").replace(os.sep, "/")
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    return url


def _engine_options(app, database_url: str) -> dict:
    options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if database_url.startswith("sqlite://"):
        return options
    options.update(
        pool_size=_env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
        max_overflow=_env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
        pool_timeout=_env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
    )
    app.logger.info(
        "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
        options["pool_size"],
        options["max_overflow"],
        options["pool_timeout"],
    )
    return options


def _configure(app, env: str) -> None:
    secret = (os.getenv("SECRET_KEY") or "").strip()
    if env in PRODUCTION_ENVS and len(secret) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    database_url = _database_url(env)
    app.config.update(
        SECRET_KEY=secret or "dev-secret",
        SQLALCHEMY_DATABASE_URI=database_url,
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        SQLALCHEMY_ENGINE_OPTIONS=_engine_options(app, database_url),
        NOTIFICATIONS_ASYNC=_env_flag("NOTIFICATIONS_ASYNC", False),
        PAYMENT_WEBHOOK_QUEUE=_env_flag("PAYMENT_WEBHOOK_QUEUE", False),
    )

    origins = [o.strip() for o in (os.getenv("CORS_ORIGINS") or "").split(",") if o.strip()]
    if not origins and env not in PRODUCTION_ENVS:
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})


def _envelope(error: str, message: str, status: int) -> dict:
    payload = {"ok": False, "error": error, "message": message, "status": int(status)}
    trace_id = current_trace_id()
    if trace_id:
        payload["trace_id"] = trace_id
    return payload


def _register_error_handlers(app) -> None:
    @app.errorhandler(MarketRunError)
    def _domain_error(error: MarketRunError):
        if error.status >= 500:
            app.logger.error("domain_error path=%s code=%s msg=%s", request.path, error.code, error.message)
        payload = error.to_dict()
        if current_trace_id():
            payload["trace_id"] = current_trace_id()
        return jsonify(payload), int(error.status)

    @app.errorhandler(HTTPException)
    def _http_error(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        return jsonify(_envelope(error.name, error.description or error.name, status)), status

    @app.errorhandler(Exception)
    def _unhandled(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        return jsonify(_envelope("InternalServerError", "Internal server error", 500)), 500


def _register_auth(app) -> None:
    def _sentry_user(uid, role):
        try:
            import sentry_sdk

            sentry_sdk.set_user({"id": str(uid)} if uid else None)
            if role:
                sentry_sdk.set_tag("auth_role", role)
        except Exception:
            pass

    @app.before_request
    def _resolve_caller():
        # Drop anything a previous request on this worker left uncommitted.
        db.session.rollback()
        g.auth_user_id = None
        g.auth_role = None
        uid = token_subject(request.headers.get("Authorization", ""))
        user = db.session.get(User, uid) if uid is not None else None
        if user is None or not user.can_authenticate:
            _sentry_user(None, None)
            return
        g.auth_user_id = int(user.id)
        g.auth_role = user.role
        _sentry_user(g.auth_user_id, g.auth_role)

    @app.teardown_request
    def _release_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()


def _register_health(app, env: str) -> None:
    @app.get("/api/health")
    def health():
        payload = {"ok": True, "service": SERVICE_NAME, "env": env, "db": "ok"}
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            payload["db"] = "fail"
            payload["db_error"] = str(e)[:300]
        payload.update(git_sha=_git_sha(), alembic_head=_alembic_head(), push=messaging_health())
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({"ok": True, "service": SERVICE_NAME, "env": env})

    @app.get("/api/version")
    def version():
        return jsonify({"ok": True, "alembic_head": _alembic_head(), "git_sha": _git_sha()})


def _register_cli(app) -> None:
    @app.cli.command("dispatch-sweep")
    @click.option("--limit", "limit", default=50, show_default=True, help="Max orders to try")
    def dispatch_sweep(limit: int):
        """Expire unpaid transactions, then assign agents to paid orders still waiting for one."""
        from marketrun.jobs.dispatch_runner import run_payment_expiry_sweep, run_pending_assignment_sweep

        payments = run_payment_expiry_sweep()
        assignment = run_pending_assignment_sweep(limit=limit)
        click.echo(
            f"dispatch_sweep_ok processed={assignment['processed']} assigned={assignment['assigned']} "
            f"expired={len(payments['expired'])}"
        )

    @app.cli.command("import-agent-metadata")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    def import_agent_metadata(path: str):
        """Load legacy agent metadata from a JSON file keyed by agent id."""
        from marketrun.services.agent_metadata import import_legacy_metadata

        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
        if not isinstance(data, dict):
            raise click.ClickException("Expected a JSON object keyed by agent id.")
        try:
            agent_ids = {raw_id: int(raw_id) for raw_id in data}
        except (TypeError, ValueError):
            raise click.ClickException("Agent ids must be integers.")
        try:
            for raw_id, blob in data.items():
                import_legacy_metadata(agent_ids[raw_id], blob)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        click.echo(f"agent_metadata_import_ok count={len(data)}")


def create_app():
    app = Flask(__name__)
    init_sentry(app)
    env = (os.getenv("MARKETRUN_ENV") or "dev").strip().lower()

    _configure(app, env)
    db.init_app(app)
    migrate.init_app(app, db, directory=str(_REPO_ROOT / "migrations"))
    install_request_observers(app)
    _register_auth(app)
    _register_error_handlers(app)

    for blueprint in (orders_bp, admin_orders_bp, agents_bp, payments_bp, webhooks_bp):
        app.register_blueprint(blueprint)

    _register_health(app, env)
    _register_cli(app)
    return app
