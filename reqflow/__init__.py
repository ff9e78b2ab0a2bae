"""
Requisition Workflow Platform
Flask Application Factory.

Usage:
    from reqflow import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from reqflow.blueprints import register_blueprints
from reqflow.config import config
from reqflow.middleware.jwt_auth import init_jwt_middleware
from reqflow.middleware.logging_config import configure_logging
from reqflow.middleware.rate_limiter import init_rate_limits
from reqflow.middleware.tenant_context import init_tenant_context
from reqflow.middleware.timing import init_request_timing
from reqflow.models import db

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit; limits are per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing (assigns g.request_id) ────────────────────────────
    init_request_timing(app)

    # ── JWT auth → tenant context ────────────────────────────────────────
    init_jwt_middleware(app)
    init_tenant_context(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from reqflow.models import audit as _audit_models                # noqa: F401
    from reqflow.models import auth as _auth_models                  # noqa: F401
    from reqflow.models import notification as _notification_models  # noqa: F401
    from reqflow.models import project as _project_models            # noqa: F401
    from reqflow.models import requisition as _requisition_models    # noqa: F401
    from reqflow.models import settings as _settings_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    register_blueprints(app)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("redeliver-notifications")
    @click.argument("requisition_id", type=int)
    @click.option("--organization-id", type=int, required=True)
    def redeliver_notifications_cmd(requisition_id, organization_id):
        """Re-run notification fan-out for a requisition's latest transition."""
        from reqflow.services.notification_fanout import redeliver
        result = redeliver(requisition_id, organization_id)
        click.echo(
            f"notified={len(result.notified)} emailed={len(result.emailed)} "
            f"failed={len(result.failures)}"
        )

    @app.cli.command("cleanup-rate-limits")
    @click.option("--older-than-hours", type=int, default=24, show_default=True)
    def cleanup_rate_limits_cmd(older_than_hours):
        """Delete rate-limit log rows older than the given age."""
        from reqflow.services.rate_limit import cleanup_rate_limit_logs
        deleted = cleanup_rate_limit_logs(older_than_hours)
        click.echo(f"Removed {deleted} rate limit log rows.")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
