"""
WBS Tracker
Flask Application Factory.

Usage:
    from wbs_tracker import create_app
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

from wbs_tracker.config import config
from wbs_tracker.middleware.logging_config import configure_logging
from wbs_tracker.middleware.rate_limiter import init_rate_limits
from wbs_tracker.middleware.timing import init_request_timing
from wbs_tracker.models import db

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
    default_limits=[],  # no global limit; limits applied per blueprint
    # storage comes from RATELIMIT_STORAGE_URI in config
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
    app.config.from_object(config[config_name])
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            abort(413, description="Request body too large")
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from wbs_tracker.models import project as _project_models  # noqa: F401
    from wbs_tracker.models import wbs as _wbs_models          # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ─────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from wbs_tracker.blueprints import ALL_BLUEPRINTS

    for bp in ALL_BLUEPRINTS:
        app.register_blueprint(bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("wbs-rebuild")
    @click.argument("project_id", type=int)
    def wbs_rebuild_cmd(project_id):
        """Renumber WBS codes and recompute rollups for a project."""
        from wbs_tracker.services.wbs_service import rebuild_project
        result = rebuild_project(project_id)
        click.echo(
            f"Project {project_id}: {result['codes_rewritten']} codes rewritten, "
            f"{result['items_recomputed']} rollups recomputed."
        )

    @app.cli.command("wbs-check")
    @click.argument("project_id", type=int)
    def wbs_check_cmd(project_id):
        """Print WBS invariant violations for a project (exit 1 if any)."""
        from wbs_tracker.services.wbs_service import check_integrity
        problems = check_integrity(project_id)
        for problem in problems:
            click.echo(problem)
        if problems:
            raise SystemExit(1)
        click.echo(f"Project {project_id}: WBS is consistent.")

    @app.cli.command("create-project")
    @click.argument("name")
    @click.option("--description", default=None)
    def create_project_cmd(name, description):
        """Create a project to hold a WBS tree."""
        from wbs_tracker.models.project import Project
        project = Project(name=name, description=description)
        db.session.add(project)
        db.session.commit()
        logger.info("Created project %s", project.id, extra={"project_id": project.id})
        click.echo(f"Created project {project.id}: {project.name}")

    # ── Plain liveness ping (detailed version at /api/v1/health/live) ────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "WBS Tracker"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description}, 415

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
