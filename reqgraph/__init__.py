"""
Requirement Relationship Graph
Flask Application Factory.

Usage:
    from reqgraph import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import select

from reqgraph.config import config
from reqgraph.models import db
from reqgraph.middleware.logging_config import configure_logging
from reqgraph.middleware.rate_limiter import init_rate_limits
from reqgraph.middleware.timing import init_request_timing
from reqgraph.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


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
    default_limits=[],                     # no global limit, applied per-blueprint
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
    # Instantiated so ProductionConfig can refuse to start without its env vars
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

    # ── Request timing + acting user ─────────────────────────────────────
    init_request_timing(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from reqgraph.models import project as _project_models            # noqa: F401
    from reqgraph.models import requirement as _requirement_models    # noqa: F401
    from reqgraph.models import relationship as _relationship_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    db_uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
        os.makedirs(os.path.dirname(db_uri[len("sqlite:///"):]) or ".", exist_ok=True)
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from reqgraph.blueprints.health_bp import health_bp
    from reqgraph.blueprints.relationship_bp import relationships_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(relationships_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("rebuild-closure")
    @click.option("--project-id", type=int, default=None,
                  help="Rebuild one project only (default: every project).")
    def rebuild_closure_cmd(project_id):
        """Re-materialise the closure table from the direct edges."""
        from reqgraph.models.project import Project
        from reqgraph.services.relationship_store import RelationshipStore

        store = RelationshipStore()
        if project_id is not None:
            project_ids = [project_id]
        else:
            project_ids = [p.id for p in db.session.scalars(select(Project).order_by(Project.id))]

        total = 0
        for pid in project_ids:
            rows = store.rebuild_closure(pid)
            logger.info("Closure rebuilt project_id=%s rows=%d", pid, rows)
            total += rows
        click.echo(f"Rebuilt closure for {len(project_ids)} project(s): {total} row(s).")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"Not found: {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def payload_too_large(e):
        return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.VALIDATION_INVALID, f"Too many requests: {e.description}", status=429)

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
