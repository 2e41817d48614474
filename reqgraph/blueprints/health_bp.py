"""
Health check blueprint.

Endpoints:
    GET /api/v1/health       — simple 200 for load balancers
    GET /api/v1/health/live  — database round-trip and closure table presence
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from reqgraph.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
def ready():
    """Simple readiness probe — always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── Closure tables ───────────────────────────────────────────────
    if overall:
        for table in ("requirement_edges", "requirements_closure"):
            try:
                count = db.session.execute(db.text(f"SELECT COUNT(*) FROM {table}")).scalar()
                checks[table] = {"status": "ok", "rows": count}
            except Exception as exc:
                db.session.rollback()
                checks[table] = {"status": "error", "detail": str(exc)}
                overall = False
                logger.error("Health check — table %s failed: %s", table, exc)

    checks["app"] = {
        "name": "reqgraph",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
