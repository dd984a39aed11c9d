"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  — simple 200 for load balancers
    GET /api/v1/health/live   — database round-trip and WBS table presence
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import func, select

from wbs_tracker.models import db
from wbs_tracker.models.project import Project
from wbs_tracker.models.wbs import WbsItem

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
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
        db.session.rollback()
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check — database failed: %s", exc)

    # ── WBS tables ───────────────────────────────────────────────────
    if overall:
        try:
            checks["tables"] = {
                "status": "ok",
                "projects": db.session.execute(select(func.count(Project.id))).scalar(),
                "wbs_items": db.session.execute(select(func.count(WbsItem.id))).scalar(),
            }
        except Exception as exc:
            db.session.rollback()
            checks["tables"] = {"status": "error", "detail": str(exc)}
            overall = False
            logger.error("Health check — WBS tables unavailable: %s", exc)

    checks["app"] = {
        "name": "WBS Tracker",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
