"""WBS blueprint — work breakdown tree REST API.

Endpoint groups:
  Listing & creation     GET/POST /api/v1/wbs
  Single item            GET/PATCH/DELETE /api/v1/wbs/<item_id>
  Level change           PATCH /api/v1/wbs/<item_id>/level   {"direction": "up" | "down"}
  Project views          GET  /api/v1/wbs/stats?project_id=
                         GET  /api/v1/wbs/integrity?project_id=
  Maintenance            POST /api/v1/wbs/rebuild             {"project_id"}

DELETE without ?confirm=true returns a preview of what would be removed.
Service layer owns all business logic and commits; handlers below map the
typed exceptions to standard error responses.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from werkzeug.exceptions import HTTPException

import wbs_tracker.services.wbs_service as wbs
from wbs_tracker.core.exceptions import (
    InvalidOperationError,
    NotFoundError,
    StoreError,
    StructuralIntegrityError,
    ValidationError,
)
from wbs_tracker.utils.errors import E, api_error
from wbs_tracker.utils.helpers import parse_bool_arg

logger = logging.getLogger(__name__)

wbs_bp = Blueprint("wbs", __name__, url_prefix="/api/v1/wbs")


# ── Request helpers ───────────────────────────────────────────────────────────


def _project_id(data: dict | None = None) -> int | None:
    """project_id from the query string, falling back to the JSON body."""
    pid = request.args.get("project_id", type=int)
    if pid:
        return pid
    value = (data or {}).get("project_id")
    if isinstance(value, bool):
        return None
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _project_required(data: dict | None = None):
    pid = _project_id(data)
    if not pid:
        return None, api_error(E.VALIDATION_REQUIRED, "project_id is required")
    return pid, None


# ── Error handlers ────────────────────────────────────────────────────────────


@wbs_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@wbs_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@wbs_bp.errorhandler(InvalidOperationError)
def _handle_invalid_operation(error: InvalidOperationError):
    logger.info("Rejected WBS operation: %s (%s)", error, error.reason)
    details = {"reason": error.reason} if error.reason else None
    return api_error(E.INVALID_OPERATION, str(error), details=details)


@wbs_bp.errorhandler(StructuralIntegrityError)
def _handle_integrity(error: StructuralIntegrityError):
    logger.error("WBS structural integrity failure: %s", error)
    return api_error(E.STRUCTURAL_INTEGRITY, str(error))


@wbs_bp.errorhandler(StoreError)
def _handle_store(error: StoreError):
    return api_error(E.DATABASE, "Database error")


@wbs_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return jsonify({"error": error.description}), error.code
    logger.exception("Unexpected error in wbs_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Listing & creation
# ═════════════════════════════════════════════════════════════════════════


@wbs_bp.route("", methods=["GET"])
def list_items():
    """List a project's WBS items.

    Query params: project_id (required), flat (bool), parent_id
    Returns: {"items": [...]} — nested tree unless flat or parent_id is given.
    """
    project_id, err = _project_required()
    if err:
        return err
    items = wbs.list_items(
        project_id,
        flat=parse_bool_arg(request.args.get("flat")),
        parent_id=request.args.get("parent_id") or None,
    )
    return jsonify({"items": items}), 200


@wbs_bp.route("", methods=["POST"])
def create_item():
    """Create a WBS item.

    Body: {
        project_id, name, level, parent_id?, weight?, description?,
        start_date?, end_date?, deliverable_name?, deliverable_link?
    }
    Returns: created item dict (201).
    """
    data = _json_body()
    project_id, err = _project_required(data)
    if err:
        return err
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    if data.get("level") in (None, ""):
        return api_error(E.VALIDATION_REQUIRED, "level is required")

    item = wbs.create_item(project_id, data)
    return jsonify(item), 201


# ═════════════════════════════════════════════════════════════════════════
# Project views & maintenance
# ═════════════════════════════════════════════════════════════════════════


@wbs_bp.route("/stats", methods=["GET"])
def stats():
    """LEVEL4 progress statistics for a project."""
    project_id, err = _project_required()
    if err:
        return err
    return jsonify(wbs.wbs_stats(project_id)), 200


@wbs_bp.route("/integrity", methods=["GET"])
def integrity():
    """Report tree invariant violations for a project."""
    project_id, err = _project_required()
    if err:
        return err
    problems = wbs.check_integrity(project_id)
    return jsonify({"project_id": project_id, "ok": not problems, "problems": problems}), 200


@wbs_bp.route("/rebuild", methods=["POST"])
def rebuild():
    """Renumber codes and recompute rollups for a whole project."""
    project_id, err = _project_required(_json_body())
    if err:
        return err
    return jsonify(wbs.rebuild_project(project_id)), 200


# ═════════════════════════════════════════════════════════════════════════
# Single item
# ═════════════════════════════════════════════════════════════════════════


@wbs_bp.route("/<item_id>", methods=["GET"])
def get_item(item_id):
    return jsonify(wbs.get_item(item_id)), 200


@wbs_bp.route("/<item_id>", methods=["PATCH"])
def update_item(item_id):
    """Update metadata, weight or leaf progress.

    status, code, level and parent_id are derived and rejected here;
    use /level to move an item.
    """
    data = _json_body()
    if not data:
        return api_error(E.VALIDATION_REQUIRED, "Request body is required")
    return jsonify(wbs.update_item(item_id, data)), 200


@wbs_bp.route("/<item_id>", methods=["DELETE"])
def delete_item(item_id):
    """Cascade-delete an item and its subtree.

    Query params: confirm — without confirm=true only a preview is returned.
    """
    if not parse_bool_arg(request.args.get("confirm")):
        return jsonify(wbs.preview_delete(item_id)), 200
    return jsonify(wbs.delete_item(item_id)), 200


@wbs_bp.route("/<item_id>/level", methods=["PATCH"])
def change_level(item_id):
    """Promote (direction=up) or demote (direction=down) an item."""
    data = _json_body()
    direction = (data.get("direction") or "").strip().lower()
    if not direction:
        return api_error(E.VALIDATION_REQUIRED, "direction is required")
    return jsonify(wbs.change_level(item_id, direction)), 200
