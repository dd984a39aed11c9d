"""Standardised API error responses.

Usage
-----
    from wbs_tracker.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "WBS item not found")
    return api_error(E.VALIDATION_REQUIRED, "project_id is required")
    return api_error(E.INVALID_OPERATION, "cannot promote root", details={"reason": "promote_root"})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Tree preconditions – HTTP 400
    INVALID_OPERATION = "ERR_INVALID_OPERATION"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Persisted tree inconsistent – HTTP 409
    STRUCTURAL_INTEGRITY = "ERR_STRUCTURAL_INTEGRITY"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.INVALID_OPERATION: 400,
    E.NOT_FOUND: 404,
    E.STRUCTURAL_INTEGRITY: 409,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, rejection reason).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status
