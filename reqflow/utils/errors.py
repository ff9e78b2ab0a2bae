"""Standardised API error responses.

Usage
-----
    from reqflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Requisition not found")
    return api_error(E.VALIDATION_REQUIRED, "target_status is required")
    return api_error(E.INVALID_TRANSITION, str(exc), details=exc.to_details())
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • WORKFLOW_ prefix for requisition state-machine errors
    """

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    VALIDATION_CONSTRAINT = "ERR_VALIDATION_CONSTRAINT"

    # Authentication – HTTP 401
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"
    SETTINGS_NOT_FOUND = "ERR_SETTINGS_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_STATE = "ERR_CONFLICT_STATE"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500
    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"
    AUDIT_IMMUTABLE = "ERR_AUDIT_IMMUTABLE"

    # Workflow
    INVALID_TRANSITION = "WORKFLOW_INVALID_TRANSITION"
    UNAUTHORIZED = "WORKFLOW_UNAUTHORIZED"
    MISSING_REASON = "WORKFLOW_MISSING_REASON"
    CONCURRENT_MODIFICATION = "WORKFLOW_CONCURRENT_MODIFICATION"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.VALIDATION_CONSTRAINT: 422,
    E.UNAUTHENTICATED: 401,
    E.NOT_FOUND: 404,
    E.SETTINGS_NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_STATE: 409,
    E.FORBIDDEN: 403,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
    E.AUDIT_IMMUTABLE: 500,
    E.INVALID_TRANSITION: 409,
    E.UNAUTHORIZED: 403,
    E.MISSING_REASON: 422,
    E.CONCURRENT_MODIFICATION: 409,
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
        Extra structured payload (current status, allowed transitions, ...).

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
