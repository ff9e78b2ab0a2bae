"""
Requisition Workflow Platform
Requisition Blueprint.

Endpoints (all scoped to the caller's organization, g.tenant_context):
    POST /api/v1/requisitions                          create a draft
    GET  /api/v1/requisitions/<id>                     detail + allowed transitions
    POST /api/v1/requisitions/<id>/transition          {target_status, reason?}
    GET  /api/v1/requisitions/<id>/audit               audit trail
    POST /api/v1/requisitions/<id>/comments            {body}
"""

import logging

from flask import Blueprint, g, jsonify, request

from reqflow.core.exceptions import (
    AuditImmutableError,
    ConcurrentModification,
    InvalidTransition,
    MissingReason,
    NotFoundError,
    SettingsNotFound,
    Unauthorized,
    ValidationError,
)
from reqflow.services import requisition_service
from reqflow.services.requisition_workflow import allowed_transitions
from reqflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

requisition_bp = Blueprint("requisition_bp", __name__, url_prefix="/api/v1/requisitions")


# ── Error handlers ───────────────────────────────────────────────────────────

@requisition_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@requisition_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_CONSTRAINT, str(error), details=error.details)


@requisition_bp.errorhandler(InvalidTransition)
def _handle_invalid_transition(error: InvalidTransition):
    return api_error(E.INVALID_TRANSITION, str(error), details=error.to_details())


@requisition_bp.errorhandler(Unauthorized)
def _handle_unauthorized(error: Unauthorized):
    return api_error(E.UNAUTHORIZED, "You are not allowed to perform this transition",
                     details=error.to_details())


@requisition_bp.errorhandler(MissingReason)
def _handle_missing_reason(error: MissingReason):
    return api_error(E.MISSING_REASON, str(error), details=error.to_details())


@requisition_bp.errorhandler(ConcurrentModification)
def _handle_conflict(error: ConcurrentModification):
    return api_error(E.CONCURRENT_MODIFICATION, str(error), details=error.to_details())


@requisition_bp.errorhandler(SettingsNotFound)
def _handle_settings(error: SettingsNotFound):
    return api_error(E.SETTINGS_NOT_FOUND, str(error))


@requisition_bp.errorhandler(AuditImmutableError)
def _handle_audit(error: AuditImmutableError):
    logger.error("Audit immutability violation: %s", error)
    return api_error(E.AUDIT_IMMUTABLE, "Audit log entries cannot be modified")


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object",
                              details={"body": type(data).__name__})
    return data


# ═════════════════════════════════════════════════════════════════════════════
# Requisitions
# ═════════════════════════════════════════════════════════════════════════════

@requisition_bp.route("", methods=["POST"])
def create_requisition():
    ctx = g.tenant_context
    data = _json_body()
    requisition = requisition_service.create_requisition(ctx.organization_id, ctx.user_id, data)
    return jsonify(requisition.to_dict()), 201


@requisition_bp.route("/<int:requisition_id>", methods=["GET"])
def get_requisition(requisition_id):
    ctx = g.tenant_context
    requisition = requisition_service.get_requisition(requisition_id, ctx.organization_id)
    body = requisition.to_dict()
    body["allowed_transitions"] = allowed_transitions(requisition, ctx)
    return jsonify(body)


@requisition_bp.route("/<int:requisition_id>/transition", methods=["POST"])
def transition(requisition_id):
    """Move a requisition to ``target_status``; returns requisition, event and fan-out summary."""
    ctx = g.tenant_context
    data = _json_body()
    target_status = data.get("target_status")
    if target_status is not None and not isinstance(target_status, str):
        raise ValidationError("target_status must be a string",
                              details={"target_status": type(target_status).__name__})
    target_status = (target_status or "").strip()
    if not target_status:
        return api_error(E.VALIDATION_REQUIRED, "target_status is required")

    outcome = requisition_service.transition_requisition(
        requisition_id,
        ctx.organization_id,
        ctx.user_id,
        target_status,
        reason=data.get("reason"),
    )
    return jsonify(outcome.to_dict())


@requisition_bp.route("/<int:requisition_id>/audit", methods=["GET"])
def audit_trail(requisition_id):
    ctx = g.tenant_context
    entries = requisition_service.list_requisition_audit(requisition_id, ctx.organization_id)
    return jsonify({"items": [e.to_dict() for e in entries], "total": len(entries)})


@requisition_bp.route("/<int:requisition_id>/comments", methods=["POST"])
def add_comment(requisition_id):
    ctx = g.tenant_context
    data = _json_body()
    comment = requisition_service.add_comment(
        requisition_id, ctx.organization_id, ctx.user_id, data.get("body"),
    )
    return jsonify(comment.to_dict()), 201
