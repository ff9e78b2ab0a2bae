"""
Requisition Workflow Platform
Notification Blueprint.

Provides the recipient's view of in-app notifications:
    GET  /api/v1/notifications                 list (?unread_only=true, limit, offset)
    POST /api/v1/notifications/<id>/read       mark one as read
    POST /api/v1/notifications/read-all        mark all as read

A user only ever sees, or changes, their own notifications.
"""

from __future__ import annotations

import logging

from flask import Blueprint, g, jsonify, request

from reqflow.core.exceptions import NotFoundError
from reqflow.services.notification import NotificationService
from reqflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1/notifications")


@notification_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("", methods=["GET"])
def list_notifications():
    ctx = g.tenant_context
    unread_only = request.args.get("unread_only", "false").lower() in ("1", "true", "yes")
    try:
        limit = min(int(request.args.get("limit", 50)), 200)
        offset = max(int(request.args.get("offset", 0)), 0)
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "limit and offset must be integers")

    items, total = NotificationService.list_for_recipient(
        ctx.user_id, ctx.organization_id, unread_only=unread_only, limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(ctx.user_id, ctx.organization_id),
    })


@notification_bp.route("/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    ctx = g.tenant_context
    notif = NotificationService.mark_read(notification_id, ctx.user_id, ctx.organization_id)
    return jsonify(notif.to_dict())


@notification_bp.route("/read-all", methods=["POST"])
def mark_all_read():
    ctx = g.tenant_context
    count = NotificationService.mark_all_read(ctx.user_id, ctx.organization_id)
    return jsonify({"marked_read": count})
