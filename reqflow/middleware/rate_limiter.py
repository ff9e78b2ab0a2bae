"""
Rate limiting configuration.

Applies per-blueprint HTTP rate limits using Flask-Limiter. The Limiter
instance is created in reqflow/__init__.py with no default limits; this
module applies granular limits per route category, keyed by organization
when the request is authenticated and by remote IP otherwise.

Plan-based API quotas:
    - trial:        100 requests/minute
    - starter:      300 requests/minute
    - professional: 600 requests/minute
    - enterprise:   5000 requests/minute

Usage:
    from reqflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

from reqflow.models import db
from reqflow.models.auth import Organization

logger = logging.getLogger(__name__)

PLAN_RATE_LIMITS = {
    "trial": "100/minute",
    "starter": "300/minute",
    "professional": "600/minute",
    "enterprise": "5000/minute",
}

DEFAULT_PLAN_LIMIT = "100/minute"


def rate_limit_key():
    """Dynamic rate limit key: organization if authenticated, else remote IP."""
    org_id = getattr(g, "jwt_org_id", None)
    if org_id:
        return f"org:{org_id}"
    return flask_request.remote_addr or "unknown"


def organization_plan_limit():
    """Rate limit string for the current organization's plan."""
    org_id = getattr(g, "jwt_org_id", None)
    if org_id:
        org = db.session.get(Organization, org_id)
        if org is not None:
            return PLAN_RATE_LIMITS.get(org.plan or "trial", DEFAULT_PLAN_LIMIT)
    return DEFAULT_PLAN_LIMIT


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

        - Requisition endpoints:  60/minute  (transitions and writes)
        - Notification endpoints: 200/minute (polled by the UI)
        - Plan quota:             shared per organization, see PLAN_RATE_LIMITS
        - Health check:           exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("requisition_bp")
    if bp:
        limiter.limit("60/minute", key_func=rate_limit_key)(bp)
        limiter.limit(organization_plan_limit, key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("notification_bp")
    if bp:
        limiter.limit("200/minute", key_func=rate_limit_key)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: requisition 60/min, notification 200/min, plan quotas")
