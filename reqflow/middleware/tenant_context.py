"""
Tenant Context Middleware — Enforces tenant isolation on API requests.

When an API request arrives:
  1. g.jwt_user_id / g.jwt_org_id are already set by jwt_auth middleware
  2. No identity → 401
  3. Organization missing, suspended, or the user not an active member → 403
  4. Otherwise g.tenant_context holds the resolved TenantContext

Every downstream query filters by g.tenant_context.organization_id.

Chain order:
  jwt_auth.py  →  tenant_context.py  →  route handler
"""

import logging

from flask import g, request

from reqflow.core.exceptions import NotFoundError, ValidationError
from reqflow.services.security_observability import record_security_event
from reqflow.services.tenant_context import resolve_tenant_context
from reqflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip tenant context (unauthenticated paths only)
TENANT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_tenant_context(app):
    """Register tenant context middleware as a before_request hook."""

    @app.before_request
    def _tenant_context():
        g.tenant_context = None

        if not request.path.startswith("/api/v1/"):
            return None
        for prefix in TENANT_SKIP_PREFIXES:
            if request.path.startswith(prefix):
                return None
        if request.method == "OPTIONS":
            return None

        user_id = getattr(g, "jwt_user_id", None)
        org_id = getattr(g, "jwt_org_id", None)
        if user_id is None or org_id is None:
            return api_error(E.UNAUTHENTICATED, "Authentication required")

        try:
            g.tenant_context = resolve_tenant_context(user_id, org_id)
        except NotFoundError:
            record_security_event(
                event_type="cross_organization_access_attempt",
                reason="no_active_membership",
                severity="high",
                organization_id=org_id,
                user_id=user_id,
            )
            return api_error(E.FORBIDDEN, "Not a member of this organization")
        except ValidationError as exc:
            logger.warning(
                "Organization %s refused: %s", org_id, exc,
                extra={"organization_id": org_id},
            )
            return api_error(E.FORBIDDEN, str(exc), details=exc.details)

        return None

    logger.info("Tenant context middleware installed")
