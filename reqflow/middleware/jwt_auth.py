"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

    Authorization: Bearer <token>  →  g.jwt_user_id, g.jwt_org_id

A missing or invalid token leaves both as None; the tenant context
middleware (tenant_context.py) turns that into a 401 for protected paths.
"""

import logging

import jwt as pyjwt
from flask import g, request

from reqflow.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)


# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        # Clear JWT context
        g.jwt_user_id = None
        g.jwt_org_id = None

        # Skip non-API routes and public endpoints
        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired JWT on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid JWT on %s: %s", path, exc)
            return

        g.jwt_user_id = payload["sub"]
        g.jwt_org_id = payload["org_id"]
