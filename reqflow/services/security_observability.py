"""Security observability helpers for denied workflow actions and cross-organization attempts.

Events live in a bounded in-process buffer (newest last) and are logged as
warnings. ALERT_RULES are evaluated per organization.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from typing import Any

from flask import g, has_app_context, has_request_context, request

logger = logging.getLogger(__name__)

_SECURITY_EVENTS: list[dict[str, Any]] = []
_MAX_SECURITY_EVENTS = 5000


ALERT_RULES = (
    {
        "event_type": "cross_organization_access_attempt",
        "threshold": 3,
        "window_seconds": 300,
        "severity": "high",
        "code": "SEC-CROSS-ORG-001",
    },
    {
        "event_type": "unauthorized_transition",
        "threshold": 5,
        "window_seconds": 300,
        "severity": "medium",
        "code": "SEC-UNAUTH-TRANSITION-001",
    },
)


def _trim() -> None:
    if len(_SECURITY_EVENTS) > _MAX_SECURITY_EVENTS:
        del _SECURITY_EVENTS[: _MAX_SECURITY_EVENTS // 2]


def _scope_from_request() -> tuple[int | None, int | None, str | None]:
    """Best-effort (organization_id, user_id, request_id) from the request globals."""
    if not (has_app_context() and has_request_context()):
        return None, None, None
    return (
        getattr(g, "jwt_org_id", None),
        getattr(g, "jwt_user_id", None),
        getattr(g, "request_id", None),
    )


def record_security_event(
    *,
    event_type: str,
    reason: str,
    severity: str = "warning",
    organization_id: int | None = None,
    user_id: int | None = None,
    requisition_id: int | None = None,
    request_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    r_org, r_user, r_request = _scope_from_request()
    organization_id = organization_id if organization_id is not None else r_org
    user_id = user_id if user_id is not None else r_user
    request_id = request_id or r_request

    path = None
    method = None
    if has_request_context():
        path = request.path
        method = request.method

    event = {
        "ts": time.time(),
        "event_type": event_type,
        "severity": severity,
        "reason": reason,
        "organization_id": organization_id,
        "user_id": user_id,
        "requisition_id": requisition_id,
        "path": path,
        "method": method,
        "request_id": request_id,
        "details": details or {},
    }
    _SECURITY_EVENTS.append(event)
    _trim()
    logger.warning(
        "Security event %s: %s", event_type, reason,
        extra={
            "event_type": event_type,
            "organization_id": organization_id,
            "requisition_id": requisition_id,
        },
    )
    return event


def get_recent_security_events(
    *,
    seconds: int = 3600,
    event_type: str | None = None,
    organization_id: int | None = None,
) -> list[dict[str, Any]]:
    cutoff = time.time() - seconds
    return [
        e for e in _SECURITY_EVENTS
        if e["ts"] >= cutoff
        and (event_type is None or e["event_type"] == event_type)
        and (organization_id is None or e["organization_id"] == organization_id)
    ]


def evaluate_security_alerts(*, now: float | None = None) -> dict[str, Any]:
    """Apply ALERT_RULES per organization.

    A rule fires for an organization once that organization alone reaches the
    threshold inside the window; events from other tenants never add up.
    """
    now = now or time.time()
    counts: dict[str, int] = {}
    alerts = []

    for rule in ALERT_RULES:
        cutoff = now - rule["window_seconds"]
        by_org: dict[int | None, list[dict[str, Any]]] = defaultdict(list)
        for e in _SECURITY_EVENTS:
            if e["event_type"] == rule["event_type"] and e["ts"] >= cutoff:
                by_org[e["organization_id"]].append(e)

        counts[rule["event_type"]] = sum(len(rows) for rows in by_org.values())
        for organization_id, rows in by_org.items():
            if len(rows) < rule["threshold"]:
                continue
            alerts.append({
                "code": rule["code"],
                "event_type": rule["event_type"],
                "severity": rule["severity"],
                "organization_id": organization_id,
                "window_seconds": rule["window_seconds"],
                "threshold": rule["threshold"],
                "observed": len(rows),
                "latest": rows[-1],
            })

    return {"counts": counts, "alerts": alerts}


def reset_security_events() -> None:
    _SECURITY_EVENTS.clear()
