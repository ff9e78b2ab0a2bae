"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from reqflow.core.exceptions import NotFoundError, InvalidTransition

    raise NotFoundError(resource="Requisition", resource_id=42)
    raise InvalidTransition(current_status="approved", target_status="pending")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: Used for BOTH genuinely missing records AND cross-tenant
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "Requisition").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate unique constraint violation.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


# ── Workflow errors ──────────────────────────────────────────────────────────


class WorkflowError(Exception):
    """Base class for requisition state-machine failures.

    Every workflow error carries the status the requisition was observed in
    and the targets that were legal from it, so callers can render a useful
    message without a second round-trip.
    """

    def __init__(
        self,
        message: str,
        *,
        requisition_id: int | None = None,
        current_status: str | None = None,
        target_status: str | None = None,
        allowed: list[str] | None = None,
    ) -> None:
        self.requisition_id = requisition_id
        self.current_status = current_status
        self.target_status = target_status
        self.allowed = list(allowed or [])
        super().__init__(message)

    def to_details(self) -> dict:
        return {
            "requisition_id": self.requisition_id,
            "current_status": self.current_status,
            "target_status": self.target_status,
            "allowed_transitions": self.allowed,
        }


class InvalidTransition(WorkflowError):
    """Requested edge is not in the transition table. Maps to HTTP 409."""

    def __init__(self, current_status: str, target_status: str, *,
                 requisition_id: int | None = None, allowed: list[str] | None = None) -> None:
        super().__init__(
            f"Cannot move requisition from '{current_status}' to '{target_status}'",
            requisition_id=requisition_id,
            current_status=current_status,
            target_status=target_status,
            allowed=allowed,
        )


class Unauthorized(WorkflowError):
    """Actor lacks the capability required for the edge. Maps to HTTP 403."""

    def __init__(self, actor_id: int, current_status: str, target_status: str, *,
                 requisition_id: int | None = None, allowed: list[str] | None = None) -> None:
        self.actor_id = actor_id
        super().__init__(
            f"User {actor_id} may not move requisition from '{current_status}' to '{target_status}'",
            requisition_id=requisition_id,
            current_status=current_status,
            target_status=target_status,
            allowed=allowed,
        )


class MissingReason(WorkflowError):
    """Rejection attempted without a reason. Maps to HTTP 422."""

    def __init__(self, current_status: str, *, requisition_id: int | None = None,
                 allowed: list[str] | None = None) -> None:
        super().__init__(
            "A rejection reason is required",
            requisition_id=requisition_id,
            current_status=current_status,
            target_status="rejected",
            allowed=allowed,
        )


class ConcurrentModification(WorkflowError):
    """Compare-and-swap precondition failed: status changed underneath us.

    Maps to HTTP 409. The caller should re-read and retry or report a conflict.
    """

    def __init__(self, expected_status: str, current_status: str | None, target_status: str, *,
                 requisition_id: int | None = None) -> None:
        self.expected_status = expected_status
        super().__init__(
            f"Requisition status changed from '{expected_status}' to "
            f"'{current_status}' before '{target_status}' could be applied",
            requisition_id=requisition_id,
            current_status=current_status,
            target_status=target_status,
        )


class SettingsNotFound(Exception):
    """Organization has no settings row; counter operations cannot proceed."""

    def __init__(self, organization_id: int) -> None:
        self.organization_id = organization_id
        super().__init__(
            f"No organization settings found for organization {organization_id}. "
            "Initialize the settings first."
        )


class NotificationDeliveryFailure(Exception):
    """Fan-out failure. Collected and logged, never propagated.

    ``user_id`` is None when the whole fan-out failed (audience lookup or
    final commit) rather than a single recipient.
    """

    def __init__(self, user_id: int | None, notification_type: str, cause: Exception) -> None:
        self.user_id = user_id
        self.notification_type = notification_type
        self.cause = cause
        target = f"user {user_id}" if user_id is not None else "all recipients"
        super().__init__(f"Notification '{notification_type}' for {target} failed: {cause}")


class AuditImmutableError(Exception):
    """Raised when code attempts to update or delete an audit log row."""

    def __init__(self, audit_id: int | None, operation: str) -> None:
        self.audit_id = audit_id
        self.operation = operation
        super().__init__(f"Audit log entry {audit_id} is append-only; {operation} rejected")
