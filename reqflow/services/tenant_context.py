"""
Tenant Context Resolver.

Turns an opaque actor id plus the organization the request targets into a
``TenantContext``: the actor's membership role, effective workflow role and
project-level roles inside exactly one organization.

Usage:
    from reqflow.services.tenant_context import resolve_tenant_context, has_role

    ctx = resolve_tenant_context(user_id=7, organization_id=3)
    if has_role(ctx, {OrgRole.OWNER, OrgRole.ADMIN}, organization_id=3):
        ...

Membership that is missing, inactive or belongs to a suspended organization
resolves to NotFoundError / ValidationError; it never silently widens scope.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from reqflow.core.exceptions import NotFoundError, ValidationError
from reqflow.models import db
from reqflow.models.auth import Organization, OrganizationMember, OrgRole, User, WorkflowRole
from reqflow.models.project import ProjectAssignment, ProjectRole

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantContext:
    """Identity of the acting user inside one organization."""

    user_id: int
    organization_id: int
    org_role: OrgRole
    workflow_role: WorkflowRole
    display_name: str
    # project_id -> ProjectRole | None (None = assigned, org workflow role applies)
    project_roles: dict[int, ProjectRole | None] = field(default_factory=dict)

    def is_assigned_to(self, project_id: int) -> bool:
        return project_id in self.project_roles

    def roles(self) -> frozenset:
        """Every role the actor holds on the organization-wide axes."""
        return frozenset({self.org_role, self.workflow_role})


def resolve_tenant_context(user_id: int, organization_id: int) -> TenantContext:
    """Build the TenantContext for ``user_id`` acting in ``organization_id``.

    Raises:
        NotFoundError: organization, user or active membership missing.
        ValidationError: organization is suspended.
    """
    org = db.session.get(Organization, organization_id)
    if org is None:
        raise NotFoundError(resource="Organization", resource_id=organization_id)
    if not org.is_operational:
        raise ValidationError(
            "Organization is suspended",
            details={"organization_id": organization_id, "status": org.status},
        )

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        raise NotFoundError(resource="User", resource_id=user_id)

    member = OrganizationMember.query.filter_by(
        organization_id=organization_id, user_id=user_id, is_active=True,
    ).first()
    if member is None:
        logger.warning(
            "User %s has no active membership in organization %s", user_id, organization_id,
            extra={"organization_id": organization_id},
        )
        raise NotFoundError(resource="Organization", resource_id=organization_id)

    assignments = ProjectAssignment.query_for_organization(organization_id).filter_by(
        user_id=user_id,
    ).all()
    project_roles = {
        a.project_id: ProjectRole(a.role) if a.role else None for a in assignments
    }

    return TenantContext(
        user_id=user.id,
        organization_id=organization_id,
        org_role=OrgRole(member.role),
        workflow_role=member.effective_workflow_role,
        display_name=user.display_name,
        project_roles=project_roles,
    )


def has_role(context: TenantContext, allowed: set | frozenset, organization_id: int) -> bool:
    """Capability check: does the actor hold any ``allowed`` role in ``organization_id``?

    A context resolved for another organization never matches.
    """
    if context.organization_id != organization_id:
        return False
    return bool(context.roles() & set(allowed))
