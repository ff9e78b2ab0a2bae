"""
Requisition Workflow — Role/Permission Evaluator

Pure predicates answering "can user U perform action A on requisition R".
Nothing here touches the database: inputs are a TenantContext (resolved
identity) and the requisition's ownership/scope fields.

Roles on every axis are closed enums and map onto a closed Capability set.
The role -> capability tables are checked for exhaustiveness at import time,
so adding a role without deciding its capabilities fails loudly.

Usage:
    from reqflow.services.permission import can_transition, Capability

    if can_transition(ctx, requisition, RequisitionStatus.REVIEWED):
        ...
"""

from enum import Enum

from reqflow.models.auth import OrgRole, WorkflowRole
from reqflow.models.project import ProjectRole
from reqflow.models.requisition import RequisitionStatus


class Capability(str, Enum):
    SUBMIT = "submit"      # author-only: move own draft to pending
    REVIEW = "review"
    APPROVE = "approve"
    ADMIN = "admin"        # org-admin-equivalent; implies review/approve/reject rights


_WORKFLOW_ROLE_CAPABILITIES: dict[WorkflowRole, frozenset[Capability]] = {
    WorkflowRole.SUBMITTER: frozenset(),
    WorkflowRole.REVIEWER: frozenset({Capability.REVIEW}),
    WorkflowRole.APPROVER: frozenset({Capability.APPROVE}),
    WorkflowRole.STORE_MANAGER: frozenset(),
    WorkflowRole.SUPER_ADMIN: frozenset({Capability.ADMIN}),
}

_ORG_ROLE_CAPABILITIES: dict[OrgRole, frozenset[Capability]] = {
    OrgRole.OWNER: frozenset({Capability.ADMIN}),
    OrgRole.ADMIN: frozenset({Capability.ADMIN}),
    OrgRole.MEMBER: frozenset(),
}

_PROJECT_ROLE_CAPABILITIES: dict[ProjectRole, frozenset[Capability]] = {
    ProjectRole.SUBMITTER: frozenset(),
    ProjectRole.REVIEWER: frozenset({Capability.REVIEW}),
    ProjectRole.APPROVER: frozenset({Capability.APPROVE}),
}

for _enum, _table in (
    (WorkflowRole, _WORKFLOW_ROLE_CAPABILITIES),
    (OrgRole, _ORG_ROLE_CAPABILITIES),
    (ProjectRole, _PROJECT_ROLE_CAPABILITIES),
):
    _missing = set(_enum) - set(_table)
    if _missing:
        raise RuntimeError(f"{_enum.__name__} members without capabilities: {sorted(_missing)}")


# (from, to) -> capabilities, any one of which authorizes the edge.
_REJECT_CAPABILITIES = frozenset({Capability.REVIEW, Capability.APPROVE, Capability.ADMIN})

EDGE_CAPABILITIES: dict[tuple[RequisitionStatus, RequisitionStatus], frozenset[Capability]] = {
    (RequisitionStatus.DRAFT, RequisitionStatus.PENDING): frozenset({Capability.SUBMIT}),
    (RequisitionStatus.PENDING, RequisitionStatus.REVIEWED): frozenset(
        {Capability.REVIEW, Capability.APPROVE, Capability.ADMIN}
    ),
    (RequisitionStatus.REVIEWED, RequisitionStatus.APPROVED): frozenset(
        {Capability.APPROVE, Capability.ADMIN}
    ),
    (RequisitionStatus.DRAFT, RequisitionStatus.REJECTED): _REJECT_CAPABILITIES,
    (RequisitionStatus.PENDING, RequisitionStatus.REJECTED): _REJECT_CAPABILITIES,
    (RequisitionStatus.REVIEWED, RequisitionStatus.REJECTED): _REJECT_CAPABILITIES,
}


def organization_capabilities(org_role: OrgRole, workflow_role: WorkflowRole) -> frozenset[Capability]:
    """Organization-wide capabilities of a member, ignoring project assignments."""
    return _ORG_ROLE_CAPABILITIES[org_role] | _WORKFLOW_ROLE_CAPABILITIES[workflow_role]


def project_capabilities(
    org_role: OrgRole,
    workflow_role: WorkflowRole,
    project_roles: dict,
    project_id: int,
) -> frozenset[Capability]:
    """Capabilities a member can exercise on one project.

    ADMIN is organization-wide and needs no assignment. Review/approve
    capabilities require an assignment to the project; the assignment's
    project role, when set, replaces the workflow role on that project.
    """
    caps = set(_ORG_ROLE_CAPABILITIES[org_role])
    if Capability.ADMIN in _WORKFLOW_ROLE_CAPABILITIES[workflow_role]:
        caps.add(Capability.ADMIN)
    if project_id in project_roles:
        project_role = project_roles[project_id]
        if project_role is None:
            caps |= _WORKFLOW_ROLE_CAPABILITIES[workflow_role]
        else:
            caps |= _PROJECT_ROLE_CAPABILITIES[project_role]
    return frozenset(caps)


def capabilities_on(context, requisition) -> frozenset[Capability]:
    """Everything ``context`` may exercise on ``requisition`` (empty across tenants)."""
    if context.organization_id != requisition.organization_id:
        return frozenset()
    caps = set(project_capabilities(
        context.org_role, context.workflow_role, context.project_roles, requisition.project_id,
    ))
    if requisition.submitted_by == context.user_id:
        caps.add(Capability.SUBMIT)
    return frozenset(caps)


def required_capabilities(from_status, to_status) -> frozenset[Capability]:
    """Capabilities authorizing an edge; empty when the edge does not exist."""
    return EDGE_CAPABILITIES.get((RequisitionStatus(from_status), RequisitionStatus(to_status)), frozenset())


def can_transition(context, requisition, target_status) -> bool:
    """True when the actor may move ``requisition`` from its current status to ``target_status``."""
    required = required_capabilities(requisition.status, target_status)
    if not required:
        return False
    return bool(required & capabilities_on(context, requisition))


def can_submit(context, requisition) -> bool:
    return can_transition(context, requisition, RequisitionStatus.PENDING)


def can_review(context, requisition) -> bool:
    return can_transition(context, requisition, RequisitionStatus.REVIEWED)


def can_approve(context, requisition) -> bool:
    return can_transition(context, requisition, RequisitionStatus.APPROVED)


def can_reject(context, requisition) -> bool:
    return can_transition(context, requisition, RequisitionStatus.REJECTED)
