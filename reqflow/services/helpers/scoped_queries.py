"""
Tenant-scoped query helpers.

Every get-by-id on organization-owned data MUST use these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass tenant isolation.

Usage:
    requisition = get_scoped(Requisition, requisition_id, organization_id=org_id)

    # Lock the row for the rest of the transaction
    requisition = get_scoped(Requisition, requisition_id, organization_id=org_id, for_update=True)

    # When None is an acceptable outcome
    comment = get_scoped_or_none(RequisitionComment, comment_id, organization_id=org_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately during development/testing
    rather than silently allowing unscoped access in production.
"""

import logging

from sqlalchemy import select

from reqflow.core.exceptions import NotFoundError
from reqflow.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    organization_id: int | None = None,
    project_id: int | None = None,
    for_update: bool = False,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError -> HTTP 404. A 403 would confirm the resource exists.

    Args:
        model: SQLAlchemy model class with an ``id`` PK and the scope column(s).
        pk: Primary key value to look up.
        organization_id: Scope by organization_id column.
        project_id: Scope by project_id column.
        for_update: Take a row lock (SELECT ... FOR UPDATE) held until commit.

    Raises:
        ValueError: No scope given, or a given scope column is missing on the model.
        NotFoundError: Entity missing OR outside the given scope.
    """
    provided_scopes = {
        "organization_id": organization_id,
        "project_id": project_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(organization_id or project_id). "
            "Unscoped lookups are forbidden; they bypass tenant isolation."
        )

    missing_fields = sorted(f for f in provided_scopes if not hasattr(model, f))
    if missing_fields:
        raise ValueError(
            f"{model.__name__} id={pk}: scope field(s) {missing_fields} do not exist "
            f"as columns on {model.__name__}. Refusing to perform an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)
    if for_update:
        stmt = stmt.with_for_update()

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            provided_scopes,
        )
        raise NotFoundError(
            resource=model.__name__, resource_id=pk, organization_id=organization_id,
        )

    return result


def get_scoped_or_none(
    model,
    pk: int,
    *,
    organization_id: int | None = None,
    project_id: int | None = None,
):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still enforces the scope parameter requirement (raises ValueError if no
    scope is provided or a scope field is missing on the model).
    """
    try:
        return get_scoped(model, pk, organization_id=organization_id, project_id=project_id)
    except NotFoundError:
        return None
