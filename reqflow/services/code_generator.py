"""
Requisition Workflow — Counter-backed Code Generator Service

Generates sequential, organization-scoped codes:
  - Item codes:           {item_code_prefix}-{seq}     (e.g. ITEM-001, ITEM-042)
  - Requisition numbers:  {requisition_prefix}-{seq}   (e.g. REQ-00001)

Counters live on OrganizationSettings and are advanced with a single
``UPDATE ... SET n = n + 1`` statement; the issued value is read back inside
the same transaction. Concurrent callers therefore never receive the same
number, and the sequence has no gaps as long as callers commit.
"""

from sqlalchemy import select, update

from reqflow.core.exceptions import SettingsNotFound
from reqflow.models import db
from reqflow.models.settings import OrganizationSettings


def format_code(prefix: str, number: int, padding: int) -> str:
    """``format_code("ITEM", 7, 3) -> "ITEM-007"``; wider numbers are not truncated."""
    return f"{prefix}-{str(number).zfill(padding)}"


def _advance(organization_id: int, counter, prefix, padding, *, commit: bool) -> str:
    """Increment ``counter`` atomically and return the formatted value it held."""
    result = db.session.execute(
        update(OrganizationSettings)
        .where(OrganizationSettings.organization_id == organization_id)
        .values({counter: counter + 1})
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise SettingsNotFound(organization_id)

    row = db.session.execute(
        select(prefix, counter, padding)
        .where(OrganizationSettings.organization_id == organization_id)
    ).one()
    issued = row[1] - 1
    code = format_code(row[0], issued, row[2])

    if commit:
        db.session.commit()
    return code


def generate_item_code(organization_id: int, *, commit: bool = True) -> str:
    """Next item code for the organization: ITEM-001, ITEM-002, ...

    Raises:
        SettingsNotFound: the organization has no settings row.
    """
    return _advance(
        organization_id,
        OrganizationSettings.item_code_next_number,
        OrganizationSettings.item_code_prefix,
        OrganizationSettings.item_code_padding,
        commit=commit,
    )


def generate_requisition_number(organization_id: int, *, commit: bool = True) -> str:
    """Next requisition number for the organization: REQ-00001, REQ-00002, ...

    Pass ``commit=False`` when the number is issued as part of a larger
    transaction (requisition creation) so both commit or roll back together.
    """
    return _advance(
        organization_id,
        OrganizationSettings.requisition_next_number,
        OrganizationSettings.requisition_prefix,
        OrganizationSettings.requisition_padding,
        commit=commit,
    )
