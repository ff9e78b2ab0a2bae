"""
ORM factories shared by the test modules.

Every helper flushes so the returned object has its id; build_org and
make_requisition commit.
"""

from decimal import Decimal
from types import SimpleNamespace

from reqflow.models import db as _db
from reqflow.models.auth import Organization, OrganizationMember, User
from reqflow.models.project import Project, ProjectAssignment
from reqflow.models.requisition import Requisition
from reqflow.models.settings import OrganizationSettings


def make_org(name="Acme Ltd", slug="acme", **kw):
    org = Organization(name=name, slug=slug, status=kw.pop("status", "active"), **kw)
    _db.session.add(org)
    _db.session.flush()
    return org


def make_user(email, full_name=None, role="submitter", **kw):
    user = User(email=email, full_name=full_name, role=role, **kw)
    _db.session.add(user)
    _db.session.flush()
    return user


def make_member(org, user, role="member", workflow_role=None, is_active=True):
    member = OrganizationMember(
        organization_id=org.id, user_id=user.id, role=role,
        workflow_role=workflow_role, is_active=is_active,
    )
    _db.session.add(member)
    _db.session.flush()
    return member


def make_project(org, name="Head Office", code="HO"):
    project = Project(organization_id=org.id, name=name, code=code)
    _db.session.add(project)
    _db.session.flush()
    return project


def assign(project, user, role=None):
    assignment = ProjectAssignment(
        organization_id=project.organization_id, project_id=project.id,
        user_id=user.id, role=role,
    )
    _db.session.add(assignment)
    _db.session.flush()
    return assignment


def make_settings(org, **kw):
    settings = OrganizationSettings(organization_id=org.id, **kw)
    _db.session.add(settings)
    _db.session.flush()
    return settings


def build_org(name="Acme Ltd", slug="acme", domain="acme.test"):
    """Organization with one user per workflow role, a project and settings.

    The reviewer and approver are assigned to the project; the owner is an
    org admin without assignment.
    """
    org = make_org(name=name, slug=slug)
    owner = make_user(f"owner@{domain}", "Olive Owner")
    submitter = make_user(f"sam@{domain}", "Sam Submitter")
    reviewer = make_user(f"rita@{domain}", "Rita Reviewer", role="reviewer")
    approver = make_user(f"alex@{domain}", "Alex Approver", role="approver")
    outsider = make_user(f"otto@{domain}", "Otto Submitter")

    make_member(org, owner, role="owner")
    for user in (submitter, reviewer, approver, outsider):
        make_member(org, user)

    project = make_project(org)
    for user in (submitter, reviewer, approver):
        assign(project, user)

    settings = make_settings(org)
    _db.session.commit()
    return SimpleNamespace(
        org=org, owner=owner, submitter=submitter, reviewer=reviewer,
        approver=approver, outsider=outsider, project=project, settings=settings,
    )


def make_requisition(ns, status="draft", *, number=None, title="Office chairs",
                     amount=Decimal("1250000"), submitted_by=None, **kw):
    number = number or f"REQ-{Requisition.query.count() + 1:05d}"
    requisition = Requisition(
        organization_id=ns.org.id,
        project_id=ns.project.id,
        requisition_number=number,
        title=title,
        amount=amount,
        status=status,
        submitted_by=(submitted_by or ns.submitter).id,
        **kw,
    )
    _db.session.add(requisition)
    _db.session.commit()
    return requisition
