"""
Shared pytest fixtures for the RBAC service tests.

Provides:
- An in-memory SQLite database (StaticPool) with a fresh schema per test
- A fresh in-process permission cache per test
- Catalog, user and membership factories
- A TestClient wired to the test session and cache
"""

import os

# Settings are read at import time by app.core.database; point them at SQLite first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("RBAC_CACHE_BACKEND", "memory")
os.environ.setdefault("SECRET_KEY", "test-secret")

import uuid
from typing import Generator, Iterable, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.database import SessionLocal, engine, get_db
from app.core.permission_cache import InMemoryPermissionCache, get_permission_cache
from app.core.security import create_access_token
from app.models import hospital_membership, rbac, user  # noqa: F401  (register tables)
from app.models.base import Base
from app.models.hospital_membership import HospitalMembership, MembershipStatus
from app.models.rbac import (
    ALL_ACTIONS,
    RbacResource,
    RbacResourceAction,
    RbacResourceField,
    RbacRolePermission,
)
from app.models.user import User

HOSPITAL_A = uuid.UUID("aaaaaaaa-0000-0000-0000-000000000001")
HOSPITAL_B = uuid.UUID("bbbbbbbb-0000-0000-0000-000000000002")


# ============================================================================
# Database / cache
# ============================================================================


@pytest.fixture
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def cache() -> InMemoryPermissionCache:
    return InMemoryPermissionCache(ttl_seconds=300)


# ============================================================================
# Factories
# ============================================================================


def make_resource(
    db: Session,
    code: str,
    *,
    name: Optional[str] = None,
    category: str = "hospital",
    parent_code: Optional[str] = None,
    sort_order: int = 0,
    actions: Iterable[str] = ALL_ACTIONS,
    fields: Iterable[str] = (),
    element_type: str = "page",
    is_active: bool = True,
) -> RbacResource:
    resource = RbacResource(
        code=code,
        name=name or code,
        category=category,
        parent_code=parent_code,
        sort_order=sort_order,
        element_type=element_type,
        is_active=is_active,
    )
    db.add(resource)
    db.flush()
    for action in actions:
        db.add(RbacResourceAction(resource_id=resource.id, action=action, name=action.title()))
    for field_code in fields:
        db.add(RbacResourceField(resource_id=resource.id, field_code=field_code, field_name=field_code))
    db.commit()
    return resource


def make_user(db: Session, email: str, *, is_super_admin: bool = False, is_active: bool = True) -> User:
    u = User(email=email, full_name=email.split("@")[0], is_super_admin=is_super_admin, is_active=is_active)
    db.add(u)
    db.commit()
    db.refresh(u)
    return u


def add_membership(
    db: Session,
    user_obj: User,
    hospital_id: uuid.UUID,
    role: str,
    status: MembershipStatus = MembershipStatus.ACTIVE,
) -> HospitalMembership:
    membership = HospitalMembership(user_id=user_obj.id, hospital_id=hospital_id, role=role, status=status)
    db.add(membership)
    db.commit()
    return membership


def grant_role(
    db: Session,
    role: str,
    resource: RbacResource,
    actions: Iterable[str],
    viewable: Iterable[str] = (),
    editable: Iterable[str] = (),
) -> RbacRolePermission:
    row = RbacRolePermission(
        role=role,
        resource_id=resource.id,
        allowed_actions=list(actions),
        field_permissions={"viewable": list(viewable), "editable": list(editable)},
    )
    db.add(row)
    db.commit()
    return row


def auth_headers(user_obj: User, hospital_id: Optional[uuid.UUID] = None) -> dict:
    headers = {"Authorization": f"Bearer {create_access_token(str(user_obj.id))}"}
    if hospital_id is not None:
        headers["X-Hospital-ID"] = str(hospital_id)
    return headers


# ============================================================================
# Common data
# ============================================================================


@pytest.fixture
def catalog(db: Session) -> dict[str, RbacResource]:
    """
    hospital.doctors
      hospital.doctors.list          (view, edit)
      hospital.doctors.inviteButton  (view, add)
    hospital.patients                (fields: demographics, medicalHistory)
    admin.rbac                       (admin category)
    """
    resources = {
        "hospital.doctors": make_resource(db, "hospital.doctors", sort_order=10),
        "hospital.patients": make_resource(
            db, "hospital.patients", sort_order=20, fields=("demographics", "medicalHistory")
        ),
        "admin.rbac": make_resource(db, "admin.rbac", category="admin", sort_order=90),
    }
    resources["hospital.doctors.list"] = make_resource(
        db,
        "hospital.doctors.list",
        parent_code="hospital.doctors",
        sort_order=2,
        actions=("view", "edit"),
        element_type="table",
    )
    resources["hospital.doctors.inviteButton"] = make_resource(
        db,
        "hospital.doctors.inviteButton",
        parent_code="hospital.doctors",
        sort_order=1,
        actions=("view", "add"),
        element_type="action",
    )
    return resources


@pytest.fixture
def super_admin(db: Session) -> User:
    return make_user(db, "root@platform.local", is_super_admin=True)


@pytest.fixture
def doctor(db: Session) -> User:
    u = make_user(db, "doctor@hospital-a.local")
    add_membership(db, u, HOSPITAL_A, "DOCTOR")
    return u


# ============================================================================
# API client
# ============================================================================


@pytest.fixture
def client(db: Session, cache: InMemoryPermissionCache) -> Generator[TestClient, None, None]:
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_permission_cache] = lambda: cache
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
