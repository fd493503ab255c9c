# app/services/rbac_store_service.py
"""
Keyed read/write access to the three grant tables.

The stores do no resolution and no validation: they translate between ORM
rows and the frozen grant types of app.services.permission_resolver.
Writes are full-row upserts and only flush; the caller commits.
"""

import logging
from typing import NamedTuple, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.rbac import ALL_ACTIONS, RbacHospitalRoleOverride, RbacRolePermission, RbacUserPermission
from app.services.permission_resolver import (
    FieldAccess,
    HospitalOverride,
    RoleDefault,
    UserOverride,
)
from app.services.rbac_errors import PermissionBackendError

logger = logging.getLogger(__name__)


class RoleGrantKey(NamedTuple):
    role: str
    resource_id: UUID


class HospitalGrantKey(NamedTuple):
    hospital_id: UUID
    role: str
    resource_id: UUID


class UserGrantKey(NamedTuple):
    user_id: UUID
    resource_id: UUID
    hospital_id: Optional[UUID]


def _backend_error(operation: str, exc: SQLAlchemyError) -> PermissionBackendError:
    logger.error(f"RBAC store {operation} failed: {exc}")
    return PermissionBackendError(f"RBAC store {operation} failed")


def _actions(values) -> frozenset[str]:
    return frozenset(values or ())


def _ordered(actions: frozenset[str]) -> list[str]:
    return [a for a in ALL_ACTIONS if a in actions]


class RolePermissionStore:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_grant(row: RbacRolePermission) -> RoleDefault:
        return RoleDefault(
            id=row.id,
            role=row.role,
            resource_id=row.resource_id,
            allowed_actions=_actions(row.allowed_actions),
            field_access=FieldAccess.from_dict(row.field_permissions),
        )

    def _row(self, key: RoleGrantKey) -> Optional[RbacRolePermission]:
        return (
            self.db.query(RbacRolePermission)
            .filter(
                RbacRolePermission.role == key.role,
                RbacRolePermission.resource_id == key.resource_id,
            )
            .first()
        )

    def get(self, key: RoleGrantKey) -> Optional[RoleDefault]:
        try:
            row = self._row(key)
        except SQLAlchemyError as exc:
            raise _backend_error("get role permission", exc) from exc
        return self.to_grant(row) if row else None

    def list_for_role(self, role: str) -> list[RbacRolePermission]:
        try:
            return self.db.query(RbacRolePermission).filter(RbacRolePermission.role == role).all()
        except SQLAlchemyError as exc:
            raise _backend_error("list role permissions", exc) from exc

    def grants_for_role(self, role: str) -> list[RoleDefault]:
        return [self.to_grant(row) for row in self.list_for_role(role)]

    def upsert(self, key: RoleGrantKey, grant: RoleDefault) -> RbacRolePermission:
        try:
            row = self._row(key)
            if row is None:
                row = RbacRolePermission(role=key.role, resource_id=key.resource_id)
                self.db.add(row)
            row.allowed_actions = _ordered(grant.allowed_actions)
            row.field_permissions = grant.field_access.to_dict()
            self.db.flush()
            return row
        except SQLAlchemyError as exc:
            raise _backend_error("upsert role permission", exc) from exc

    def delete(self, key: RoleGrantKey) -> bool:
        try:
            row = self._row(key)
            if row is None:
                return False
            self.db.delete(row)
            self.db.flush()
            return True
        except SQLAlchemyError as exc:
            raise _backend_error("delete role permission", exc) from exc


class HospitalOverrideStore:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_grant(row: RbacHospitalRoleOverride) -> HospitalOverride:
        return HospitalOverride(
            id=row.id,
            hospital_id=row.hospital_id,
            role=row.role,
            resource_id=row.resource_id,
            allowed_actions=_actions(row.allowed_actions),
            field_access=FieldAccess.from_dict(row.field_permissions),
        )

    def _row(self, key: HospitalGrantKey) -> Optional[RbacHospitalRoleOverride]:
        return (
            self.db.query(RbacHospitalRoleOverride)
            .filter(
                RbacHospitalRoleOverride.hospital_id == key.hospital_id,
                RbacHospitalRoleOverride.role == key.role,
                RbacHospitalRoleOverride.resource_id == key.resource_id,
            )
            .first()
        )

    def get(self, key: HospitalGrantKey) -> Optional[HospitalOverride]:
        try:
            row = self._row(key)
        except SQLAlchemyError as exc:
            raise _backend_error("get hospital override", exc) from exc
        return self.to_grant(row) if row else None

    def get_by_id(self, hospital_id: UUID, override_id: UUID) -> Optional[RbacHospitalRoleOverride]:
        try:
            return (
                self.db.query(RbacHospitalRoleOverride)
                .filter(
                    RbacHospitalRoleOverride.id == override_id,
                    RbacHospitalRoleOverride.hospital_id == hospital_id,
                )
                .first()
            )
        except SQLAlchemyError as exc:
            raise _backend_error("get hospital override", exc) from exc

    def list_for_hospital(self, hospital_id: UUID) -> list[RbacHospitalRoleOverride]:
        try:
            return (
                self.db.query(RbacHospitalRoleOverride)
                .filter(RbacHospitalRoleOverride.hospital_id == hospital_id)
                .all()
            )
        except SQLAlchemyError as exc:
            raise _backend_error("list hospital overrides", exc) from exc

    def grants_for_role(self, hospital_id: UUID, role: str) -> list[HospitalOverride]:
        try:
            rows = (
                self.db.query(RbacHospitalRoleOverride)
                .filter(
                    RbacHospitalRoleOverride.hospital_id == hospital_id,
                    RbacHospitalRoleOverride.role == role,
                )
                .all()
            )
        except SQLAlchemyError as exc:
            raise _backend_error("list hospital overrides", exc) from exc
        return [self.to_grant(row) for row in rows]

    def upsert(self, key: HospitalGrantKey, grant: HospitalOverride) -> RbacHospitalRoleOverride:
        try:
            row = self._row(key)
            if row is None:
                row = RbacHospitalRoleOverride(
                    hospital_id=key.hospital_id,
                    role=key.role,
                    resource_id=key.resource_id,
                )
                self.db.add(row)
            row.allowed_actions = _ordered(grant.allowed_actions)
            row.field_permissions = grant.field_access.to_dict()
            self.db.flush()
            return row
        except SQLAlchemyError as exc:
            raise _backend_error("upsert hospital override", exc) from exc

    def delete(self, key: HospitalGrantKey) -> bool:
        try:
            row = self._row(key)
            if row is None:
                return False
            self.db.delete(row)
            self.db.flush()
            return True
        except SQLAlchemyError as exc:
            raise _backend_error("delete hospital override", exc) from exc


class UserOverrideStore:
    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def to_grant(row: RbacUserPermission) -> UserOverride:
        return UserOverride(
            id=row.id,
            user_id=row.user_id,
            resource_id=row.resource_id,
            hospital_id=row.hospital_id,
            allowed_actions=_actions(row.allowed_actions),
            denied_actions=_actions(row.denied_actions),
            field_access=FieldAccess.from_dict(row.field_permissions),
        )

    def _row(self, key: UserGrantKey) -> Optional[RbacUserPermission]:
        query = self.db.query(RbacUserPermission).filter(
            RbacUserPermission.user_id == key.user_id,
            RbacUserPermission.resource_id == key.resource_id,
        )
        if key.hospital_id is None:
            query = query.filter(RbacUserPermission.hospital_id.is_(None))
        else:
            query = query.filter(RbacUserPermission.hospital_id == key.hospital_id)
        return query.first()

    def get(self, key: UserGrantKey) -> Optional[UserOverride]:
        try:
            row = self._row(key)
        except SQLAlchemyError as exc:
            raise _backend_error("get user override", exc) from exc
        return self.to_grant(row) if row else None

    def get_by_id(self, user_id: UUID, override_id: UUID) -> Optional[RbacUserPermission]:
        try:
            return (
                self.db.query(RbacUserPermission)
                .filter(
                    RbacUserPermission.id == override_id,
                    RbacUserPermission.user_id == user_id,
                )
                .first()
            )
        except SQLAlchemyError as exc:
            raise _backend_error("get user override", exc) from exc

    def list_for_user(self, user_id: UUID) -> list[RbacUserPermission]:
        try:
            return self.db.query(RbacUserPermission).filter(RbacUserPermission.user_id == user_id).all()
        except SQLAlchemyError as exc:
            raise _backend_error("list user overrides", exc) from exc

    def applicable_grants(self, user_id: UUID, hospital_id: Optional[UUID]) -> list[UserOverride]:
        """Rows scoped to `hospital_id` plus the user's global rows."""
        try:
            query = self.db.query(RbacUserPermission).filter(RbacUserPermission.user_id == user_id)
            if hospital_id is None:
                query = query.filter(RbacUserPermission.hospital_id.is_(None))
            else:
                query = query.filter(
                    (RbacUserPermission.hospital_id == hospital_id)
                    | (RbacUserPermission.hospital_id.is_(None))
                )
            rows = query.all()
        except SQLAlchemyError as exc:
            raise _backend_error("list user overrides", exc) from exc
        return [self.to_grant(row) for row in rows]

    def upsert(self, key: UserGrantKey, grant: UserOverride) -> RbacUserPermission:
        try:
            row = self._row(key)
            if row is None:
                row = RbacUserPermission(
                    user_id=key.user_id,
                    resource_id=key.resource_id,
                    hospital_id=key.hospital_id,
                )
                self.db.add(row)
            row.allowed_actions = _ordered(grant.allowed_actions)
            row.denied_actions = _ordered(grant.denied_actions)
            row.field_permissions = grant.field_access.to_dict()
            self.db.flush()
            return row
        except SQLAlchemyError as exc:
            raise _backend_error("upsert user override", exc) from exc

    def delete(self, key: UserGrantKey) -> bool:
        try:
            row = self._row(key)
            if row is None:
                return False
            self.db.delete(row)
            self.db.flush()
            return True
        except SQLAlchemyError as exc:
            raise _backend_error("delete user override", exc) from exc
