# app/services/permission_resolver.py
"""
Pure permission resolution.

Given the active resource catalog, the three grant sources and the caller's
identity context, compute the effective permission set. Nothing in this
module touches the database or the cache.

Precedence per resource: user override > hospital override > role default.
The selected source replaces allowed actions and field permissions as a
whole; sources are never unioned. A user override's denied actions are then
subtracted from the selected grant, whichever source that was.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Protocol, Sequence
from uuid import UUID

from app.models.rbac import ALL_ACTIONS, ResourceCategory

WILDCARD_FIELD = "*"


class GrantSource(str, Enum):
    SUPER_ADMIN = "super_admin"
    USER_OVERRIDE = "user_override"
    HOSPITAL_OVERRIDE = "hospital_override"
    ROLE_DEFAULT = "role_default"


@dataclass(frozen=True)
class FieldAccess:
    viewable: tuple[str, ...] = ()
    editable: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "FieldAccess":
        data = data or {}
        return cls(
            viewable=tuple(data.get("viewable") or ()),
            editable=tuple(data.get("editable") or ()),
        )

    @classmethod
    def everything(cls) -> "FieldAccess":
        return cls(viewable=(WILDCARD_FIELD,), editable=(WILDCARD_FIELD,))

    def to_dict(self) -> dict:
        return {"viewable": list(self.viewable), "editable": list(self.editable)}

    def allows(self, field_code: str, action: str) -> bool:
        """View checks the viewable list; every mutating action checks editable."""
        fields = self.viewable if action == "view" else self.editable
        return WILDCARD_FIELD in fields or field_code in fields


@dataclass(frozen=True)
class RoleDefault:
    role: str
    resource_id: UUID
    allowed_actions: frozenset[str]
    field_access: FieldAccess = FieldAccess()
    id: Optional[UUID] = None

    source = GrantSource.ROLE_DEFAULT


@dataclass(frozen=True)
class HospitalOverride:
    hospital_id: UUID
    role: str
    resource_id: UUID
    allowed_actions: frozenset[str]
    field_access: FieldAccess = FieldAccess()
    id: Optional[UUID] = None

    source = GrantSource.HOSPITAL_OVERRIDE


@dataclass(frozen=True)
class UserOverride:
    user_id: UUID
    resource_id: UUID
    hospital_id: Optional[UUID]
    allowed_actions: frozenset[str]
    denied_actions: frozenset[str] = frozenset()
    field_access: FieldAccess = FieldAccess()
    id: Optional[UUID] = None

    source = GrantSource.USER_OVERRIDE


Grant = RoleDefault | HospitalOverride | UserOverride


@dataclass(frozen=True)
class PermissionIdentity:
    user_id: UUID
    hospital_id: Optional[UUID] = None
    is_super_admin: bool = False
    role: Optional[str] = None


@dataclass(frozen=True)
class ResolvedPermission:
    resource_code: str
    resource_name: str
    category: str
    allowed_actions: frozenset[str]
    field_access: FieldAccess
    source: GrantSource

    def sorted_actions(self) -> list[str]:
        return [a for a in ALL_ACTIONS if a in self.allowed_actions]


@dataclass
class ResolutionResult:
    identity: PermissionIdentity
    permissions: list[ResolvedPermission] = field(default_factory=list)

    def for_resource(self, resource_code: str) -> Optional[ResolvedPermission]:
        for permission in self.permissions:
            if permission.resource_code == resource_code:
                return permission
        return None


class CatalogEntry(Protocol):
    id: UUID
    code: str
    name: str
    category: str


def select_user_override(
    overrides: Iterable[UserOverride], hospital_id: Optional[UUID]
) -> dict[UUID, UserOverride]:
    """
    Index user overrides by resource, keeping only rows that apply in the
    given hospital context. A row scoped to this hospital wins over a global
    (hospital_id NULL) row for the same resource.
    """
    selected: dict[UUID, UserOverride] = {}
    for override in overrides:
        if override.hospital_id is not None and override.hospital_id != hospital_id:
            continue
        current = selected.get(override.resource_id)
        if current is None or (current.hospital_id is None and override.hospital_id is not None):
            selected[override.resource_id] = override
    return selected


def select_grant(
    role_default: Optional[RoleDefault],
    hospital_override: Optional[HospitalOverride],
    user_override: Optional[UserOverride],
) -> Optional[Grant]:
    """Pick the single grant that applies: user > hospital > role."""
    if user_override is not None:
        return user_override
    if hospital_override is not None:
        return hospital_override
    return role_default


def apply_denials(
    allowed: frozenset[str], user_override: Optional[UserOverride]
) -> frozenset[str]:
    if user_override is None or not user_override.denied_actions:
        return allowed
    return allowed - user_override.denied_actions


def super_admin_permissions(resources: Sequence[CatalogEntry]) -> list[ResolvedPermission]:
    full = frozenset(ALL_ACTIONS)
    return [
        ResolvedPermission(
            resource_code=r.code,
            resource_name=r.name,
            category=r.category,
            allowed_actions=full,
            field_access=FieldAccess.everything(),
            source=GrantSource.SUPER_ADMIN,
        )
        for r in resources
    ]


def resolve_permissions(
    identity: PermissionIdentity,
    resources: Sequence[CatalogEntry],
    role_defaults: Iterable[RoleDefault] = (),
    hospital_overrides: Iterable[HospitalOverride] = (),
    user_overrides: Iterable[UserOverride] = (),
) -> ResolutionResult:
    """
    Compute the effective permissions of one identity over the active catalog.

    - Super admins get every action and every field on every resource, without
      looking at any grant.
    - No role means no grants.
    - Admin-category resources are never resolved for non super admins.
    - Resources whose final action set is empty are left out.
    """
    if identity.is_super_admin:
        return ResolutionResult(identity=identity, permissions=super_admin_permissions(resources))

    if not identity.role:
        return ResolutionResult(identity=identity)

    role_map = {g.resource_id: g for g in role_defaults if g.role == identity.role}
    hospital_map: dict[UUID, HospitalOverride] = {}
    if identity.hospital_id is not None:
        hospital_map = {
            g.resource_id: g
            for g in hospital_overrides
            if g.hospital_id == identity.hospital_id and g.role == identity.role
        }
    user_map = select_user_override(
        (g for g in user_overrides if g.user_id == identity.user_id),
        identity.hospital_id,
    )

    permissions: list[ResolvedPermission] = []
    for resource in resources:
        if resource.category == ResourceCategory.ADMIN.value:
            continue

        user_override = user_map.get(resource.id)
        grant = select_grant(role_map.get(resource.id), hospital_map.get(resource.id), user_override)
        if grant is None:
            continue

        allowed = apply_denials(frozenset(grant.allowed_actions), user_override)
        if not allowed:
            continue

        permissions.append(
            ResolvedPermission(
                resource_code=resource.code,
                resource_name=resource.name,
                category=resource.category,
                allowed_actions=allowed,
                field_access=grant.field_access,
                source=grant.source,
            )
        )

    return ResolutionResult(identity=identity, permissions=permissions)
