# app/schemas/rbac.py
from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

from app.models.rbac import ALL_ACTIONS

WILDCARD_FIELD = "*"


def _normalize_actions(actions: list[str]) -> list[str]:
    """
    Lower-case, de-duplicate and validate action names, keeping canonical order.
    """
    normalized = {a.strip().lower() for a in actions}
    unknown = sorted(normalized - set(ALL_ACTIONS))
    if unknown:
        raise ValueError(f"Unknown actions: {', '.join(unknown)}. Allowed: {', '.join(ALL_ACTIONS)}")
    return [a for a in ALL_ACTIONS if a in normalized]


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class FieldPermissions(BaseModel):
    viewable: list[str] = []
    editable: list[str] = []

    @field_validator("viewable", "editable")
    @classmethod
    def strip_blank(cls, v: list[str]) -> list[str]:
        cleaned = [f.strip() for f in v if f and f.strip()]
        return list(dict.fromkeys(cleaned))


class ResourceActionResponse(BaseModel):
    id: UUID
    resource_id: UUID
    action: str
    name: str
    description: str | None = None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class ResourceFieldResponse(BaseModel):
    id: UUID
    resource_id: UUID
    field_code: str
    field_name: str
    field_type: str = "field"
    description: str | None = None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class ResourceResponse(BaseModel):
    id: UUID
    code: str
    name: str
    description: str | None = None
    category: str
    path_pattern: str | None = None
    parent_code: str | None = None
    sort_order: int = 0
    element_type: str = "page"
    is_active: bool = True
    actions: list[ResourceActionResponse] = []
    fields: list[ResourceFieldResponse] = []

    model_config = ConfigDict(from_attributes=True)

    @property
    def declared_actions(self) -> list[str]:
        declared = {a.action for a in self.actions if a.is_active}
        return [a for a in ALL_ACTIONS if a in declared]


class ResourceTreeNode(BaseModel):
    id: UUID
    code: str
    name: str
    description: str | None = None
    category: str
    element_type: str = "page"
    parent_code: str | None = None
    sort_order: int = 0
    actions: list[str] = []
    children: list[ResourceTreeNode] = []

    @property
    def is_leaf(self) -> bool:
        return not self.children


class ResourceTree(BaseModel):
    hospital: list[ResourceTreeNode] = []
    admin: list[ResourceTreeNode] = []


class ResourceActivationUpdate(BaseModel):
    is_active: bool


# ---------------------------------------------------------------------------
# Roles and grants
# ---------------------------------------------------------------------------


class RoleResponse(BaseModel):
    role: str
    name: str
    is_system: bool = True


class GrantUpdate(BaseModel):
    """Full-row upsert payload for a role default or hospital override."""

    resource_id: UUID
    allowed_actions: list[str]
    field_permissions: FieldPermissions | None = None

    @field_validator("allowed_actions")
    @classmethod
    def validate_allowed_actions(cls, v: list[str]) -> list[str]:
        return _normalize_actions(v)


class BulkRolePermissionUpdate(BaseModel):
    permissions: list[GrantUpdate]


class BulkUpdateResult(BaseModel):
    success: bool
    updated: int


class UserOverrideUpdate(GrantUpdate):
    allowed_actions: list[str] = []
    hospital_id: UUID | None = None
    denied_actions: list[str] = []

    @field_validator("denied_actions")
    @classmethod
    def validate_denied_actions(cls, v: list[str]) -> list[str]:
        return _normalize_actions(v)


class RolePermissionResponse(BaseModel):
    id: UUID
    role: str
    resource_id: UUID
    resource_code: str
    resource_name: str
    allowed_actions: list[str]
    field_permissions: FieldPermissions


class HospitalOverrideResponse(BaseModel):
    id: UUID
    hospital_id: UUID
    role: str
    resource_id: UUID
    resource_code: str
    allowed_actions: list[str]
    field_permissions: FieldPermissions


class UserOverrideResponse(BaseModel):
    id: UUID
    user_id: UUID
    hospital_id: UUID | None = None
    resource_id: UUID
    resource_code: str
    allowed_actions: list[str]
    denied_actions: list[str]
    field_permissions: FieldPermissions


# ---------------------------------------------------------------------------
# Resolution and checks
# ---------------------------------------------------------------------------


class ResolvedPermissionResponse(BaseModel):
    resource_code: str
    resource_name: str
    category: str
    allowed_actions: list[str]
    field_permissions: FieldPermissions
    source: str


class UserPermissionsResponse(BaseModel):
    role: str | None = None
    is_super_admin: bool = False
    hospital_id: UUID | None = None
    permissions: list[ResolvedPermissionResponse] = []

    def for_resource(self, resource_code: str) -> ResolvedPermissionResponse | None:
        for permission in self.permissions:
            if permission.resource_code == resource_code:
                return permission
        return None


class PermissionCheckRequest(BaseModel):
    resource_code: str
    action: str
    field: str | None = None


class PermissionCheckResult(BaseModel):
    allowed: bool
    reason: str | None = None


# ---------------------------------------------------------------------------
# Permission tree (admin UI)
# ---------------------------------------------------------------------------


class PermissionToggleRequest(BaseModel):
    resource_code: str
    action: str

    @field_validator("action")
    @classmethod
    def validate_action(cls, v: str) -> str:
        return _normalize_actions([v])[0]


class PermissionTreeNodeResponse(BaseModel):
    code: str
    name: str
    element_type: str
    actions: list[str]
    granted: list[str]
    states: dict[str, str]
    children: list[PermissionTreeNodeResponse] = []


class PermissionTreeResponse(BaseModel):
    role: str
    hospital: list[PermissionTreeNodeResponse] = []
    admin: list[PermissionTreeNodeResponse] = []


ResourceTreeNode.model_rebuild()
PermissionTreeNodeResponse.model_rebuild()
