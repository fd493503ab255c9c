# app/services/permission_service.py
"""
Service for resolving and checking user permissions, and for the admin
operations that edit role defaults, hospital overrides and user overrides.

Read path: cache -> (miss) stores + pure resolver -> cache.
Write path: validate -> store upsert/delete -> commit -> invalidate cache.
Invalidation happens before the write call returns, so the next check
always sees the committed grant.
"""

import logging
from typing import Optional, Sequence
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.permission_cache import (
    USER_PERMISSIONS_DOMAIN,
    PermissionCache,
    hospital_overrides_key,
    role_permissions_key,
    user_overrides_key,
    user_permissions_key,
)
from app.models.hospital_membership import HospitalMembership, MembershipStatus
from app.models.rbac import RbacHospitalRoleOverride, RbacRolePermission, RbacUserPermission
from app.models.user import ROLE_LABELS, RoleName, User
from app.schemas.rbac import (
    BulkUpdateResult,
    FieldPermissions,
    GrantUpdate,
    HospitalOverrideResponse,
    PermissionCheckResult,
    PermissionTreeResponse,
    ResolvedPermissionResponse,
    ResourceResponse,
    RolePermissionResponse,
    RoleResponse,
    UserOverrideResponse,
    UserOverrideUpdate,
    UserPermissionsResponse,
)
from app.services.permission_resolver import (
    FieldAccess,
    HospitalOverride,
    PermissionIdentity,
    ResolutionResult,
    RoleDefault,
    UserOverride,
    resolve_permissions,
)
from app.services.permission_tree_service import (
    annotate_tree,
    build_permission_map,
    cascade_toggle,
    find_node,
)
from app.services.rbac_catalog_service import get_resource_by_id, get_resources, get_resources_tree
from app.services.rbac_errors import (
    BulkUpdateError,
    GrantNotFoundError,
    InvalidGrantError,
    PermissionBackendError,
    RbacError,
    ResourceNotFoundError,
)
from app.services.rbac_store_service import (
    HospitalGrantKey,
    HospitalOverrideStore,
    RoleGrantKey,
    RolePermissionStore,
    UserGrantKey,
    UserOverrideStore,
)

logger = logging.getLogger(__name__)


# =============================================
# Roles
# =============================================


def get_roles() -> list[RoleResponse]:
    return [RoleResponse(role=r.value, name=ROLE_LABELS[r], is_system=True) for r in RoleName]


def validate_editable_role(role: str) -> str:
    """
    Reject unknown roles and SUPER_ADMIN, which is a hard-coded bypass and
    never has grant rows.
    """
    try:
        role_name = RoleName(role)
    except ValueError:
        logger.warning(f"Rejected unknown role '{role}'")
        raise InvalidGrantError(f"Unknown role: {role}") from None
    if role_name is RoleName.SUPER_ADMIN:
        logger.warning("Rejected SUPER_ADMIN grant edit")
        raise InvalidGrantError("Cannot modify SUPER_ADMIN permissions")
    return role_name.value


# =============================================
# Write helpers
# =============================================


def _commit(db: Session, operation: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to commit {operation}: {exc}")
        raise PermissionBackendError(f"Failed to commit {operation}") from exc


def _validate_actions(resource: ResourceResponse, actions: Sequence[str], label: str = "allowed") -> frozenset[str]:
    declared = set(resource.declared_actions)
    undeclared = sorted(set(actions) - declared)
    if undeclared:
        logger.warning(f"Rejected undeclared {label} action(s) {undeclared} on '{resource.code}'")
        raise InvalidGrantError(
            f"Resource '{resource.code}' does not support {label} action(s): {', '.join(undeclared)}"
        )
    return frozenset(actions)


def _field_access(field_permissions: Optional[FieldPermissions]) -> FieldAccess:
    if field_permissions is None:
        return FieldAccess()
    return FieldAccess(viewable=tuple(field_permissions.viewable), editable=tuple(field_permissions.editable))


def _active_resource(db: Session, cache: PermissionCache, resource_id: UUID) -> ResourceResponse:
    try:
        return get_resource_by_id(db, cache, resource_id)
    except ResourceNotFoundError:
        logger.warning(f"Rejected grant write for unknown or inactive resource {resource_id}")
        raise


def _field_permissions(data: Optional[dict]) -> FieldPermissions:
    data = data or {}
    return FieldPermissions(viewable=data.get("viewable") or [], editable=data.get("editable") or [])


def _role_permission_response(row: RbacRolePermission) -> RolePermissionResponse:
    return RolePermissionResponse(
        id=row.id,
        role=row.role,
        resource_id=row.resource_id,
        resource_code=row.resource.code if row.resource else "",
        resource_name=row.resource.name if row.resource else "",
        allowed_actions=list(row.allowed_actions or []),
        field_permissions=_field_permissions(row.field_permissions),
    )


def _hospital_override_response(row: RbacHospitalRoleOverride) -> HospitalOverrideResponse:
    return HospitalOverrideResponse(
        id=row.id,
        hospital_id=row.hospital_id,
        role=row.role,
        resource_id=row.resource_id,
        resource_code=row.resource.code if row.resource else "",
        allowed_actions=list(row.allowed_actions or []),
        field_permissions=_field_permissions(row.field_permissions),
    )


def _user_override_response(row: RbacUserPermission) -> UserOverrideResponse:
    return UserOverrideResponse(
        id=row.id,
        user_id=row.user_id,
        hospital_id=row.hospital_id,
        resource_id=row.resource_id,
        resource_code=row.resource.code if row.resource else "",
        allowed_actions=list(row.allowed_actions or []),
        denied_actions=list(row.denied_actions or []),
        field_permissions=_field_permissions(row.field_permissions),
    )


# =============================================
# Role Permissions
# =============================================


def get_role_permissions(db: Session, cache: PermissionCache, role: str) -> list[RolePermissionResponse]:
    """Role default grants, cached per role."""
    cache_key = role_permissions_key(role)
    cached = cache.get(cache_key)
    if cached is not None:
        return [RolePermissionResponse.model_validate(p) for p in cached]

    result = [_role_permission_response(row) for row in RolePermissionStore(db).list_for_role(role)]
    cache.set(cache_key, [p.model_dump(mode="json") for p in result])
    return result


def update_role_permission(
    db: Session,
    cache: PermissionCache,
    role: str,
    payload: GrantUpdate,
) -> RolePermissionResponse:
    """
    Full-row upsert of a role default. Omitted field permissions are stored
    empty.
    """
    role = validate_editable_role(role)
    resource = _active_resource(db, cache, payload.resource_id)
    allowed = _validate_actions(resource, payload.allowed_actions)

    key = RoleGrantKey(role=role, resource_id=resource.id)
    grant = RoleDefault(
        role=role,
        resource_id=resource.id,
        allowed_actions=allowed,
        field_access=_field_access(payload.field_permissions),
    )
    try:
        row = RolePermissionStore(db).upsert(key, grant)
        _commit(db, "role permission")
    except PermissionBackendError:
        db.rollback()
        raise

    cache.invalidate(role_permissions_key(role))
    cache.invalidate(USER_PERMISSIONS_DOMAIN)

    logger.info(f"Role permission updated: {role} {resource.code} -> {sorted(allowed)}")
    db.refresh(row)
    return _role_permission_response(row)


def bulk_update_role_permissions(
    db: Session,
    cache: PermissionCache,
    role: str,
    permissions: Sequence[GrantUpdate],
) -> BulkUpdateResult:
    """
    Apply updates one by one, each with its own commit and invalidation.
    A failure stops the batch; earlier items stay committed and the raised
    BulkUpdateError carries the count.
    """
    updated = 0
    for index, item in enumerate(permissions):
        try:
            update_role_permission(db, cache, role, item)
        except RbacError as exc:
            logger.warning(f"Bulk role permission update for {role} stopped at item {index}: {exc}")
            raise BulkUpdateError(updated=updated, failed_index=index, cause=exc) from exc
        updated += 1
    return BulkUpdateResult(success=True, updated=updated)


# =============================================
# Hospital Overrides
# =============================================


def get_hospital_overrides(
    db: Session, cache: PermissionCache, hospital_id: UUID
) -> list[HospitalOverrideResponse]:
    cache_key = hospital_overrides_key(hospital_id)
    cached = cache.get(cache_key)
    if cached is not None:
        return [HospitalOverrideResponse.model_validate(o) for o in cached]

    result = [_hospital_override_response(row) for row in HospitalOverrideStore(db).list_for_hospital(hospital_id)]
    cache.set(cache_key, [o.model_dump(mode="json") for o in result])
    return result


def set_hospital_override(
    db: Session,
    cache: PermissionCache,
    hospital_id: UUID,
    role: str,
    payload: GrantUpdate,
) -> HospitalOverrideResponse:
    role = validate_editable_role(role)
    resource = _active_resource(db, cache, payload.resource_id)
    allowed = _validate_actions(resource, payload.allowed_actions)

    key = HospitalGrantKey(hospital_id=hospital_id, role=role, resource_id=resource.id)
    grant = HospitalOverride(
        hospital_id=hospital_id,
        role=role,
        resource_id=resource.id,
        allowed_actions=allowed,
        field_access=_field_access(payload.field_permissions),
    )
    try:
        row = HospitalOverrideStore(db).upsert(key, grant)
        _commit(db, "hospital override")
    except PermissionBackendError:
        db.rollback()
        raise

    cache.invalidate(hospital_overrides_key(hospital_id))
    cache.invalidate(USER_PERMISSIONS_DOMAIN)

    logger.info(f"Hospital override set: hospital={hospital_id} {role} {resource.code} -> {sorted(allowed)}")
    db.refresh(row)
    return _hospital_override_response(row)


def delete_hospital_override(
    db: Session,
    cache: PermissionCache,
    hospital_id: UUID,
    override_id: UUID,
) -> None:
    """Remove an override; resolution falls back to the role default."""
    store = HospitalOverrideStore(db)
    row = store.get_by_id(hospital_id, override_id)
    if row is None:
        raise GrantNotFoundError("Hospital override not found")

    key = HospitalGrantKey(hospital_id=row.hospital_id, role=row.role, resource_id=row.resource_id)
    try:
        store.delete(key)
        _commit(db, "hospital override deletion")
    except PermissionBackendError:
        db.rollback()
        raise

    cache.invalidate(hospital_overrides_key(hospital_id))
    cache.invalidate(USER_PERMISSIONS_DOMAIN)
    logger.info(f"Hospital override deleted: hospital={hospital_id} override={override_id}")


# =============================================
# User Overrides
# =============================================


def get_user_overrides(db: Session, cache: PermissionCache, user_id: UUID) -> list[UserOverrideResponse]:
    cache_key = user_overrides_key(user_id)
    cached = cache.get(cache_key)
    if cached is not None:
        return [UserOverrideResponse.model_validate(o) for o in cached]

    result = [_user_override_response(row) for row in UserOverrideStore(db).list_for_user(user_id)]
    cache.set(cache_key, [o.model_dump(mode="json") for o in result])
    return result


def set_user_override(
    db: Session,
    cache: PermissionCache,
    user_id: UUID,
    payload: UserOverrideUpdate,
) -> UserOverrideResponse:
    resource = _active_resource(db, cache, payload.resource_id)
    allowed = _validate_actions(resource, payload.allowed_actions)
    denied = _validate_actions(resource, payload.denied_actions, label="denied")

    try:
        user = db.query(User).filter(User.id == user_id).first()
    except SQLAlchemyError as exc:
        raise PermissionBackendError("Failed to read user") from exc
    if user is None:
        raise GrantNotFoundError("User not found")
    if user.is_super_admin:
        raise InvalidGrantError("Cannot set permission overrides for a super admin")

    key = UserGrantKey(user_id=user_id, resource_id=resource.id, hospital_id=payload.hospital_id)
    grant = UserOverride(
        user_id=user_id,
        resource_id=resource.id,
        hospital_id=payload.hospital_id,
        allowed_actions=allowed,
        denied_actions=denied,
        field_access=_field_access(payload.field_permissions),
    )
    try:
        row = UserOverrideStore(db).upsert(key, grant)
        _commit(db, "user override")
    except PermissionBackendError:
        db.rollback()
        raise

    cache.invalidate(user_overrides_key(user_id))
    cache.invalidate(f"{USER_PERMISSIONS_DOMAIN}:{user_id}")

    logger.info(
        f"User override set: user={user_id} hospital={payload.hospital_id} {resource.code} "
        f"allow={sorted(allowed)} deny={sorted(denied)}"
    )
    db.refresh(row)
    return _user_override_response(row)


def delete_user_override(db: Session, cache: PermissionCache, user_id: UUID, override_id: UUID) -> None:
    store = UserOverrideStore(db)
    row = store.get_by_id(user_id, override_id)
    if row is None:
        raise GrantNotFoundError("User override not found")

    key = UserGrantKey(user_id=row.user_id, resource_id=row.resource_id, hospital_id=row.hospital_id)
    try:
        store.delete(key)
        _commit(db, "user override deletion")
    except PermissionBackendError:
        db.rollback()
        raise

    cache.invalidate(user_overrides_key(user_id))
    cache.invalidate(f"{USER_PERMISSIONS_DOMAIN}:{user_id}")
    logger.info(f"User override deleted: user={user_id} override={override_id}")


# =============================================
# User Permissions Resolution
# =============================================


def load_identity(db: Session, user_id: UUID, hospital_id: Optional[UUID]) -> PermissionIdentity:
    """
    Super-admin flag from the user row; role from the ACTIVE membership in
    the given hospital. Unknown users resolve to an identity with no role.
    """
    try:
        user = db.query(User).filter(User.id == user_id).first()
        if user is None or not user.is_active:
            return PermissionIdentity(user_id=user_id, hospital_id=hospital_id)
        if user.is_super_admin:
            return PermissionIdentity(user_id=user_id, hospital_id=hospital_id, is_super_admin=True)
        if hospital_id is None:
            return PermissionIdentity(user_id=user_id)

        membership = (
            db.query(HospitalMembership)
            .filter(
                HospitalMembership.user_id == user_id,
                HospitalMembership.hospital_id == hospital_id,
                HospitalMembership.status == MembershipStatus.ACTIVE,
            )
            .first()
        )
    except SQLAlchemyError as exc:
        logger.error(f"Failed to load identity for user {user_id}: {exc}")
        raise PermissionBackendError("Failed to load user identity") from exc

    role = membership.role if membership else None
    if role == RoleName.SUPER_ADMIN.value:
        logger.warning(f"Ignoring SUPER_ADMIN membership role for user {user_id}; super admin is a user flag")
        role = None
    return PermissionIdentity(user_id=user_id, hospital_id=hospital_id, role=role)


def resolve_for_identity(db: Session, cache: PermissionCache, identity: PermissionIdentity) -> ResolutionResult:
    """Gather inputs for the pure resolver. Super admins skip every grant lookup."""
    resources = get_resources(db, cache)
    if identity.is_super_admin or not identity.role:
        return resolve_permissions(identity, resources)

    role_defaults = RolePermissionStore(db).grants_for_role(identity.role)
    hospital_overrides: list[HospitalOverride] = []
    if identity.hospital_id is not None:
        hospital_overrides = HospitalOverrideStore(db).grants_for_role(identity.hospital_id, identity.role)
    user_overrides = UserOverrideStore(db).applicable_grants(identity.user_id, identity.hospital_id)

    return resolve_permissions(identity, resources, role_defaults, hospital_overrides, user_overrides)


def _to_response(result: ResolutionResult) -> UserPermissionsResponse:
    identity = result.identity
    return UserPermissionsResponse(
        role=RoleName.SUPER_ADMIN.value if identity.is_super_admin else identity.role,
        is_super_admin=identity.is_super_admin,
        hospital_id=identity.hospital_id,
        permissions=[
            ResolvedPermissionResponse(
                resource_code=p.resource_code,
                resource_name=p.resource_name,
                category=p.category,
                allowed_actions=p.sorted_actions(),
                field_permissions=FieldPermissions(
                    viewable=list(p.field_access.viewable),
                    editable=list(p.field_access.editable),
                ),
                source=p.source.value,
            )
            for p in result.permissions
        ],
    )


def get_user_permissions(
    db: Session,
    cache: PermissionCache,
    user_id: UUID,
    hospital_id: Optional[UUID],
) -> UserPermissionsResponse:
    """
    Effective permissions for one user in one hospital context (or none).
    Role-less results are not cached: membership changes do not invalidate.
    """
    cache_key = user_permissions_key(user_id, hospital_id)
    cached = cache.get(cache_key)
    if cached is not None:
        try:
            return UserPermissionsResponse.model_validate(cached)
        except ValidationError as exc:
            logger.warning(f"Ignoring malformed cached permissions for user {user_id}: {exc}")

    identity = load_identity(db, user_id, hospital_id)
    result = _to_response(resolve_for_identity(db, cache, identity))

    if identity.is_super_admin or identity.role:
        cache.set(cache_key, result.model_dump(mode="json"))
    return result


# =============================================
# Permission Check
# =============================================


def check_permission(
    db: Session,
    cache: PermissionCache,
    user_id: UUID,
    hospital_id: Optional[UUID],
    resource_code: str,
    action: str,
    field: Optional[str] = None,
) -> PermissionCheckResult:
    """
    Decide one (resource, action, field?) request. Denial is a normal return
    value; only infrastructure failures raise (PermissionBackendError).
    """
    permissions = get_user_permissions(db, cache, user_id, hospital_id)

    if permissions.is_super_admin:
        return PermissionCheckResult(allowed=True, reason="Super admin bypass")

    resource_permission = permissions.for_resource(resource_code)
    if resource_permission is None:
        return PermissionCheckResult(allowed=False, reason="No permission for this resource")

    if action not in resource_permission.allowed_actions:
        return PermissionCheckResult(allowed=False, reason=f"Action '{action}' not allowed")

    if field:
        field_access = _field_access(resource_permission.field_permissions)
        if not field_access.allows(field, action):
            return PermissionCheckResult(allowed=False, reason=f"Field '{field}' not accessible")

    return PermissionCheckResult(allowed=True)


# =============================================
# Permission Tree (admin UI)
# =============================================


def get_role_permission_tree(db: Session, cache: PermissionCache, role: str) -> PermissionTreeResponse:
    role = validate_editable_role(role)
    tree = get_resources_tree(db, cache)
    permission_map = build_permission_map(
        (p.resource_code, p.allowed_actions) for p in get_role_permissions(db, cache, role)
    )
    return PermissionTreeResponse(
        role=role,
        hospital=annotate_tree(tree.hospital, permission_map),
        admin=annotate_tree(tree.admin, permission_map),
    )


def toggle_role_permission(
    db: Session,
    cache: PermissionCache,
    role: str,
    resource_code: str,
    action: str,
) -> BulkUpdateResult:
    """
    Toggle `action` on a resource and cascade to all of its descendants,
    one upsert per affected resource. Field permissions of each row are kept.
    """
    role = validate_editable_role(role)
    tree = get_resources_tree(db, cache)
    node = find_node(list(tree.hospital) + list(tree.admin), resource_code)
    if node is None:
        raise ResourceNotFoundError(f"Resource '{resource_code}' not found or inactive")

    # Fresh read: cascades are read-modify-write and must not start from a stale cache
    store = RolePermissionStore(db)
    rows = {row.resource_id: row for row in store.list_for_role(role)}
    permission_map = build_permission_map(
        (row.resource.code, row.allowed_actions or []) for row in rows.values() if row.resource
    )

    writes = cascade_toggle(node, action, permission_map)
    updates = [
        GrantUpdate(
            resource_id=w.resource_id,
            allowed_actions=w.sorted_actions(),
            field_permissions=_field_permissions(rows[w.resource_id].field_permissions)
            if w.resource_id in rows
            else None,
        )
        for w in writes
    ]
    logger.info(f"Cascading '{action}' toggle on {resource_code} for {role}: {len(updates)} write(s)")
    return bulk_update_role_permissions(db, cache, role, updates)
