# app/api/v1/endpoints/rbac.py
"""
RBAC endpoints.

- Catalog reads and the caller's own permissions are open to any
  authenticated user (the UI needs them to render).
- Everything that reads or edits grants of other principals requires a
  super admin.
"""
import logging
from typing import NoReturn, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from app.api.v1.endpoints.auth import get_current_user
from app.core.database import get_db
from app.core.hospital_context import get_hospital_id
from app.core.permission_cache import PermissionCache, get_permission_cache
from app.dependencies.authz import require_super_admin
from app.models.user import User
from app.schemas.rbac import (
    BulkRolePermissionUpdate,
    BulkUpdateResult,
    GrantUpdate,
    HospitalOverrideResponse,
    PermissionCheckRequest,
    PermissionCheckResult,
    PermissionToggleRequest,
    PermissionTreeResponse,
    ResourceActivationUpdate,
    ResourceResponse,
    ResourceTree,
    RolePermissionResponse,
    RoleResponse,
    UserOverrideResponse,
    UserOverrideUpdate,
    UserPermissionsResponse,
)
from app.services import permission_service
from app.services.rbac_catalog_service import get_resources, get_resources_tree, set_resource_active
from app.services.rbac_errors import (
    BulkUpdateError,
    GrantNotFoundError,
    InvalidGrantError,
    PermissionBackendError,
    RbacError,
    ResourceNotFoundError,
)

router = APIRouter()
logger = logging.getLogger(__name__)

BACKEND_UNAVAILABLE = "Permission backend unavailable."


def _raise_http(exc: RbacError) -> NoReturn:
    """Map service errors onto HTTP responses."""
    if isinstance(exc, InvalidGrantError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, (ResourceNotFoundError, GrantNotFoundError)):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, BulkUpdateError):
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if isinstance(exc.cause, PermissionBackendError)
            else status.HTTP_400_BAD_REQUEST
        )
        cause = BACKEND_UNAVAILABLE if isinstance(exc.cause, PermissionBackendError) else str(exc.cause)
        raise HTTPException(
            status_code=code,
            detail={
                "message": cause,
                "failed_index": exc.failed_index,
                "updated": exc.updated,
            },
        ) from exc
    logger.error(f"RBAC request failed: {exc}")
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=BACKEND_UNAVAILABLE) from exc


# =============================================
# Catalog
# =============================================


@router.get("/resources", response_model=list[ResourceResponse], tags=["rbac"])
def list_resources(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> list[ResourceResponse]:
    try:
        return get_resources(db, cache)
    except RbacError as exc:
        _raise_http(exc)


@router.get("/resources/tree", response_model=ResourceTree, tags=["rbac"])
def resources_tree(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> ResourceTree:
    try:
        return get_resources_tree(db, cache)
    except RbacError as exc:
        _raise_http(exc)


@router.patch("/resources/{code}", response_model=ResourceResponse, tags=["rbac"])
def update_resource_activation(
    code: str,
    payload: ResourceActivationUpdate,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> ResourceResponse:
    """
    Soft-activate or deactivate a resource. Grants are kept.
    """
    try:
        resource = set_resource_active(db, cache, code, payload.is_active)
    except RbacError as exc:
        _raise_http(exc)
    return ResourceResponse.model_validate(resource)


# =============================================
# Roles
# =============================================


@router.get("/roles", response_model=list[RoleResponse], tags=["rbac"])
def list_roles(current_user: User = Depends(get_current_user)) -> list[RoleResponse]:
    return permission_service.get_roles()


@router.get("/roles/{role}/permissions", response_model=list[RolePermissionResponse], tags=["rbac"])
def role_permissions(
    role: str,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> list[RolePermissionResponse]:
    try:
        return permission_service.get_role_permissions(db, cache, role)
    except RbacError as exc:
        _raise_http(exc)


@router.put("/roles/{role}/permissions", response_model=RolePermissionResponse, tags=["rbac"])
def update_role_permission(
    role: str,
    payload: GrantUpdate,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> RolePermissionResponse:
    try:
        return permission_service.update_role_permission(db, cache, role, payload)
    except RbacError as exc:
        _raise_http(exc)


@router.put("/roles/{role}/permissions/bulk", response_model=BulkUpdateResult, tags=["rbac"])
def bulk_update_role_permissions(
    role: str,
    payload: BulkRolePermissionUpdate,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> BulkUpdateResult:
    try:
        return permission_service.bulk_update_role_permissions(db, cache, role, payload.permissions)
    except RbacError as exc:
        _raise_http(exc)


@router.get("/roles/{role}/tree", response_model=PermissionTreeResponse, tags=["rbac"])
def role_permission_tree(
    role: str,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> PermissionTreeResponse:
    try:
        return permission_service.get_role_permission_tree(db, cache, role)
    except RbacError as exc:
        _raise_http(exc)


@router.post("/roles/{role}/toggle", response_model=BulkUpdateResult, tags=["rbac"])
def toggle_role_permission(
    role: str,
    payload: PermissionToggleRequest,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> BulkUpdateResult:
    """
    Flip one action on a resource and every resource below it.
    """
    try:
        return permission_service.toggle_role_permission(
            db, cache, role, payload.resource_code, payload.action
        )
    except RbacError as exc:
        _raise_http(exc)


# =============================================
# Hospital Overrides
# =============================================


@router.get(
    "/hospitals/{hospital_id}/overrides",
    response_model=list[HospitalOverrideResponse],
    tags=["rbac"],
)
def hospital_overrides(
    hospital_id: UUID,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> list[HospitalOverrideResponse]:
    try:
        return permission_service.get_hospital_overrides(db, cache, hospital_id)
    except RbacError as exc:
        _raise_http(exc)


@router.put(
    "/hospitals/{hospital_id}/roles/{role}",
    response_model=HospitalOverrideResponse,
    tags=["rbac"],
)
def set_hospital_override(
    hospital_id: UUID,
    role: str,
    payload: GrantUpdate,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> HospitalOverrideResponse:
    try:
        return permission_service.set_hospital_override(db, cache, hospital_id, role, payload)
    except RbacError as exc:
        _raise_http(exc)


@router.delete(
    "/hospitals/{hospital_id}/overrides/{override_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["rbac"],
)
def delete_hospital_override(
    hospital_id: UUID,
    override_id: UUID,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> Response:
    try:
        permission_service.delete_hospital_override(db, cache, hospital_id, override_id)
    except RbacError as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================
# User Overrides
# =============================================


@router.get("/users/{user_id}/overrides", response_model=list[UserOverrideResponse], tags=["rbac"])
def user_overrides(
    user_id: UUID,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> list[UserOverrideResponse]:
    try:
        return permission_service.get_user_overrides(db, cache, user_id)
    except RbacError as exc:
        _raise_http(exc)


@router.put("/users/{user_id}/overrides", response_model=UserOverrideResponse, tags=["rbac"])
def set_user_override(
    user_id: UUID,
    payload: UserOverrideUpdate,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> UserOverrideResponse:
    try:
        return permission_service.set_user_override(db, cache, user_id, payload)
    except RbacError as exc:
        _raise_http(exc)


@router.delete(
    "/users/{user_id}/overrides/{override_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    tags=["rbac"],
)
def delete_user_override(
    user_id: UUID,
    override_id: UUID,
    current_user: User = Depends(require_super_admin()),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> Response:
    try:
        permission_service.delete_user_override(db, cache, user_id, override_id)
    except RbacError as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================
# Caller's own permissions
# =============================================


@router.get("/my-permissions", response_model=UserPermissionsResponse, tags=["rbac"])
def my_permissions(
    current_user: User = Depends(get_current_user),
    hospital_id: Optional[UUID] = Depends(get_hospital_id),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> UserPermissionsResponse:
    """
    Effective permissions of the caller in the hospital named by the
    hospital header (global scope when absent).
    """
    try:
        return permission_service.get_user_permissions(db, cache, current_user.id, hospital_id)
    except RbacError as exc:
        _raise_http(exc)


@router.post("/check", response_model=PermissionCheckResult, tags=["rbac"])
def check(
    payload: PermissionCheckRequest,
    current_user: User = Depends(get_current_user),
    hospital_id: Optional[UUID] = Depends(get_hospital_id),
    db: Session = Depends(get_db),
    cache: PermissionCache = Depends(get_permission_cache),
) -> PermissionCheckResult:
    """
    Evaluate one check for the caller. A denial is a 200 with allowed=false.
    """
    try:
        return permission_service.check_permission(
            db,
            cache,
            user_id=current_user.id,
            hospital_id=hospital_id,
            resource_code=payload.resource_code,
            action=payload.action,
            field=payload.field,
        )
    except PermissionBackendError as exc:
        logger.error(f"Permission check failed for user {current_user.id}: {exc}")
        return PermissionCheckResult(allowed=False, reason=BACKEND_UNAVAILABLE)
