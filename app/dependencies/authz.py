# app/dependencies/authz.py
import logging
from typing import Optional
from uuid import UUID

from fastapi import Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.v1.endpoints.auth import get_current_user
from app.core.database import get_db
from app.core.hospital_context import get_hospital_id
from app.core.permission_cache import PermissionCache, get_permission_cache
from app.models.user import User
from app.services.permission_service import check_permission
from app.services.rbac_errors import PermissionBackendError

logger = logging.getLogger(__name__)


def require_permission(resource_code: str, action: str, field: Optional[str] = None):
    """
    Dependency factory for resource/action (and optionally field) access.

    Usage:

    @router.get("/doctors")
    def list_doctors(
        current_user: User = Depends(require_permission("hospital.doctors", "view")),
    ):
        ...

    Returns the current_user if the check passes. A denial is a 403 carrying
    the reason. If the permission backend fails the request is denied too.
    """

    def dependency(
        current_user: User = Depends(get_current_user),
        hospital_id: Optional[UUID] = Depends(get_hospital_id),
        db: Session = Depends(get_db),
        cache: PermissionCache = Depends(get_permission_cache),
    ) -> User:
        try:
            result = check_permission(
                db,
                cache,
                user_id=current_user.id,
                hospital_id=hospital_id,
                resource_code=resource_code,
                action=action,
                field=field,
            )
        except PermissionBackendError as exc:
            logger.error(
                f"Permission check failed for user {current_user.id} on {resource_code}:{action}: {exc}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Permission check unavailable.",
            )

        if not result.allowed:
            logger.warning(
                f"Permission denied for user {current_user.id} on {resource_code}:{action}: {result.reason}"
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=result.reason or "Insufficient permissions.",
            )

        return current_user

    return dependency


def require_super_admin():
    """
    Dependency factory for platform-level administration (every RBAC write).
    """

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if not current_user.is_super_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Super admin access required.",
            )
        return current_user

    return dependency
