from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.core.security import decode_token
from app.models.hospital_membership import HospitalMembership
from app.models.user import User
from app.schemas.user import MembershipResponse, UserResponse

router = APIRouter()

settings = get_settings()

# Tokens are issued by the identity provider; this service only validates them.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_v1_prefix}/auth/token")


@router.get("/health", tags=["auth"])
async def auth_health_check() -> dict:
    """
    Simple health check for the auth module.
    """
    return {"status": "auth-ok"}


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Dependency to retrieve the current user from a JWT bearer token.
    """
    try:
        payload = decode_token(token)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    try:
        user_uuid = UUID(str(user_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )

    user = db.query(User).filter(User.id == user_uuid).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )

    return user


@router.get("/me", response_model=UserResponse, tags=["auth"])
def read_current_user(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> UserResponse:
    """
    Return the current authenticated user with their hospital memberships.
    """
    memberships = (
        db.query(HospitalMembership)
        .filter(HospitalMembership.user_id == current_user.id)
        .order_by(HospitalMembership.created_at)
        .all()
    )
    return UserResponse(
        id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        is_super_admin=current_user.is_super_admin,
        is_active=current_user.is_active,
        memberships=[
            MembershipResponse(hospital_id=m.hospital_id, role=m.role, status=m.status.value)
            for m in memberships
        ],
        created_at=current_user.created_at,
    )
