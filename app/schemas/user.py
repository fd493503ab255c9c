from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class MembershipResponse(BaseModel):
    hospital_id: UUID
    role: str
    status: str

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    id: UUID
    email: str
    full_name: str | None = None
    is_super_admin: bool
    is_active: bool
    memberships: list[MembershipResponse] = []
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
