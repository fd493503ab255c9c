import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base


class RoleName(str, PyEnum):
    SUPER_ADMIN = "SUPER_ADMIN"
    HOSPITAL_MANAGER = "HOSPITAL_MANAGER"
    HOSPITAL_STAFF = "HOSPITAL_STAFF"
    DOCTOR = "DOCTOR"
    PATIENT = "PATIENT"
    SALES_MANAGER = "SALES_MANAGER"
    SALES_PERSONNEL = "SALES_PERSONNEL"
    CUSTOMER_SERVICE_MANAGER = "CUSTOMER_SERVICE_MANAGER"
    CUSTOMER_SERVICE_PERSONNEL = "CUSTOMER_SERVICE_PERSONNEL"


ROLE_LABELS: dict[RoleName, str] = {
    RoleName.SUPER_ADMIN: "Super Admin",
    RoleName.HOSPITAL_MANAGER: "Hospital Manager",
    RoleName.HOSPITAL_STAFF: "Hospital Staff",
    RoleName.DOCTOR: "Doctor",
    RoleName.PATIENT: "Patient",
    RoleName.SALES_MANAGER: "Sales Manager",
    RoleName.SALES_PERSONNEL: "Sales Personnel",
    RoleName.CUSTOMER_SERVICE_MANAGER: "Customer Service Manager",
    RoleName.CUSTOMER_SERVICE_PERSONNEL: "Customer Service Personnel",
}


class User(Base):
    """
    Represents a platform user.
    - Super admins bypass RBAC resolution entirely (is_super_admin=True)
    - Everyone else gets a role per hospital through HospitalMembership
    """

    __tablename__ = "users"

    # Primary Key
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    full_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # Flags
    is_super_admin: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
        doc="Platform-wide bypass of every RBAC check. Never stored as a role grant.",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
        doc="If false, user cannot authenticate. Use this instead of hard delete.",
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=datetime.utcnow,
    )
