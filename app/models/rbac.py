# app/models/rbac.py
"""
RBAC catalog and grant tables.

Catalog: rbac_resources (tree via parent_code), rbac_resource_actions,
rbac_resource_fields.
Grants: rbac_role_permissions (role defaults), rbac_hospital_role_overrides
(per hospital x role), rbac_user_permissions (per user, optional hospital).
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base


class RbacAction(str, PyEnum):
    VIEW = "view"
    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"


ALL_ACTIONS: tuple[str, ...] = tuple(a.value for a in RbacAction)


class ResourceCategory(str, PyEnum):
    HOSPITAL = "hospital"
    ADMIN = "admin"


class ElementType(str, PyEnum):
    PAGE = "page"
    SECTION = "section"
    CARD = "card"
    CHART = "chart"
    FILTER = "filter"
    ACTION = "action"
    METRIC = "metric"
    TABLE = "table"
    MODAL = "modal"
    TAB = "tab"


def _empty_field_permissions() -> dict:
    return {"viewable": [], "editable": []}


class RbacResource(Base):
    """
    A protected unit of functionality (page, section, card, ...).
    `code` is the stable identity; hierarchy comes from parent_code only.
    Resources are soft-deactivated, never deleted while grants reference them.
    """

    __tablename__ = "rbac_resources"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )

    code: Mapped[str] = mapped_column(String(150), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ResourceCategory.HOSPITAL.value,
        server_default=text("'hospital'"),
        index=True,
    )
    path_pattern: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parent_code: Mapped[str | None] = mapped_column(
        String(150),
        ForeignKey("rbac_resources.code", ondelete="SET NULL"),
        nullable=True,
    )
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    element_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ElementType.PAGE.value,
        server_default=text("'page'"),
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
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

    # Relationships
    actions: Mapped[list["RbacResourceAction"]] = relationship(
        "RbacResourceAction",
        back_populates="resource",
        cascade="all, delete-orphan",
    )
    fields: Mapped[list["RbacResourceField"]] = relationship(
        "RbacResourceField",
        back_populates="resource",
        cascade="all, delete-orphan",
    )


class RbacResourceAction(Base):
    """An action (view/add/edit/delete) a resource supports."""

    __tablename__ = "rbac_resource_actions"
    __table_args__ = (
        UniqueConstraint("resource_id", "action", name="uq_rbac_resource_action"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    resource_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    resource: Mapped["RbacResource"] = relationship("RbacResource", back_populates="actions")


class RbacResourceField(Base):
    """A field or section of a resource that can be gated for view/edit."""

    __tablename__ = "rbac_resource_fields"
    __table_args__ = (
        UniqueConstraint("resource_id", "field_code", name="uq_rbac_resource_field"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    resource_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_code: Mapped[str] = mapped_column(String(100), nullable=False)
    field_name: Mapped[str] = mapped_column(String(150), nullable=False)
    field_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="field",
        server_default=text("'field'"),
        doc="'field' or 'section'",
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    resource: Mapped["RbacResource"] = relationship("RbacResource", back_populates="fields")


class RbacRolePermission(Base):
    """
    Default grant for a role on a resource. Unique per (role, resource).
    Rows are replaced, never deleted.
    """

    __tablename__ = "rbac_role_permissions"
    __table_args__ = (
        UniqueConstraint("role", "resource_id", name="uq_rbac_role_permission"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=False,
    )
    allowed_actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    field_permissions: Mapped[dict] = mapped_column(JSON, nullable=False, default=_empty_field_permissions)

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

    resource: Mapped["RbacResource"] = relationship("RbacResource")


class RbacHospitalRoleOverride(Base):
    """
    Per-hospital replacement of a role default. Unique per (hospital, role, resource).
    hospital_id references the tenant registry (FK handled at application level).
    """

    __tablename__ = "rbac_hospital_role_overrides"
    __table_args__ = (
        UniqueConstraint("hospital_id", "role", "resource_id", name="uq_rbac_hospital_role_override"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    hospital_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=False,
    )
    allowed_actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    field_permissions: Mapped[dict] = mapped_column(JSON, nullable=False, default=_empty_field_permissions)

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

    resource: Mapped["RbacResource"] = relationship("RbacResource")


class RbacUserPermission(Base):
    """
    User-specific override. hospital_id NULL applies in every hospital context.
    denied_actions are subtracted from whatever grant ends up selected.
    """

    __tablename__ = "rbac_user_permissions"
    __table_args__ = (
        UniqueConstraint("user_id", "hospital_id", "resource_id", name="uq_rbac_user_permission"),
        # NULL hospital_id rows are not covered by the constraint above
        Index(
            "uq_rbac_user_permission_global",
            "user_id",
            "resource_id",
            unique=True,
            postgresql_where=text("hospital_id IS NULL"),
            sqlite_where=text("hospital_id IS NULL"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    hospital_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    resource_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("rbac_resources.id", ondelete="CASCADE"),
        nullable=False,
    )
    allowed_actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    denied_actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    field_permissions: Mapped[dict] = mapped_column(JSON, nullable=False, default=_empty_field_permissions)

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

    resource: Mapped["RbacResource"] = relationship("RbacResource")
