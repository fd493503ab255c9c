"""create_rbac_tables

Revision ID: create_rbac_tables
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "create_rbac_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
        )
    ]
    if updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                server_default=sa.text("CURRENT_TIMESTAMP"),
                nullable=False,
            )
        )
    return columns


def upgrade() -> None:
    # Identity context
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("is_super_admin", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "hospital_memberships",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("hospital_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column(
            "status",
            sa.Enum("ACTIVE", "INVITED", "SUSPENDED", name="membership_status_enum"),
            server_default=sa.text("'ACTIVE'"),
            nullable=False,
        ),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "hospital_id", name="uq_hospital_membership"),
    )
    op.create_index(op.f("ix_hospital_memberships_user_id"), "hospital_memberships", ["user_id"])
    op.create_index(op.f("ix_hospital_memberships_hospital_id"), "hospital_memberships", ["hospital_id"])

    # Catalog
    op.create_table(
        "rbac_resources",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("code", sa.String(length=150), nullable=False),
        sa.Column("name", sa.String(length=150), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=20), server_default=sa.text("'hospital'"), nullable=False),
        sa.Column("path_pattern", sa.String(length=255), nullable=True),
        sa.Column("parent_code", sa.String(length=150), nullable=True),
        sa.Column("sort_order", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("element_type", sa.String(length=20), server_default=sa.text("'page'"), nullable=False),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("category IN ('hospital', 'admin')", name="ck_rbac_resources_category"),
    )
    op.create_index(op.f("ix_rbac_resources_code"), "rbac_resources", ["code"], unique=True)
    op.create_index(op.f("ix_rbac_resources_category"), "rbac_resources", ["category"])
    op.create_foreign_key(
        "fk_rbac_resources_parent_code",
        "rbac_resources",
        "rbac_resources",
        ["parent_code"],
        ["code"],
        ondelete="SET NULL",
    )

    op.create_table(
        "rbac_resource_actions",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("resource_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["resource_id"], ["rbac_resources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("resource_id", "action", name="uq_rbac_resource_action"),
        sa.CheckConstraint("action IN ('view', 'add', 'edit', 'delete')", name="ck_rbac_resource_actions_action"),
    )
    op.create_index(op.f("ix_rbac_resource_actions_resource_id"), "rbac_resource_actions", ["resource_id"])

    op.create_table(
        "rbac_resource_fields",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("resource_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("field_code", sa.String(length=100), nullable=False),
        sa.Column("field_name", sa.String(length=150), nullable=False),
        sa.Column("field_type", sa.String(length=20), server_default=sa.text("'field'"), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        *_timestamps(updated=False),
        sa.ForeignKeyConstraint(["resource_id"], ["rbac_resources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("resource_id", "field_code", name="uq_rbac_resource_field"),
    )
    op.create_index(op.f("ix_rbac_resource_fields_resource_id"), "rbac_resource_fields", ["resource_id"])

    # Grants
    op.create_table(
        "rbac_role_permissions",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("allowed_actions", sa.JSON(), nullable=False),
        sa.Column("field_permissions", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["resource_id"], ["rbac_resources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("role", "resource_id", name="uq_rbac_role_permission"),
    )
    op.create_index(op.f("ix_rbac_role_permissions_role"), "rbac_role_permissions", ["role"])

    op.create_table(
        "rbac_hospital_role_overrides",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("hospital_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("role", sa.String(length=50), nullable=False),
        sa.Column("resource_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("allowed_actions", sa.JSON(), nullable=False),
        sa.Column("field_permissions", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["resource_id"], ["rbac_resources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hospital_id", "role", "resource_id", name="uq_rbac_hospital_role_override"),
    )
    op.create_index(
        op.f("ix_rbac_hospital_role_overrides_hospital_id"), "rbac_hospital_role_overrides", ["hospital_id"]
    )
    op.create_index(op.f("ix_rbac_hospital_role_overrides_role"), "rbac_hospital_role_overrides", ["role"])

    op.create_table(
        "rbac_user_permissions",
        sa.Column("id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("hospital_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("resource_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("allowed_actions", sa.JSON(), nullable=False),
        sa.Column("denied_actions", sa.JSON(), nullable=False),
        sa.Column("field_permissions", sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["resource_id"], ["rbac_resources.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "hospital_id", "resource_id", name="uq_rbac_user_permission"),
    )
    op.create_index(op.f("ix_rbac_user_permissions_user_id"), "rbac_user_permissions", ["user_id"])
    op.create_index(op.f("ix_rbac_user_permissions_hospital_id"), "rbac_user_permissions", ["hospital_id"])
    # NULL hospital_id rows are not covered by the unique constraint above
    op.create_index(
        "uq_rbac_user_permission_global",
        "rbac_user_permissions",
        ["user_id", "resource_id"],
        unique=True,
        postgresql_where=sa.text("hospital_id IS NULL"),
        sqlite_where=sa.text("hospital_id IS NULL"),
    )


def downgrade() -> None:
    op.drop_index("uq_rbac_user_permission_global", table_name="rbac_user_permissions")
    op.drop_index(op.f("ix_rbac_user_permissions_hospital_id"), table_name="rbac_user_permissions")
    op.drop_index(op.f("ix_rbac_user_permissions_user_id"), table_name="rbac_user_permissions")
    op.drop_table("rbac_user_permissions")

    op.drop_index(op.f("ix_rbac_hospital_role_overrides_role"), table_name="rbac_hospital_role_overrides")
    op.drop_index(op.f("ix_rbac_hospital_role_overrides_hospital_id"), table_name="rbac_hospital_role_overrides")
    op.drop_table("rbac_hospital_role_overrides")

    op.drop_index(op.f("ix_rbac_role_permissions_role"), table_name="rbac_role_permissions")
    op.drop_table("rbac_role_permissions")

    op.drop_index(op.f("ix_rbac_resource_fields_resource_id"), table_name="rbac_resource_fields")
    op.drop_table("rbac_resource_fields")

    op.drop_index(op.f("ix_rbac_resource_actions_resource_id"), table_name="rbac_resource_actions")
    op.drop_table("rbac_resource_actions")

    op.drop_constraint("fk_rbac_resources_parent_code", "rbac_resources", type_="foreignkey")
    op.drop_index(op.f("ix_rbac_resources_category"), table_name="rbac_resources")
    op.drop_index(op.f("ix_rbac_resources_code"), table_name="rbac_resources")
    op.drop_table("rbac_resources")

    op.drop_index(op.f("ix_hospital_memberships_hospital_id"), table_name="hospital_memberships")
    op.drop_index(op.f("ix_hospital_memberships_user_id"), table_name="hospital_memberships")
    op.drop_table("hospital_memberships")
    sa.Enum(name="membership_status_enum").drop(op.get_bind(), checkfirst=True)

    op.drop_table("users")
