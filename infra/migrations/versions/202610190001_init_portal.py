"""init portal access tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "202610190001"
down_revision = None
branch_labels = None
depends_on = None


def _grant_columns() -> list[sa.Column]:
    return [
        sa.Column("inherits_parent_permissions", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("permitted_branches", sa.JSON(), nullable=False),
        sa.Column("permitted_departments", sa.JSON(), nullable=False),
        sa.Column("permitted_employees", sa.JSON(), nullable=False),
        sa.Column("permitted_branch_departments", sa.JSON(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("correlation_id", sa.String(), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("ix_events_event_type", "events", ["event_type"])
    op.create_index("ix_events_ts", "events", ["ts"])
    op.create_index("ix_events_actor_id", "events", ["actor_id"])
    op.create_index("ix_events_correlation_id", "events", ["correlation_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("actor_id", sa.String(), nullable=True),
        sa.Column("action", sa.String(), nullable=False),
        sa.Column("resource", sa.String(), nullable=False),
        sa.Column("method", sa.String(), nullable=False),
        sa.Column("status_code", sa.Integer(), nullable=False),
        sa.Column("ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detail", sa.JSON(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"])
    op.create_index("ix_audit_logs_ts", "audit_logs", ["ts"])

    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_branches_name", "branches", ["name"], unique=True)
    op.create_index("ix_branches_created_at", "branches", ["created_at"])

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_departments_name", "departments", ["name"], unique=True)
    op.create_index("ix_departments_created_at", "departments", ["created_at"])

    op.create_table(
        "branch_departments",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("branch_id", sa.Integer(), nullable=False),
        sa.Column("department_id", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["branch_id"], ["branches.id"]),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("branch_id", "department_id", name="uq_branch_departments_pair"),
    )
    op.create_index("ix_branch_departments_branch_id", "branch_departments", ["branch_id"])
    op.create_index("ix_branch_departments_department_id", "branch_departments", ["department_id"])
    op.create_index("ix_branch_departments_created_at", "branch_departments", ["created_at"])

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("username", sa.String(), nullable=False),
        sa.Column("password_hash", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_manager", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_employees_username", "employees", ["username"], unique=True)
    op.create_index("ix_employees_created_at", "employees", ["created_at"])

    for table in ("employee_memberships", "managed_branch_departments"):
        op.create_table(
            table,
            sa.Column("employee_id", sa.Integer(), nullable=False),
            sa.Column("branch_department_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
            sa.ForeignKeyConstraint(["branch_department_id"], ["branch_departments.id"]),
            sa.PrimaryKeyConstraint("employee_id", "branch_department_id"),
        )
    op.create_index("ix_employee_memberships_link", "employee_memberships", ["branch_department_id"])

    op.create_table(
        "knowledge_folders",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False, server_default=""),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        *_grant_columns(),
        sa.Column("created_by", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["parent_id"], ["knowledge_folders.id"]),
        sa.ForeignKeyConstraint(["created_by"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_knowledge_folders_name", "knowledge_folders", ["name"])
    op.create_index("ix_knowledge_folders_parent_id", "knowledge_folders", ["parent_id"])
    op.create_index("ix_knowledge_folders_created_by", "knowledge_folders", ["created_by"])
    op.create_index("ix_knowledge_folders_created_at", "knowledge_folders", ["created_at"])

    op.create_table(
        "knowledge_files",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("folder_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=False, server_default=""),
        sa.Column("file_url", sa.String(), nullable=True),
        sa.Column("content_type", sa.String(), nullable=True),
        sa.Column("size", sa.Integer(), nullable=False, server_default="0"),
        *_grant_columns(),
        sa.Column("uploaded_by", sa.Integer(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["folder_id"], ["knowledge_folders.id"]),
        sa.ForeignKeyConstraint(["uploaded_by"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_knowledge_files_folder_id", "knowledge_files", ["folder_id"])
    op.create_index("ix_knowledge_files_uploaded_by", "knowledge_files", ["uploaded_by"])
    op.create_index("ix_knowledge_files_uploaded_at", "knowledge_files", ["uploaded_at"])


def downgrade() -> None:
    op.drop_table("knowledge_files")
    op.drop_table("knowledge_folders")
    op.drop_index("ix_employee_memberships_link", table_name="employee_memberships")
    op.drop_table("managed_branch_departments")
    op.drop_table("employee_memberships")
    op.drop_table("employees")
    op.drop_table("branch_departments")
    op.drop_table("departments")
    op.drop_table("branches")
    op.drop_table("audit_logs")
    op.drop_table("events")
