from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class EventRecord(SQLModel, table=True):
    __tablename__ = "events"

    event_id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    event_type: str = Field(index=True)
    ts: datetime = Field(default_factory=now_utc, index=True)
    actor_id: str | None = Field(default=None, index=True)
    correlation_id: str | None = Field(default=None, index=True)
    payload: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    actor_id: str | None = Field(default=None, index=True)
    action: str
    resource: str
    method: str
    status_code: int
    ts: datetime = Field(default_factory=now_utc, index=True)
    detail: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Branch(SQLModel, table=True):
    __tablename__ = "branches"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    location: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Department(SQLModel, table=True):
    __tablename__ = "departments"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class BranchDepartment(SQLModel, table=True):
    __tablename__ = "branch_departments"
    __table_args__ = (
        UniqueConstraint("branch_id", "department_id", name="uq_branch_departments_pair"),
    )

    id: int | None = Field(default=None, primary_key=True)
    branch_id: int = Field(foreign_key="branches.id", index=True)
    department_id: int = Field(foreign_key="departments.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Employee(SQLModel, table=True):
    __tablename__ = "employees"

    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    name: str
    email: str | None = None
    is_admin: bool = Field(default=False)
    is_manager: bool = Field(default=False)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class EmployeeMembership(SQLModel, table=True):
    __tablename__ = "employee_memberships"
    __table_args__ = (Index("ix_employee_memberships_link", "branch_department_id"),)

    employee_id: int = Field(foreign_key="employees.id", primary_key=True)
    branch_department_id: int = Field(foreign_key="branch_departments.id", primary_key=True)
    created_at: datetime = Field(default_factory=now_utc)


class ManagedBranchDepartment(SQLModel, table=True):
    __tablename__ = "managed_branch_departments"

    employee_id: int = Field(foreign_key="employees.id", primary_key=True)
    branch_department_id: int = Field(foreign_key="branch_departments.id", primary_key=True)
    created_at: datetime = Field(default_factory=now_utc)


class KnowledgeFolder(SQLModel, table=True):
    __tablename__ = "knowledge_folders"

    id: int | None = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: str = ""
    parent_id: int | None = Field(default=None, foreign_key="knowledge_folders.id", index=True)
    inherits_parent_permissions: bool = Field(default=True)
    permitted_branches: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    permitted_departments: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    permitted_employees: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    permitted_branch_departments: list[int] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    created_by: int | None = Field(default=None, foreign_key="employees.id", index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    updated_at: datetime = Field(default_factory=now_utc)


class KnowledgeFile(SQLModel, table=True):
    __tablename__ = "knowledge_files"

    id: int | None = Field(default=None, primary_key=True)
    folder_id: int = Field(foreign_key="knowledge_folders.id", index=True)
    name: str
    description: str = ""
    file_url: str | None = None
    content_type: str | None = None
    size: int = 0
    inherits_parent_permissions: bool = Field(default=True)
    permitted_branches: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    permitted_departments: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    permitted_employees: list[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    permitted_branch_departments: list[int] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    uploaded_by: int | None = Field(default=None, foreign_key="employees.id", index=True)
    uploaded_at: datetime = Field(default_factory=now_utc, index=True)


class EventEnvelope(BaseModel):
    event_id: str = PydanticField(default_factory=lambda: str(uuid4()))
    event_type: str
    ts: datetime = PydanticField(default_factory=now_utc)
    actor_id: str | None = None
    correlation_id: str | None = None
    payload: dict[str, Any]


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class DevLoginRequest(BaseModel):
    username: str
    password: str


class BootstrapAdminRequest(BaseModel):
    username: str
    password: str
    name: str = "Administrator"
    email: str | None = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    permissions: list[str]


class BranchCreate(BaseModel):
    name: str
    location: str | None = None


class BranchRead(ORMReadModel):
    id: int
    name: str
    location: str | None = None


class DepartmentCreate(BaseModel):
    name: str


class DepartmentRead(ORMReadModel):
    id: int
    name: str


class BranchDepartmentCreate(BaseModel):
    branch_id: int
    department_id: int


class BranchDepartmentRead(BaseModel):
    id: int
    branch_id: int
    department_id: int
    branch_name: str | None = None
    department_name: str | None = None


class EmployeeCreate(BaseModel):
    username: str
    password: str
    name: str
    email: str | None = None
    is_admin: bool = False
    is_manager: bool = False
    branch_department_ids: list[int] = PydanticField(default_factory=list)


class EmployeeRead(ORMReadModel):
    id: int
    username: str
    name: str
    email: str | None = None
    is_admin: bool
    is_manager: bool
    is_active: bool


class LinkIdsUpdate(BaseModel):
    branch_department_ids: list[int] = PydanticField(default_factory=list)


class ManagerScopeRead(BaseModel):
    is_manager: bool
    unrestricted: bool
    managed_branch_departments: list[int]
    can_upload_knowledge: bool


class MeRead(BaseModel):
    employee: EmployeeRead
    branch_department_ids: list[int]
    manager_scope: ManagerScopeRead


class SelectionExpandRequest(BaseModel):
    branch_ids: list[int | str] = PydanticField(default_factory=list)
    department_ids: list[int | str] = PydanticField(default_factory=list)


class SelectionCollapseRequest(BaseModel):
    branch_department_ids: list[int] = PydanticField(default_factory=list)


class SelectionRead(BaseModel):
    branch_ids: list[int]
    department_ids: list[int]
    branch_department_ids: list[int]


class SelectionOptionsRead(BaseModel):
    branch_ids: list[int]
    department_ids: list[int]


def _parse_wire_ids(values: list[Any] | None) -> list[int] | None:
    if values is None:
        return None
    parsed: list[int] = []
    for item in values:
        text = str(item).strip()
        if not text.isdigit():
            raise ValueError(f"invalid id: {item!r}")
        value = int(text)
        if value not in parsed:
            parsed.append(value)
    return parsed


class GrantMutation(BaseModel):
    """Grant fields shared by folder and file mutations; ids are string-encoded."""

    inherits_parent_permissions: bool | None = None
    permitted_branches: list[str] | None = None
    permitted_departments: list[str] | None = None
    permitted_employees: list[str] | None = None
    permitted_branch_departments: list[str] | None = None

    @field_validator(
        "permitted_branches",
        "permitted_departments",
        "permitted_employees",
        "permitted_branch_departments",
        mode="before",
    )
    @classmethod
    def _check_wire_ids(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            raise ValueError("expected a list of ids")
        return [str(item) for item in _parse_wire_ids(value) or []]


class FolderCreate(GrantMutation):
    name: str
    description: str = ""
    parent: int | None = None


class FolderUpdate(GrantMutation):
    name: str | None = None
    description: str | None = None
    parent: int | None = None


class FileCreate(GrantMutation):
    folder: int
    name: str
    description: str = ""
    file_url: str | None = None
    content_type: str | None = None
    size: int = 0


class FileUpdate(GrantMutation):
    folder: int | None = None
    name: str | None = None
    description: str | None = None
    file_url: str | None = None


class FolderRead(ORMReadModel):
    id: int
    name: str
    description: str
    parent_id: int | None = None
    inherits_parent_permissions: bool
    permitted_branches: list[int]
    permitted_departments: list[int]
    permitted_employees: list[int]
    permitted_branch_departments: list[int]
    created_by: int | None = None
    created_at: datetime


class FileRead(ORMReadModel):
    id: int
    folder_id: int
    name: str
    description: str
    file_url: str | None = None
    content_type: str | None = None
    size: int
    inherits_parent_permissions: bool
    permitted_branches: list[int]
    permitted_departments: list[int]
    permitted_employees: list[int]
    permitted_branch_departments: list[int]
    uploaded_by: int | None = None
    uploaded_at: datetime


class CreatorDetail(BaseModel):
    id: int
    name: str = ""
    is_admin: bool = False


class FolderTreeFile(BaseModel):
    id: int
    name: str
    description: str = ""
    file_url: str | None = None
    content_type: str | None = None
    size: int = 0
    inherits_parent_permissions: bool = True
    permitted_branches: list[int] = PydanticField(default_factory=list)
    permitted_departments: list[int] = PydanticField(default_factory=list)
    permitted_employees: list[int] = PydanticField(default_factory=list)
    permitted_branch_departments: list[int] = PydanticField(default_factory=list)
    uploaded_by: CreatorDetail | None = None
    uploaded_at: datetime | None = None


class FolderTreeItem(BaseModel):
    """One folder of the tree-fetch payload, with nested subfolders and files."""

    id: int
    name: str
    description: str = ""
    parent: int | None = None
    inherits_parent_permissions: bool = True
    permitted_branches: list[int] = PydanticField(default_factory=list)
    permitted_departments: list[int] = PydanticField(default_factory=list)
    permitted_employees: list[int] = PydanticField(default_factory=list)
    permitted_branch_departments: list[int] = PydanticField(default_factory=list)
    created_by: CreatorDetail | None = None
    created_at: datetime | None = None
    files: list[FolderTreeFile] = PydanticField(default_factory=list)
    folders: list[FolderTreeItem] = PydanticField(default_factory=list)


class EffectivePermissionsRead(BaseModel):
    branches: list[int]
    departments: list[int]
    employees: list[int]
    branch_departments: list[int]


class FileNodeRead(BaseModel):
    id: int
    folder_id: int
    name: str
    description: str
    file_url: str | None = None
    size: int
    inherits_parent_permissions: bool
    effective_permissions: EffectivePermissionsRead
    access_level: str
    can_edit: bool


class FolderNodeRead(BaseModel):
    id: int
    name: str
    description: str
    parent: int | None = None
    inherits_parent_permissions: bool
    created_by: CreatorDetail | None = None
    created_at: datetime | None = None
    effective_permissions: EffectivePermissionsRead
    access_level: str
    can_edit: bool
    files: list[FileNodeRead] = PydanticField(default_factory=list)
    folders: list[FolderNodeRead] = PydanticField(default_factory=list)


class FolderTreeRead(BaseModel):
    folders: list[FolderNodeRead]


class FolderPathEntry(BaseModel):
    id: int
    name: str
