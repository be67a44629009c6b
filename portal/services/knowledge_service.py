from __future__ import annotations

import logging
from typing import Any

from sqlmodel import Session, col, select

from portal.domain.access import AccessContext, AccessEvaluator
from portal.domain.grants import PUBLIC, GrantSet, classify_access_level
from portal.domain.models import (
    Branch,
    BranchDepartment,
    CreatorDetail,
    Department,
    EffectivePermissionsRead,
    Employee,
    FileCreate,
    FileNodeRead,
    FileUpdate,
    FolderCreate,
    FolderNodeRead,
    FolderPathEntry,
    FolderTreeRead,
    FolderUpdate,
    GrantMutation,
    KnowledgeFile,
    KnowledgeFolder,
    now_utc,
)
from portal.domain.tree import CreatorRef, FileNode, FolderNode, PermissionTree, TreeStore
from portal.infra import redis_state
from portal.infra.db import get_engine
from portal.infra.events import event_bus

logger = logging.getLogger(__name__)

tree_store = TreeStore()


class KnowledgeError(Exception):
    pass


class NotFoundError(KnowledgeError):
    pass


class ConflictError(KnowledgeError):
    pass


class PermissionDeniedError(KnowledgeError):
    pass


GrantRow = KnowledgeFolder | KnowledgeFile


def _row_grants(row: GrantRow) -> GrantSet:
    return GrantSet.from_lists(
        branches=row.permitted_branches,
        departments=row.permitted_departments,
        employees=row.permitted_employees,
        branch_departments=row.permitted_branch_departments,
    )


def _apply_grants(row: GrantRow, grants: GrantSet) -> None:
    values = grants.as_dict()
    row.permitted_branches = values["branches"]
    row.permitted_departments = values["departments"]
    row.permitted_employees = values["employees"]
    row.permitted_branch_departments = values["branch_departments"]


def _creator_ref(employee_id: int | None, admin_ids: set[int]) -> CreatorRef | None:
    if employee_id is None:
        return None
    return CreatorRef(id=employee_id, is_admin=employee_id in admin_ids)


class KnowledgeService:
    """Knowledge-base folders and files gated by inherited grants.

    The permission tree is rebuilt from the database whenever the Redis
    generation counter moved since the last committed build.
    """

    def __init__(self, store: TreeStore | None = None) -> None:
        self._store = store or tree_store

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def _load_tree(self) -> PermissionTree:
        with self._session() as session:
            folders = session.exec(select(KnowledgeFolder).order_by(col(KnowledgeFolder.id))).all()
            files = session.exec(select(KnowledgeFile).order_by(col(KnowledgeFile.id))).all()
            admin_ids = set(session.exec(select(Employee.id).where(col(Employee.is_admin).is_(True))).all())

        folder_nodes = [
            FolderNode(
                id=row.id,
                name=row.name,
                parent_id=row.parent_id,
                own_grants=_row_grants(row),
                inherits_parent_permissions=row.inherits_parent_permissions,
                description=row.description,
                created_by=_creator_ref(row.created_by, admin_ids),
                created_at=row.created_at,
            )
            for row in folders
            if row.id is not None
        ]
        file_nodes = [
            FileNode(
                id=row.id,
                folder_id=row.folder_id,
                name=row.name,
                own_grants=_row_grants(row),
                inherits_parent_permissions=row.inherits_parent_permissions,
                description=row.description,
                file_url=row.file_url,
                content_type=row.content_type,
                size=row.size,
                uploaded_by=_creator_ref(row.uploaded_by, admin_ids),
                uploaded_at=row.uploaded_at,
            )
            for row in files
            if row.id is not None
        ]
        return PermissionTree.from_flat(folder_nodes, file_nodes)

    def current_tree(self) -> PermissionTree:
        generation = redis_state.tree_generation()
        current = self._store.current
        if current is not None and self._store.committed_generation == generation:
            return current
        ticket = self._store.begin_fetch(generation)
        tree = self._load_tree()
        if not self._store.commit(ticket, tree):
            return self._store.current or tree
        logger.debug("knowledge tree rebuilt for generation %s (%d folders)", generation, len(tree))
        return tree

    def _visible_folder(self, tree: PermissionTree, context: AccessContext, folder_id: int) -> FolderNode:
        path = tree.path(folder_id)
        evaluator = context.evaluator()
        if not path or not all(evaluator.can_read(context.principal, node) for node in path):
            raise NotFoundError("folder not found")
        return path[-1]

    def _visible_file(self, tree: PermissionTree, context: AccessContext, file_id: int) -> FileNode:
        node = tree.file(file_id)
        if node is None:
            raise NotFoundError("file not found")
        try:
            self._visible_folder(tree, context, node.folder_id)
        except NotFoundError as exc:
            raise NotFoundError("file not found") from exc
        if not context.evaluator().can_read(context.principal, node):
            raise NotFoundError("file not found")
        return node

    def _ensure_can_upload(self, context: AccessContext) -> None:
        if context.principal.is_admin:
            return
        if not context.scope.can_upload_knowledge:
            raise PermissionDeniedError("knowledge uploads are not allowed for this employee")

    def _known_ids(self, session: Session, model: Any, values: list[str]) -> list[int]:
        wanted = [int(item) for item in values]
        if not wanted:
            return []
        existing = set(session.exec(select(model.id).where(col(model.id).in_(wanted))).all())
        dropped = [item for item in wanted if item not in existing]
        if dropped:
            logger.debug("unknown %s ids dropped from grant: %s", model.__tablename__, dropped)
        return [item for item in wanted if item in existing]

    def _resolve_grants(self, session: Session, payload: GrantMutation, current: GrantSet) -> GrantSet:
        def pick(values: list[str] | None, model: Any, fallback: frozenset[int]) -> list[int]:
            if values is None:
                return sorted(fallback)
            return self._known_ids(session, model, values)

        return GrantSet.from_lists(
            branches=pick(payload.permitted_branches, Branch, current.branch_ids),
            departments=pick(payload.permitted_departments, Department, current.department_ids),
            employees=pick(payload.permitted_employees, Employee, current.employee_ids),
            branch_departments=pick(
                payload.permitted_branch_departments,
                BranchDepartment,
                current.branch_department_ids,
            ),
        )

    def _check_grant_scope(self, evaluator: AccessEvaluator, payload: GrantMutation, grants: GrantSet) -> None:
        if payload.permitted_branch_departments is None:
            return
        if not evaluator.grants_within_scope(grants):
            raise PermissionDeniedError("grant includes branch departments outside the managed scope")

    def _employee_names(self) -> dict[int, str]:
        with self._session() as session:
            return {item.id: item.name for item in session.exec(select(Employee)).all() if item.id is not None}

    def _file_read(self, node: FileNode, context: AccessContext, evaluator: AccessEvaluator) -> FileNodeRead:
        return FileNodeRead(
            id=node.id,
            folder_id=node.folder_id,
            name=node.name,
            description=node.description,
            file_url=node.file_url,
            size=node.size,
            inherits_parent_permissions=node.inherits_parent_permissions,
            effective_permissions=EffectivePermissionsRead(**node.effective.as_dict()),
            access_level=classify_access_level(node.effective).value,
            can_edit=evaluator.can_modify(context.principal, node),
        )

    def _folder_read(
        self,
        node: FolderNode,
        context: AccessContext,
        evaluator: AccessEvaluator,
        names: dict[int, str],
    ) -> FolderNodeRead:
        creator = node.created_by
        return FolderNodeRead(
            id=node.id,
            name=node.name,
            description=node.description,
            parent=node.parent_id,
            inherits_parent_permissions=node.inherits_parent_permissions,
            created_by=(
                None
                if creator is None
                else CreatorDetail(id=creator.id, name=names.get(creator.id, ""), is_admin=creator.is_admin)
            ),
            created_at=node.created_at,
            effective_permissions=EffectivePermissionsRead(**node.effective.as_dict()),
            access_level=classify_access_level(node.effective).value,
            can_edit=evaluator.can_modify(context.principal, node),
            files=[
                self._file_read(item, context, evaluator)
                for item in node.files
                if evaluator.can_read(context.principal, item)
            ],
        )

    def _render(self, start: FolderNode, context: AccessContext, names: dict[int, str]) -> FolderNodeRead | None:
        evaluator = context.evaluator()
        rendered: FolderNodeRead | None = None
        seen: set[int] = set()
        stack: list[tuple[FolderNode, FolderNodeRead | None]] = [(start, None)]
        while stack:
            node, parent_read = stack.pop()
            if node.id in seen or not evaluator.can_read(context.principal, node):
                continue
            seen.add(node.id)
            read = self._folder_read(node, context, evaluator, names)
            if parent_read is None:
                rendered = read
            else:
                parent_read.folders.append(read)
            stack.extend((child, read) for child in reversed(node.children))
        return rendered

    def get_tree(self, context: AccessContext) -> FolderTreeRead:
        tree = self.current_tree()
        names = self._employee_names()
        folders = [item for item in (self._render(root, context, names) for root in tree.roots) if item is not None]
        return FolderTreeRead(folders=folders)

    def get_folder(self, context: AccessContext, folder_id: int) -> FolderNodeRead:
        tree = self.current_tree()
        node = self._visible_folder(tree, context, folder_id)
        rendered = self._render(node, context, self._employee_names())
        if rendered is None:
            raise NotFoundError("folder not found")
        return rendered

    def folder_path(self, context: AccessContext, folder_id: int) -> list[FolderPathEntry]:
        tree = self.current_tree()
        self._visible_folder(tree, context, folder_id)
        return [FolderPathEntry(id=node.id, name=node.name) for node in tree.path(folder_id)]

    def create_folder(self, context: AccessContext, payload: FolderCreate) -> KnowledgeFolder:
        self._ensure_can_upload(context)
        tree = self.current_tree()
        if payload.parent is not None:
            self._visible_folder(tree, context, payload.parent)
        evaluator = context.evaluator()
        with self._session() as session:
            if payload.parent is not None and session.get(KnowledgeFolder, payload.parent) is None:
                raise NotFoundError("folder not found")
            grants = self._resolve_grants(session, payload, PUBLIC)
            self._check_grant_scope(evaluator, payload, grants)
            folder = KnowledgeFolder(
                name=payload.name,
                description=payload.description,
                parent_id=payload.parent,
                inherits_parent_permissions=(
                    True if payload.inherits_parent_permissions is None else payload.inherits_parent_permissions
                ),
                created_by=context.employee_id,
            )
            _apply_grants(folder, grants)
            session.add(folder)
            session.commit()
            session.refresh(folder)

        redis_state.bump_tree_generation()
        event_bus.publish_dict(
            "knowledge.folder.created",
            {"folder_id": folder.id, "parent_id": folder.parent_id, "name": folder.name},
            actor_id=str(context.employee_id),
        )
        return folder

    def _descendant_ids(self, node: FolderNode) -> set[int]:
        found: set[int] = set()
        stack = list(node.children)
        while stack:
            child = stack.pop()
            if child.id in found:
                continue
            found.add(child.id)
            stack.extend(child.children)
        return found

    def update_folder(self, context: AccessContext, folder_id: int, payload: FolderUpdate) -> KnowledgeFolder:
        tree = self.current_tree()
        node = self._visible_folder(tree, context, folder_id)
        evaluator = context.evaluator()
        if not evaluator.can_modify(context.principal, node):
            raise PermissionDeniedError("folder cannot be modified by this employee")
        move = "parent" in payload.model_fields_set
        if move and payload.parent is not None:
            if payload.parent == folder_id or payload.parent in self._descendant_ids(node):
                raise ConflictError("folder cannot be moved under itself or its descendants")
            target = self._visible_folder(tree, context, payload.parent)
            if not evaluator.can_modify(context.principal, target):
                raise PermissionDeniedError("target folder cannot be modified by this employee")

        with self._session() as session:
            folder = session.get(KnowledgeFolder, folder_id)
            if folder is None:
                raise NotFoundError("folder not found")
            if payload.name is not None:
                folder.name = payload.name
            if payload.description is not None:
                folder.description = payload.description
            if move:
                folder.parent_id = payload.parent
            if payload.inherits_parent_permissions is not None:
                folder.inherits_parent_permissions = payload.inherits_parent_permissions
            grants = self._resolve_grants(session, payload, _row_grants(folder))
            self._check_grant_scope(evaluator, payload, grants)
            _apply_grants(folder, grants)
            folder.updated_at = now_utc()
            session.add(folder)
            session.commit()
            session.refresh(folder)

        redis_state.bump_tree_generation()
        event_bus.publish_dict(
            "knowledge.folder.updated",
            {"folder_id": folder.id, "parent_id": folder.parent_id, "moved": move},
            actor_id=str(context.employee_id),
        )
        return folder

    def delete_folder(self, context: AccessContext, folder_id: int) -> None:
        tree = self.current_tree()
        node = self._visible_folder(tree, context, folder_id)
        if not context.evaluator().can_modify(context.principal, node):
            raise PermissionDeniedError("folder cannot be deleted by this employee")
        with self._session() as session:
            folder = session.get(KnowledgeFolder, folder_id)
            if folder is None:
                raise NotFoundError("folder not found")
            has_children = session.exec(select(KnowledgeFolder).where(KnowledgeFolder.parent_id == folder_id)).first()
            has_files = session.exec(select(KnowledgeFile).where(KnowledgeFile.folder_id == folder_id)).first()
            if has_children is not None or has_files is not None:
                raise ConflictError("folder is not empty")
            session.delete(folder)
            session.commit()

        redis_state.bump_tree_generation()
        event_bus.publish_dict(
            "knowledge.folder.deleted",
            {"folder_id": folder_id},
            actor_id=str(context.employee_id),
        )

    def create_file(self, context: AccessContext, payload: FileCreate) -> KnowledgeFile:
        self._ensure_can_upload(context)
        tree = self.current_tree()
        self._visible_folder(tree, context, payload.folder)
        evaluator = context.evaluator()
        with self._session() as session:
            if session.get(KnowledgeFolder, payload.folder) is None:
                raise NotFoundError("folder not found")
            grants = self._resolve_grants(session, payload, PUBLIC)
            self._check_grant_scope(evaluator, payload, grants)
            item = KnowledgeFile(
                folder_id=payload.folder,
                name=payload.name,
                description=payload.description,
                file_url=payload.file_url,
                content_type=payload.content_type,
                size=payload.size,
                inherits_parent_permissions=(
                    True if payload.inherits_parent_permissions is None else payload.inherits_parent_permissions
                ),
                uploaded_by=context.employee_id,
            )
            _apply_grants(item, grants)
            session.add(item)
            session.commit()
            session.refresh(item)

        redis_state.bump_tree_generation()
        event_bus.publish_dict(
            "knowledge.file.created",
            {"file_id": item.id, "folder_id": item.folder_id, "name": item.name},
            actor_id=str(context.employee_id),
        )
        return item

    def update_file(self, context: AccessContext, file_id: int, payload: FileUpdate) -> KnowledgeFile:
        tree = self.current_tree()
        node = self._visible_file(tree, context, file_id)
        evaluator = context.evaluator()
        if not evaluator.can_modify(context.principal, node):
            raise PermissionDeniedError("file cannot be modified by this employee")
        if payload.folder is not None and payload.folder != node.folder_id:
            target = self._visible_folder(tree, context, payload.folder)
            if not evaluator.can_modify(context.principal, target):
                raise PermissionDeniedError("target folder cannot be modified by this employee")

        with self._session() as session:
            item = session.get(KnowledgeFile, file_id)
            if item is None:
                raise NotFoundError("file not found")
            if payload.folder is not None:
                item.folder_id = payload.folder
            if payload.name is not None:
                item.name = payload.name
            if payload.description is not None:
                item.description = payload.description
            if payload.file_url is not None:
                item.file_url = payload.file_url
            if payload.inherits_parent_permissions is not None:
                item.inherits_parent_permissions = payload.inherits_parent_permissions
            grants = self._resolve_grants(session, payload, _row_grants(item))
            self._check_grant_scope(evaluator, payload, grants)
            _apply_grants(item, grants)
            session.add(item)
            session.commit()
            session.refresh(item)

        redis_state.bump_tree_generation()
        event_bus.publish_dict(
            "knowledge.file.updated",
            {"file_id": item.id, "folder_id": item.folder_id},
            actor_id=str(context.employee_id),
        )
        return item

    def delete_file(self, context: AccessContext, file_id: int) -> None:
        tree = self.current_tree()
        node = self._visible_file(tree, context, file_id)
        if not context.evaluator().can_modify(context.principal, node):
            raise PermissionDeniedError("file cannot be deleted by this employee")
        with self._session() as session:
            item = session.get(KnowledgeFile, file_id)
            if item is None:
                raise NotFoundError("file not found")
            session.delete(item)
            session.commit()

        redis_state.bump_tree_generation()
        event_bus.publish_dict(
            "knowledge.file.deleted",
            {"file_id": file_id},
            actor_id=str(context.employee_id),
        )
