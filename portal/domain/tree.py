from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock

from portal.domain.grants import PUBLIC, AccessLevel, GrantSet, classify_access_level
from portal.domain.models import FolderTreeFile, FolderTreeItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreatorRef:
    id: int
    is_admin: bool = False


@dataclass(eq=False)
class FileNode:
    id: int
    folder_id: int
    name: str
    own_grants: GrantSet = PUBLIC
    inherits_parent_permissions: bool = True
    description: str = ""
    file_url: str | None = None
    content_type: str | None = None
    size: int = 0
    uploaded_by: CreatorRef | None = None
    uploaded_at: datetime | None = None
    effective: GrantSet = PUBLIC


@dataclass(eq=False)
class FolderNode:
    id: int
    name: str
    parent_id: int | None = None
    own_grants: GrantSet = PUBLIC
    inherits_parent_permissions: bool = True
    description: str = ""
    created_by: CreatorRef | None = None
    created_at: datetime | None = None
    children: list[FolderNode] = field(default_factory=list)
    files: list[FileNode] = field(default_factory=list)
    effective: GrantSet = PUBLIC

    @property
    def created_by_admin(self) -> bool:
        return self.created_by is not None and self.created_by.is_admin


def _grants_of(item: FolderTreeItem | FolderTreeFile) -> GrantSet:
    return GrantSet.from_lists(
        branches=item.permitted_branches,
        departments=item.permitted_departments,
        employees=item.permitted_employees,
        branch_departments=item.permitted_branch_departments,
    )


def _file_from_payload(item: FolderTreeFile, folder_id: int) -> FileNode:
    uploader = item.uploaded_by
    return FileNode(
        id=item.id,
        folder_id=folder_id,
        name=item.name,
        own_grants=_grants_of(item),
        inherits_parent_permissions=item.inherits_parent_permissions,
        description=item.description,
        file_url=item.file_url,
        content_type=item.content_type,
        size=item.size,
        uploaded_by=None if uploader is None else CreatorRef(id=uploader.id, is_admin=uploader.is_admin),
        uploaded_at=item.uploaded_at,
    )


def _folder_from_payload(item: FolderTreeItem, parent_id: int | None) -> FolderNode:
    creator = item.created_by
    node = FolderNode(
        id=item.id,
        name=item.name,
        parent_id=parent_id,
        own_grants=_grants_of(item),
        inherits_parent_permissions=item.inherits_parent_permissions,
        description=item.description,
        created_by=None if creator is None else CreatorRef(id=creator.id, is_admin=creator.is_admin),
        created_at=item.created_at,
    )
    node.files = [_file_from_payload(entry, item.id) for entry in item.files]
    return node


class PermissionTree:
    """Folder hierarchy with effective permissions computed once, top-down.

    A node that inherits takes its parent's effective grants; a node that does
    not (or a root, which has nothing to inherit from) uses its own grants, and
    its inheriting descendants stop there.
    """

    def __init__(self, roots: Sequence[FolderNode], detached: Sequence[FolderNode] = ()) -> None:
        self._roots = list(roots)
        self._folders: dict[int, FolderNode] = {}
        self._files: dict[int, FileNode] = {}
        self._compute(detached)

    @classmethod
    def from_payload(cls, items: Iterable[FolderTreeItem]) -> PermissionTree:
        seen: set[int] = set()
        roots: list[FolderNode] = []
        stack: list[tuple[FolderTreeItem, FolderNode | None]] = [(item, None) for item in reversed(list(items))]
        while stack:
            item, parent = stack.pop()
            if item.id in seen:
                logger.warning("duplicate folder %s in tree payload skipped", item.id)
                continue
            seen.add(item.id)
            node = _folder_from_payload(item, None if parent is None else parent.id)
            if parent is None:
                roots.append(node)
            else:
                parent.children.append(node)
            stack.extend((child, node) for child in reversed(item.folders))
        return cls(roots)

    @classmethod
    def from_flat(cls, folders: Iterable[FolderNode], files: Iterable[FileNode] = ()) -> PermissionTree:
        by_id: dict[int, FolderNode] = {}
        for folder in folders:
            if folder.id in by_id:
                logger.warning("duplicate folder %s in flat rows skipped", folder.id)
                continue
            folder.children = []
            folder.files = []
            by_id[folder.id] = folder

        roots: list[FolderNode] = []
        for folder in by_id.values():
            parent = None if folder.parent_id is None else by_id.get(folder.parent_id)
            if parent is None:
                if folder.parent_id is not None:
                    logger.debug("folder %s has unknown parent %s, treated as root", folder.id, folder.parent_id)
                roots.append(folder)
            else:
                parent.children.append(folder)

        for file_node in files:
            owner = by_id.get(file_node.folder_id)
            if owner is None:
                logger.debug("file %s references unknown folder %s", file_node.id, file_node.folder_id)
                continue
            owner.files.append(file_node)

        root_ids = {folder.id for folder in roots}
        detached = [folder for folder in by_id.values() if folder.id not in root_ids]
        return cls(roots, detached)

    def _compute(self, detached: Sequence[FolderNode]) -> None:
        self._visit([(node, None) for node in self._roots])
        # Anything left was not reachable from a root, so its parent chain loops.
        pending = {folder.id: folder for folder in detached if folder.id not in self._folders}
        on_cycle = self._cycle_members(pending)
        for folder_id in sorted(on_cycle):
            logger.warning("folder %s is part of a parent cycle, using its own grants", folder_id)
            self._place(pending[folder_id], None)
        self._visit(
            [
                (child, pending[folder_id])
                for folder_id in sorted(on_cycle)
                for child in pending[folder_id].children
            ]
        )

    @staticmethod
    def _cycle_members(pending: dict[int, FolderNode]) -> set[int]:
        members: set[int] = set()
        settled: set[int] = set()
        for start in pending:
            chain: list[int] = []
            index: dict[int, int] = {}
            current: int | None = start
            while current is not None and current in pending and current not in settled:
                if current in index:
                    members.update(chain[index[current]:])
                    break
                index[current] = len(chain)
                chain.append(current)
                current = pending[current].parent_id
            settled.update(chain)
        return members

    def _place(self, node: FolderNode, parent: FolderNode | None) -> None:
        if node.inherits_parent_permissions and parent is not None:
            node.effective = parent.effective
        else:
            node.effective = node.own_grants
        self._folders[node.id] = node
        for file_node in node.files:
            file_node.effective = node.effective if file_node.inherits_parent_permissions else file_node.own_grants
            self._files[file_node.id] = file_node

    def _visit(self, starts: Sequence[tuple[FolderNode, FolderNode | None]]) -> None:
        stack = list(reversed(starts))
        while stack:
            node, parent = stack.pop()
            if node.id in self._folders:
                continue
            self._place(node, parent)
            stack.extend((child, node) for child in reversed(node.children))

    @property
    def roots(self) -> list[FolderNode]:
        return list(self._roots)

    def __len__(self) -> int:
        return len(self._folders)

    def folder(self, folder_id: int) -> FolderNode | None:
        return self._folders.get(folder_id)

    def file(self, file_id: int) -> FileNode | None:
        return self._files.get(file_id)

    def effective(self, folder_id: int) -> GrantSet | None:
        node = self._folders.get(folder_id)
        return None if node is None else node.effective

    def file_effective(self, file_id: int) -> GrantSet | None:
        node = self._files.get(file_id)
        return None if node is None else node.effective

    def access_level(self, folder_id: int) -> AccessLevel | None:
        node = self._folders.get(folder_id)
        return None if node is None else classify_access_level(node.effective)

    def walk(self) -> Iterator[FolderNode]:
        seen: set[int] = set()
        stack = list(reversed(self._roots))
        while stack:
            node = stack.pop()
            if node.id in seen:
                continue
            seen.add(node.id)
            yield node
            stack.extend(reversed(node.children))

    def path(self, folder_id: int) -> list[FolderNode]:
        chain: list[FolderNode] = []
        seen: set[int] = set()
        current = self._folders.get(folder_id)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current)
            current = None if current.parent_id is None else self._folders.get(current.parent_id)
        chain.reverse()
        return chain


TreeTicket = tuple[int, int]


class TreeStore:
    """Holds the committed tree and rejects results of superseded fetches.

    A ticket is ``(generation, sequence)``; a fetch whose ticket is older than
    the committed one resolved late and is discarded.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._sequence = 0
        self._tree: PermissionTree | None = None
        self._committed: TreeTicket | None = None

    def begin_fetch(self, generation: int = 0) -> TreeTicket:
        with self._lock:
            self._sequence += 1
            return (generation, self._sequence)

    def commit(self, ticket: TreeTicket, tree: PermissionTree) -> bool:
        with self._lock:
            if self._committed is not None and ticket < self._committed:
                logger.debug("stale tree for ticket %s discarded, committed %s", ticket, self._committed)
                return False
            self._tree = tree
            self._committed = ticket
            return True

    @property
    def current(self) -> PermissionTree | None:
        with self._lock:
            return self._tree

    @property
    def committed_generation(self) -> int | None:
        with self._lock:
            return None if self._committed is None else self._committed[0]

    def reset(self) -> None:
        with self._lock:
            self._tree = None
            self._committed = None
