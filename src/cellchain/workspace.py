"""Workspaces that receive per-file document state, and their resolution."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

from lsprotocol.types import TextDocumentContentChangeEvent
from pygls.workspace import TextDocument

from cellchain.documents import DocumentMode
from cellchain.uris import uri_key, uri_to_path

logger = logging.getLogger("cellchain.workspace")

DEFAULT_WORKSPACE_NAME = "<default>"


class Workspace(Protocol):
    name: str

    def contains(self, path: Path) -> bool: ...

    def notify_file_opened(
        self,
        uri: str,
        version: int,
        text: str,
        mode: DocumentMode,
        chained_predecessor: str | None = None,
    ) -> None: ...

    def notify_file_closed(self, uri: str) -> None: ...

    def notify_file_changed(
        self,
        uri: str,
        changes: Sequence[TextDocumentContentChangeEvent],
        version: int,
    ) -> None: ...

    def notify_chain(self, uri: str, chained_predecessor: str | None) -> None: ...

    def clear(self) -> None: ...


@dataclass
class WorkspaceFile:
    uri: str
    mode: DocumentMode
    buffer: TextDocument
    chained_predecessor: str | None = None

    @property
    def text(self) -> str:
        return self.buffer.source

    @property
    def version(self) -> int:
        return self.buffer.version if self.buffer.version is not None else 0


@dataclass
class AnalysisWorkspace:
    """In-memory analysis state for the files under one root.

    A workspace with no root is the catch-all default workspace.
    """

    name: str
    root: Path | None = None
    files: dict[str, WorkspaceFile] = field(default_factory=dict)

    def contains(self, path: Path) -> bool:
        if self.root is None:
            return True
        return path == self.root or path.is_relative_to(self.root)

    def notify_file_opened(
        self,
        uri: str,
        version: int,
        text: str,
        mode: DocumentMode,
        chained_predecessor: str | None = None,
    ) -> None:
        self.files[uri_key(uri)] = WorkspaceFile(
            uri=uri,
            mode=mode,
            buffer=TextDocument(uri, source=text, version=version),
            chained_predecessor=chained_predecessor,
        )

    def notify_file_closed(self, uri: str) -> None:
        self.files.pop(uri_key(uri), None)

    def notify_file_changed(
        self,
        uri: str,
        changes: Sequence[TextDocumentContentChangeEvent],
        version: int,
    ) -> None:
        entry = self.files.get(uri_key(uri))
        if entry is None:
            logger.debug("workspace %s ignoring change for unopened %s", self.name, uri)
            return
        for change in changes:
            entry.buffer.apply_change(change)
        entry.buffer.version = version

    def notify_chain(self, uri: str, chained_predecessor: str | None) -> None:
        entry = self.files.get(uri_key(uri))
        if entry is None:
            logger.debug("workspace %s ignoring chain for unopened %s", self.name, uri)
            return
        entry.chained_predecessor = chained_predecessor

    def get(self, uri: str) -> WorkspaceFile | None:
        return self.files.get(uri_key(uri))

    def chain_of(self, uri: str) -> list[str]:
        """URIs from the head of the chain down to `uri`, inclusive."""
        chain: list[str] = []
        seen: set[str] = set()
        current: str | None = uri
        while current is not None:
            key = uri_key(current)
            entry = self.files.get(key)
            if entry is None or key in seen:
                break
            seen.add(key)
            chain.append(entry.uri)
            current = entry.chained_predecessor
        chain.reverse()
        return chain

    def chained_source(self, uri: str) -> str:
        return "\n".join(self.files[uri_key(item)].text for item in self.chain_of(uri))

    def clear(self) -> None:
        self.files.clear()


class WorkspaceRegistry:
    """Resolves which workspaces own a document.

    Every registered workspace whose root contains the document's path owns
    it. When none does, the default workspace (if enabled) takes it.
    """

    def __init__(self, *, default_workspace: bool = True) -> None:
        self._workspaces: dict[str, Workspace] = {}
        self._default: Workspace | None = (
            AnalysisWorkspace(name=DEFAULT_WORKSPACE_NAME) if default_workspace else None
        )

    def add(self, workspace: Workspace) -> None:
        self._workspaces[workspace.name] = workspace

    def add_folder(self, uri: str, name: str | None = None) -> Workspace:
        root = uri_to_path(uri)
        workspace = AnalysisWorkspace(name=name or str(root), root=root)
        self.add(workspace)
        logger.info("added workspace %s at %s", workspace.name, root)
        return workspace

    def remove_folder(self, uri: str) -> Workspace | None:
        root = uri_to_path(uri)
        for name, workspace in list(self._workspaces.items()):
            if isinstance(workspace, AnalysisWorkspace) and workspace.root == root:
                return self._workspaces.pop(name)
        return None

    def all(self) -> list[Workspace]:
        items = list(self._workspaces.values())
        if self._default is not None:
            items.append(self._default)
        return items

    async def get_containing_workspaces(self, uri: str) -> list[Workspace]:
        path = uri_to_path(uri)
        owners = [ws for ws in self._workspaces.values() if ws.contains(path)]
        if not owners and self._default is not None:
            owners = [self._default]
        return owners

    def clear(self) -> None:
        """Drop every workspace; later lookups resolve to no owner."""
        for workspace in self.all():
            workspace.clear()
        self._workspaces.clear()
        self._default = None
