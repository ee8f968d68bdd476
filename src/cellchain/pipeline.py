"""Flat-document lifecycle: the path every open file and cell document takes.

Each lifecycle step has two halves. `register_*` mutates the document
registry and returns a notice; `publish` resolves the owning workspaces and
delivers notices in order. Callers handling one event register everything
first, so the registry never changes across an ownership lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, Sequence, Union

from lsprotocol.types import (
    TextDocumentContentChangeEvent,
    TextDocumentItem,
    VersionedTextDocumentIdentifier,
)

from cellchain.documents import DocumentMode, DocumentRegistry, VirtualTextDocument
from cellchain.uris import is_cell_uri
from cellchain.workspace import WorkspaceRegistry

logger = logging.getLogger("cellchain.pipeline")


class DocumentLifecycleSink(Protocol):
    async def on_open(
        self,
        item: TextDocumentItem,
        mode: DocumentMode = DocumentMode.NONE,
        chained_predecessor: str | None = None,
    ) -> None: ...

    async def on_change(
        self,
        document: VersionedTextDocumentIdentifier,
        changes: Sequence[TextDocumentContentChangeEvent],
        mode: DocumentMode = DocumentMode.NONE,
    ) -> None: ...

    async def on_close(self, uri: str) -> None: ...


@dataclass(frozen=True)
class FileOpened:
    document: VirtualTextDocument
    version: int
    text: str
    mode: DocumentMode
    chained_predecessor: str | None

    @property
    def uri(self) -> str:
        return self.document.uri


@dataclass(frozen=True)
class FileChanged:
    document: VirtualTextDocument
    changes: list[TextDocumentContentChangeEvent]
    version: int

    @property
    def uri(self) -> str:
        return self.document.uri


@dataclass(frozen=True)
class FileClosed:
    uri: str


FileNotice = Union[FileOpened, FileChanged, FileClosed]


class TextDocumentPipeline:
    """Registers document state, then forwards it to every owning workspace.

    Opened and changed notices are dropped at delivery when the registry no
    longer holds the document they were registered against, which is the case
    after a close or a shutdown that ran while ownership was being resolved.
    """

    def __init__(
        self,
        documents: DocumentRegistry,
        workspaces: WorkspaceRegistry,
        *,
        cell_language: str | None = None,
    ) -> None:
        self.documents = documents
        self.workspaces = workspaces
        self.cell_language = cell_language

    def register_open(
        self,
        item: TextDocumentItem,
        mode: DocumentMode = DocumentMode.NONE,
        chained_predecessor: str | None = None,
    ) -> FileOpened:
        if mode is DocumentMode.NONE and is_cell_uri(item.uri):
            mode = DocumentMode.CELL_DOCS
        language_id = item.language_id
        if mode is DocumentMode.CELL_DOCS and self.cell_language:
            language_id = self.cell_language
        logger.debug("open %s (mode=%s, chained=%s)", item.uri, mode.value, chained_predecessor)
        document = self.documents.open(
            item.uri,
            language_id,
            item.version,
            item.text,
            mode=mode,
            chained_predecessor=chained_predecessor,
        )
        return FileOpened(document, item.version, item.text, mode, chained_predecessor)

    def register_change(
        self,
        document: VersionedTextDocumentIdentifier,
        changes: Sequence[TextDocumentContentChangeEvent],
        mode: DocumentMode = DocumentMode.NONE,
    ) -> FileChanged | None:
        updated = self.documents.update(document.uri, changes, document.version)
        if updated is None:
            return None
        logger.debug("change %s v%s (mode=%s)", document.uri, document.version, mode.value)
        return FileChanged(updated, list(changes), document.version)

    def register_close(self, uri: str) -> FileClosed:
        logger.debug("close %s", uri)
        self.documents.close(uri)
        return FileClosed(uri)

    async def publish(self, notices: Sequence[FileNotice | None]) -> int:
        """Deliver notices in order; returns how many reached the workspaces."""
        delivered = 0
        for notice in notices:
            if notice is None:
                continue
            owners = await self.workspaces.get_containing_workspaces(notice.uri)
            if isinstance(notice, FileClosed):
                for workspace in owners:
                    workspace.notify_file_closed(notice.uri)
            elif self.documents.get(notice.uri) is not notice.document:
                logger.debug("%s is no longer open; notice dropped", notice.uri)
                continue
            elif isinstance(notice, FileOpened):
                for workspace in owners:
                    workspace.notify_file_opened(
                        notice.uri,
                        notice.version,
                        notice.text,
                        notice.mode,
                        notice.chained_predecessor,
                    )
            else:
                for workspace in owners:
                    workspace.notify_file_changed(notice.uri, notice.changes, notice.version)
            delivered += 1
        return delivered

    async def on_open(
        self,
        item: TextDocumentItem,
        mode: DocumentMode = DocumentMode.NONE,
        chained_predecessor: str | None = None,
    ) -> None:
        await self.publish([self.register_open(item, mode, chained_predecessor)])

    async def on_change(
        self,
        document: VersionedTextDocumentIdentifier,
        changes: Sequence[TextDocumentContentChangeEvent],
        mode: DocumentMode = DocumentMode.NONE,
    ) -> None:
        await self.publish([self.register_change(document, changes, mode)])

    async def on_close(self, uri: str) -> None:
        await self.publish([self.register_close(uri)])
