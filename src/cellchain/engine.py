"""Notebook synchronization engine.

Receives the four notebook lifecycle notifications plus the flat text
document ones, keeps the notebook store and document registry current, and
forwards per-file state to the owning workspaces.

Events for one notebook are handled strictly in arrival order through a
per-notebook lock. The lock is taken before the handler's first suspension,
so handlers scheduled as tasks in arrival order also run in that order.

Within a handler every store and registry mutation for the event is made
before the first workspace lookup; only the notifications that follow are
asynchronous, so a shutdown that lands mid-delivery stays cleared.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from lsprotocol.types import (
    NOTEBOOK_DOCUMENT_DID_CHANGE,
    NOTEBOOK_DOCUMENT_DID_CLOSE,
    DidChangeNotebookDocumentParams,
    DidChangeTextDocumentParams,
    DidCloseNotebookDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenNotebookDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveNotebookDocumentParams,
    NotebookCellKind,
)

from cellchain.cell_data import apply_cell_data
from cellchain.chaining import ChainLinker, ChainToken, has_duplicate_cells
from cellchain.config import NotebookSettings
from cellchain.content import register_text_content
from cellchain.documents import DocumentMode, DocumentRegistry
from cellchain.exceptions import ProtocolViolation
from cellchain.notebooks import NotebookStore
from cellchain.pipeline import DocumentLifecycleSink, TextDocumentPipeline
from cellchain.schema import CellStateDTO, NotebookStateResponse
from cellchain.sequencing import KeyedLock
from cellchain.structure import StructureApplier
from cellchain.uris import uri_key
from cellchain.workspace import WorkspaceRegistry

logger = logging.getLogger("cellchain.engine")


@contextmanager
def _report_violations(method: str) -> Iterator[None]:
    try:
        yield
    except ProtocolViolation as exc:
        logger.error("%s: %s", method, exc)


def _notebook_lock_key(uri: str) -> str:
    return "notebook:" + uri_key(uri)


def _document_lock_key(uri: str) -> str:
    return "document:" + uri_key(uri)


class NotebookSyncEngine:
    def __init__(
        self,
        settings: NotebookSettings | None = None,
        *,
        store: NotebookStore | None = None,
        documents: DocumentRegistry | None = None,
        workspaces: WorkspaceRegistry | None = None,
        flat_files: DocumentLifecycleSink | None = None,
    ) -> None:
        self.settings = settings or NotebookSettings()
        self.store = store if store is not None else NotebookStore()
        self.documents = documents if documents is not None else DocumentRegistry()
        self.workspaces = (
            workspaces
            if workspaces is not None
            else WorkspaceRegistry(default_workspace=self.settings.default_workspace)
        )
        self.pipeline = TextDocumentPipeline(
            self.documents,
            self.workspaces,
            cell_language=self.settings.cell_language,
        )
        self.flat_files = flat_files if flat_files is not None else self.pipeline
        self.linker = ChainLinker(self.store, self.documents, self.workspaces)
        self.structure = StructureApplier(self.store, self.pipeline, self.linker)
        self._sequencer = KeyedLock()

    def _lock_key_for_document(self, uri: str) -> str:
        # Cell documents edited over the text channel queue behind their notebook.
        notebook = self.store.notebook_for_cell(uri)
        if notebook is not None:
            return _notebook_lock_key(notebook.uri)
        return _document_lock_key(uri)

    async def did_open_notebook(self, params: DidOpenNotebookDocumentParams) -> None:
        notebook = params.notebook_document
        token = self.linker.supersede(notebook.uri)
        async with self._sequencer.hold(_notebook_lock_key(notebook.uri)):
            logger.info(
                "open notebook %s (%d cells, v%s)",
                notebook.uri,
                len(notebook.cells),
                notebook.version,
            )
            self.store.open(notebook)
            notices = []
            predecessor: str | None = None
            for item in params.cell_text_documents:
                notices.append(
                    self.pipeline.register_open(item, DocumentMode.CELL_DOCS, predecessor)
                )
                predecessor = item.uri
            chain = None
            if self.settings.rechain_on_open:
                chain = self.linker.stage(notebook.uri, token)
            await self.pipeline.publish(notices)
            if self.settings.rechain_on_open:
                await self.linker.publish(notebook.uri, chain, token)

    async def did_change_notebook(self, params: DidChangeNotebookDocumentParams) -> None:
        uri = params.notebook_document.uri
        cells = params.change.cells
        token = None
        if cells is not None and cells.structure is not None:
            token = self.linker.supersede(uri)
        async with self._sequencer.hold(_notebook_lock_key(uri)):
            logger.debug("change notebook %s (v%s)", uri, params.notebook_document.version)
            try:
                with _report_violations(NOTEBOOK_DOCUMENT_DID_CHANGE):
                    await self._apply_change(params, token)
            finally:
                if uri not in self.store:
                    self.linker.forget(uri)

    async def _apply_change(
        self, params: DidChangeNotebookDocumentParams, token: ChainToken | None
    ) -> None:
        change = params.change
        notebook = self.store.apply_version_and_metadata(
            params.notebook_document.uri,
            params.notebook_document.version,
            change.metadata,
        )
        cells = change.cells
        if cells is None:
            return
        structural = None
        if cells.structure is not None:
            structural = self.structure.apply(notebook, cells.structure, token)
        if cells.data is not None:
            apply_cell_data(
                notebook,
                cells.data,
                report_unmatched=self.settings.report_unmatched_cell_data,
            )
        edits = []
        if cells.text_content is not None:
            edits = register_text_content(self.pipeline, cells.text_content)
        if structural is not None:
            await self.structure.publish(structural)
        await self.pipeline.publish(edits)

    def did_save_notebook(self, params: DidSaveNotebookDocumentParams) -> None:
        logger.debug("save notebook %s", params.notebook_document.uri)

    async def did_close_notebook(self, params: DidCloseNotebookDocumentParams) -> None:
        uri = params.notebook_document.uri
        self.linker.forget(uri)
        async with self._sequencer.hold(_notebook_lock_key(uri)):
            notebook = self.store.close(uri)
            if notebook is None:
                logger.warning(
                    "%s: Received close notebook document command for unknown notebook %s",
                    NOTEBOOK_DOCUMENT_DID_CLOSE,
                    uri,
                )
                return
            logger.info("close notebook %s", uri)
            notices = [
                self.pipeline.register_close(identifier.uri)
                for identifier in params.cell_text_documents
            ]
            await self.pipeline.publish(notices)

    async def did_open_text_document(self, params: DidOpenTextDocumentParams) -> None:
        item = params.text_document
        async with self._sequencer.hold(self._lock_key_for_document(item.uri)):
            await self.flat_files.on_open(item)

    async def did_change_text_document(self, params: DidChangeTextDocumentParams) -> None:
        document = params.text_document
        async with self._sequencer.hold(self._lock_key_for_document(document.uri)):
            await self.flat_files.on_change(document, params.content_changes)

    async def did_close_text_document(self, params: DidCloseTextDocumentParams) -> None:
        uri = params.text_document.uri
        async with self._sequencer.hold(self._lock_key_for_document(uri)):
            await self.flat_files.on_close(uri)

    def shutdown(self) -> None:
        logger.info("shutdown: dropping %d notebook(s)", len(self.store))
        self.linker.reset()
        self.store.clear()
        self.documents.clear()
        self.workspaces.clear()

    def notebook_state(self, uri: str) -> NotebookStateResponse:
        notebook = self.store.get(uri)
        if notebook is None:
            return NotebookStateResponse(
                notebook_uri=uri,
                chainable=False,
                errors=[f"notebook is not open: {uri}"],
            )
        cells = []
        for cell in notebook.cells:
            document = self.documents.get(cell.document)
            cells.append(
                CellStateDTO(
                    document=cell.document,
                    kind=NotebookCellKind(cell.kind).name.lower(),
                    chained_predecessor=document.chained_predecessor if document else None,
                    language_id=document.language_id if document else None,
                    version=document.version if document else None,
                    is_open=document is not None,
                )
            )
        return NotebookStateResponse(
            notebook_uri=notebook.uri,
            notebook_type=notebook.notebook_type,
            version=notebook.version,
            metadata=dict(notebook.metadata or {}),
            cells=cells,
            chainable=not has_duplicate_cells(notebook.cells),
        )
