from __future__ import annotations

import logging
from typing import Any, Callable

from lsprotocol.converters import get_converter
from lsprotocol.types import (
    INITIALIZED,
    NOTEBOOK_DOCUMENT_DID_CHANGE,
    NOTEBOOK_DOCUMENT_DID_CLOSE,
    NOTEBOOK_DOCUMENT_DID_OPEN,
    NOTEBOOK_DOCUMENT_DID_SAVE,
    SHUTDOWN,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    WORKSPACE_DID_CHANGE_WORKSPACE_FOLDERS,
    DidChangeNotebookDocumentParams,
    DidChangeTextDocumentParams,
    DidChangeWorkspaceFoldersParams,
    DidCloseNotebookDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenNotebookDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveNotebookDocumentParams,
    InitializedParams,
    NotebookDocumentSyncOptions,
)
from pydantic import ValidationError
from pygls.lsp.server import LanguageServer
from pygls.protocol import LanguageServerProtocol, lsp_method

from cellchain import __version__
from cellchain.config import NotebookSettings
from cellchain.engine import NotebookSyncEngine
from cellchain.schema import NotebookStateRequest, NotebookStateResponse

logger = logging.getLogger("cellchain.server")

NOTEBOOK_STATE_COMMAND = "cellchain.notebookState"


def notebook_sync_options(settings: NotebookSettings) -> NotebookDocumentSyncOptions:
    payload = {
        "notebookSelector": [
            {
                "notebook": settings.notebook_type,
                "cells": [{"language": settings.cell_language}],
            }
        ]
    }
    return get_converter().structure(payload, NotebookDocumentSyncOptions)


class CellchainProtocol(LanguageServerProtocol):
    """Hands document sync notifications straight to the registered features.

    The engine keeps its own notebook store and document registry. The base
    protocol's workspace copy raises on events the engine tolerates, such as a
    change for a notebook that was already closed, and would drop the event
    before the engine sees it.
    """

    def _forward(self, method: str, params: Any):
        if (handler := self.fm.features.get(method)) is not None:
            yield handler, (params,), None

    @lsp_method(NOTEBOOK_DOCUMENT_DID_OPEN)
    def lsp_notebook_document__did_open(self, params: DidOpenNotebookDocumentParams):
        yield from self._forward(NOTEBOOK_DOCUMENT_DID_OPEN, params)

    @lsp_method(NOTEBOOK_DOCUMENT_DID_CHANGE)
    def lsp_notebook_document__did_change(self, params: DidChangeNotebookDocumentParams):
        yield from self._forward(NOTEBOOK_DOCUMENT_DID_CHANGE, params)

    @lsp_method(NOTEBOOK_DOCUMENT_DID_CLOSE)
    def lsp_notebook_document__did_close(self, params: DidCloseNotebookDocumentParams):
        yield from self._forward(NOTEBOOK_DOCUMENT_DID_CLOSE, params)

    @lsp_method(TEXT_DOCUMENT_DID_OPEN)
    def lsp_text_document__did_open(self, params: DidOpenTextDocumentParams):
        yield from self._forward(TEXT_DOCUMENT_DID_OPEN, params)

    @lsp_method(TEXT_DOCUMENT_DID_CHANGE)
    def lsp_text_document__did_change(self, params: DidChangeTextDocumentParams):
        yield from self._forward(TEXT_DOCUMENT_DID_CHANGE, params)

    @lsp_method(TEXT_DOCUMENT_DID_CLOSE)
    def lsp_text_document__did_close(self, params: DidCloseTextDocumentParams):
        yield from self._forward(TEXT_DOCUMENT_DID_CLOSE, params)


class CellchainServer(LanguageServer):
    def __init__(self, settings: NotebookSettings | None = None) -> None:
        settings = settings or NotebookSettings()
        super().__init__(
            "cellchain",
            __version__,
            notebook_document_sync=notebook_sync_options(settings),
            protocol_cls=CellchainProtocol,
        )
        self.settings = settings
        self.engine = NotebookSyncEngine(settings)


def initialized(ls: CellchainServer, params: InitializedParams) -> None:
    folders = list(ls.workspace.folders.values())
    logger.info("initialized with %d workspace folder(s)", len(folders))
    for folder in folders:
        ls.engine.workspaces.add_folder(folder.uri, folder.name)
    if not folders and ls.workspace.root_uri:
        ls.engine.workspaces.add_folder(ls.workspace.root_uri)


def did_change_workspace_folders(
    ls: CellchainServer, params: DidChangeWorkspaceFoldersParams
) -> None:
    for folder in params.event.removed:
        ls.engine.workspaces.remove_folder(folder.uri)
    for folder in params.event.added:
        ls.engine.workspaces.add_folder(folder.uri, folder.name)


async def did_open_notebook(ls: CellchainServer, params: DidOpenNotebookDocumentParams) -> None:
    await ls.engine.did_open_notebook(params)


async def did_change_notebook(
    ls: CellchainServer, params: DidChangeNotebookDocumentParams
) -> None:
    await ls.engine.did_change_notebook(params)


def did_save_notebook(ls: CellchainServer, params: DidSaveNotebookDocumentParams) -> None:
    ls.engine.did_save_notebook(params)


async def did_close_notebook(ls: CellchainServer, params: DidCloseNotebookDocumentParams) -> None:
    await ls.engine.did_close_notebook(params)


async def did_open(ls: CellchainServer, params: DidOpenTextDocumentParams) -> None:
    await ls.engine.did_open_text_document(params)


async def did_change(ls: CellchainServer, params: DidChangeTextDocumentParams) -> None:
    await ls.engine.did_change_text_document(params)


async def did_close(ls: CellchainServer, params: DidCloseTextDocumentParams) -> None:
    await ls.engine.did_close_text_document(params)


def shutdown(ls: CellchainServer, params: None = None) -> None:
    ls.engine.shutdown()


def execute_notebook_state(ls: CellchainServer, payload: dict | None = None) -> dict:
    try:
        request = NotebookStateRequest.model_validate(payload or {})
    except ValidationError as exc:
        return NotebookStateResponse(
            notebook_uri="", chainable=False, errors=[str(exc)]
        ).model_dump()
    return ls.engine.notebook_state(request.notebook_uri).model_dump()


FEATURES: tuple[tuple[str, Callable], ...] = (
    (INITIALIZED, initialized),
    (WORKSPACE_DID_CHANGE_WORKSPACE_FOLDERS, did_change_workspace_folders),
    (NOTEBOOK_DOCUMENT_DID_OPEN, did_open_notebook),
    (NOTEBOOK_DOCUMENT_DID_CHANGE, did_change_notebook),
    (NOTEBOOK_DOCUMENT_DID_SAVE, did_save_notebook),
    (NOTEBOOK_DOCUMENT_DID_CLOSE, did_close_notebook),
    (TEXT_DOCUMENT_DID_OPEN, did_open),
    (TEXT_DOCUMENT_DID_CHANGE, did_change),
    (TEXT_DOCUMENT_DID_CLOSE, did_close),
    (SHUTDOWN, shutdown),
)


def create_server(settings: NotebookSettings | None = None) -> CellchainServer:
    ls = CellchainServer(settings)
    for method, handler in FEATURES:
        ls.feature(method)(handler)
    ls.command(NOTEBOOK_STATE_COMMAND)(execute_notebook_state)
    return ls


server = create_server()


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Serve LSP over stdio unless another start function is given."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
