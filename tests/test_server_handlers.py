from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from cellchain.config import NotebookSettings
from cellchain.engine import NotebookSyncEngine
from cellchain.workspace import AnalysisWorkspace, WorkspaceRegistry
from tests.notebook_helpers import (
    CONVERTER,
    NOTEBOOK_URI,
    cell_uri,
    change_params,
    close_params,
    full_change,
    item_json,
    open_params,
    recording_registry,
    save_params,
    structure_json,
    text_content_json,
)

A, B = cell_uri("A"), cell_uri("B")


def _load():
    pytest.importorskip("pygls")
    from cellchain import server

    return server


def _ls(folders: dict | None = None, root_uri: str | None = None) -> SimpleNamespace:
    engine = NotebookSyncEngine(workspaces=WorkspaceRegistry(default_workspace=False))
    workspace = SimpleNamespace(folders=folders or {}, root_uri=root_uri)
    return SimpleNamespace(engine=engine, workspace=workspace)


def test_notebook_sync_options_follow_settings() -> None:
    server = _load()
    options = server.notebook_sync_options(
        NotebookSettings(cell_language="ipython", notebook_type="jupyter-notebook")
    )
    payload = CONVERTER.unstructure(options)
    selector = payload["notebookSelector"][0]
    assert selector["notebook"] == "jupyter-notebook"
    assert selector["cells"] == [{"language": "ipython"}]


def test_initialized_registers_workspace_folders() -> None:
    server = _load()
    folder = SimpleNamespace(uri="file:///ws", name="ws")
    ls = _ls(folders={"file:///ws": folder})
    server.initialized(ls, None)
    [workspace] = ls.engine.workspaces.all()
    assert isinstance(workspace, AnalysisWorkspace)
    assert workspace.name == "ws"


def test_initialized_falls_back_to_root_uri() -> None:
    server = _load()
    ls = _ls(root_uri="file:///ws")
    server.initialized(ls, None)
    assert [ws.name for ws in ls.engine.workspaces.all()] == ["/ws"]


def test_workspace_folder_changes() -> None:
    server = _load()
    ls = _ls()
    ls.engine.workspaces.add_folder("file:///old", "old")
    event = SimpleNamespace(
        added=[SimpleNamespace(uri="file:///ws", name="ws")],
        removed=[SimpleNamespace(uri="file:///old", name="old")],
    )
    server.did_change_workspace_folders(ls, SimpleNamespace(event=event))
    assert [ws.name for ws in ls.engine.workspaces.all()] == ["ws"]


def test_notebook_handlers_drive_engine_and_state_command() -> None:
    server = _load()
    ls = _ls()
    server.initialized(ls, None)
    ls.engine.workspaces.add_folder("file:///ws", "ws")

    async def scenario() -> None:
        await server.did_open_notebook(ls, open_params([(A, "a = 1")]))
        await server.did_change_notebook(
            ls, change_params(2, structure=structure_json(1, 0, [B], did_open=[(B, "a")]))
        )
        server.did_save_notebook(ls, save_params())

    asyncio.run(scenario())
    result = server.execute_notebook_state(ls, {"notebook_uri": NOTEBOOK_URI})
    assert result["version"] == 2
    assert result["chainable"] is True
    assert [cell["document"] for cell in result["cells"]] == [A, B]
    assert result["cells"][1]["chained_predecessor"] == A
    assert result["errors"] == []

    asyncio.run(server.did_close_notebook(ls, close_params([A, B])))
    closed = server.execute_notebook_state(ls, {"notebook_uri": NOTEBOOK_URI})
    assert closed["errors"]
    assert closed["cells"] == []


def test_state_command_rejects_bad_payload() -> None:
    server = _load()
    result = server.execute_notebook_state(_ls(), {"uri": NOTEBOOK_URI})
    assert result["errors"]
    assert result["chainable"] is False
    assert server.execute_notebook_state(_ls(), None)["errors"]


def test_shutdown_clears_engine() -> None:
    server = _load()
    ls = _ls()
    asyncio.run(server.did_open_notebook(ls, open_params([(A, "")])))
    server.shutdown(ls)
    assert len(ls.engine.store) == 0
    assert len(ls.engine.documents) == 0


def test_create_server_attaches_engine_with_settings() -> None:
    server = _load()
    ls = server.create_server(NotebookSettings(cell_language="ipython"))
    assert ls.settings.cell_language == "ipython"
    assert ls.engine.settings is ls.settings


def test_start_uses_injected_callable() -> None:
    server = _load()
    called = {"value": False}

    def _start() -> None:
        called["value"] = True

    server.start(_start)
    assert called["value"] is True


def _dispatching_server():
    server = _load()
    ls = server.create_server()
    registry, workspace = recording_registry()
    ls.engine = NotebookSyncEngine(workspaces=registry)
    errors: list[Exception] = []
    ls.report_server_error = lambda error, source: errors.append(error)
    return ls, workspace, errors


async def _settle() -> None:
    current = asyncio.current_task()
    while pending := [task for task in asyncio.all_tasks() if task is not current]:
        await asyncio.gather(*pending)


def test_change_after_close_reaches_engine_without_server_error(cellchain_logs) -> None:
    from lsprotocol.types import (
        NOTEBOOK_DOCUMENT_DID_CHANGE,
        NOTEBOOK_DOCUMENT_DID_CLOSE,
        NOTEBOOK_DOCUMENT_DID_OPEN,
    )

    ls, workspace, errors = _dispatching_server()

    async def scenario() -> None:
        ls.protocol._handle_notification(NOTEBOOK_DOCUMENT_DID_OPEN, open_params([(A, "a")]))
        ls.protocol._handle_notification(NOTEBOOK_DOCUMENT_DID_CLOSE, close_params([A]))
        ls.protocol._handle_notification(
            NOTEBOOK_DOCUMENT_DID_CHANGE, change_params(2, structure=structure_json(0, 1))
        )
        await _settle()

    asyncio.run(scenario())
    assert errors == []
    assert ls.engine.store.get(NOTEBOOK_URI) is None
    assert workspace.of_kind("closed") == [("closed", A)]
    assert any(
        "notebook is not open" in record.getMessage() for record in cellchain_logs.records
    )


def test_change_with_text_for_unopened_cell_keeps_structural_splice() -> None:
    from lsprotocol.types import NOTEBOOK_DOCUMENT_DID_CHANGE, NOTEBOOK_DOCUMENT_DID_OPEN

    ls, workspace, errors = _dispatching_server()
    unopened = cell_uri("C")

    async def scenario() -> None:
        ls.protocol._handle_notification(
            NOTEBOOK_DOCUMENT_DID_OPEN, open_params([(A, "a"), (B, "b")])
        )
        ls.protocol._handle_notification(
            NOTEBOOK_DOCUMENT_DID_CHANGE,
            change_params(
                2,
                structure=structure_json(0, 1, did_close=[A]),
                text_content=[text_content_json(unopened, 2, full_change("c"))],
            ),
        )
        await _settle()

    asyncio.run(scenario())
    assert errors == []
    notebook = ls.engine.store.get(NOTEBOOK_URI)
    assert notebook is not None
    assert [cell.document for cell in notebook.cells] == [B]
    assert ls.engine.documents.get(A) is None
    assert ls.engine.documents.get(unopened) is None
    assert ("chain", B, None) in workspace.calls


def test_text_document_events_reach_engine_through_dispatch() -> None:
    from lsprotocol.types import (
        TEXT_DOCUMENT_DID_CHANGE,
        TEXT_DOCUMENT_DID_CLOSE,
        TEXT_DOCUMENT_DID_OPEN,
        DidChangeTextDocumentParams,
        DidCloseTextDocumentParams,
        DidOpenTextDocumentParams,
    )

    ls, workspace, errors = _dispatching_server()
    uri = "file:///ws/module.py"

    async def scenario() -> None:
        ls.protocol._handle_notification(
            TEXT_DOCUMENT_DID_CLOSE,
            CONVERTER.structure({"textDocument": {"uri": uri}}, DidCloseTextDocumentParams),
        )
        ls.protocol._handle_notification(
            TEXT_DOCUMENT_DID_OPEN,
            CONVERTER.structure(
                {"textDocument": item_json(uri, "x = 1")}, DidOpenTextDocumentParams
            ),
        )
        ls.protocol._handle_notification(
            TEXT_DOCUMENT_DID_CHANGE,
            CONVERTER.structure(
                {
                    "textDocument": {"uri": uri, "version": 2},
                    "contentChanges": [full_change("x = 2")],
                },
                DidChangeTextDocumentParams,
            ),
        )
        await _settle()

    asyncio.run(scenario())
    assert errors == []
    assert ls.engine.documents.get(uri).text == "x = 2"
    assert [call[0] for call in workspace.calls] == ["closed", "opened", "changed"]
