from __future__ import annotations

import logging

from lsprotocol.types import (
    ExecutionSummary,
    NotebookCell,
    NotebookCellKind,
    NotebookDocument,
)

from cellchain.cell_data import apply_cell_data
from tests.notebook_helpers import NOTEBOOK_URI, cell_uri

A, B, C = cell_uri("A"), cell_uri("B"), cell_uri("C")


def _notebook(*uris: str) -> NotebookDocument:
    return NotebookDocument(
        uri=NOTEBOOK_URI,
        notebook_type="jupyter-notebook",
        version=1,
        cells=[NotebookCell(kind=NotebookCellKind.Code, document=uri) for uri in uris],
    )


def test_updates_match_by_document_not_position() -> None:
    notebook = _notebook(A, B, C)
    unmatched = apply_cell_data(
        notebook,
        [
            NotebookCell(kind=NotebookCellKind.Markup, document=C, metadata={"tag": "c"}),
            NotebookCell(
                kind=NotebookCellKind.Code,
                document=A,
                execution_summary=ExecutionSummary(execution_order=4, success=True),
            ),
        ],
    )
    assert unmatched == []
    first, second, third = notebook.cells
    assert [cell.document for cell in notebook.cells] == [A, B, C]
    assert first.execution_summary is not None
    assert first.execution_summary.execution_order == 4
    assert second.kind == NotebookCellKind.Code
    assert second.metadata is None
    assert third.kind == NotebookCellKind.Markup
    assert third.metadata == {"tag": "c"}


def test_unknown_document_is_dropped_without_mutation(cellchain_logs) -> None:
    notebook = _notebook(A, B)
    before = list(notebook.cells)
    ghost = cell_uri("ghost")
    unmatched = apply_cell_data(
        notebook, [NotebookCell(kind=NotebookCellKind.Markup, document=ghost)]
    )
    assert [cell.document for cell in unmatched] == [ghost]
    assert notebook.cells == before
    assert any(
        record.levelno == logging.WARNING and ghost in record.getMessage()
        for record in cellchain_logs.records
    )


def test_unmatched_reporting_can_be_quieted(cellchain_logs) -> None:
    notebook = _notebook(A)
    apply_cell_data(
        notebook,
        [NotebookCell(kind=NotebookCellKind.Code, document=cell_uri("gone"))],
        report_unmatched=False,
    )
    assert not any(record.levelno >= logging.WARNING for record in cellchain_logs.records)
    assert any("dropped cell data" in record.getMessage() for record in cellchain_logs.records)


def test_empty_update_set_leaves_cells_alone() -> None:
    notebook = _notebook(A, B)
    before = list(notebook.cells)
    assert apply_cell_data(notebook, []) == []
    assert notebook.cells == before
