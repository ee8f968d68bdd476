from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from cellchain.documents import DocumentMode
from cellchain.pipeline import FileChanged, TextDocumentPipeline

if TYPE_CHECKING:
    from lsprotocol.types import NotebookDocumentCellContentChanges


def register_text_content(
    pipeline: TextDocumentPipeline,
    text_content: Sequence[NotebookDocumentCellContentChanges],
) -> list[FileChanged]:
    """Apply each cell's text edits through the flat-document change path.

    Edits for cells that are not open are logged by the registry and skipped.
    """
    notices = []
    for entry in text_content:
        notice = pipeline.register_change(entry.document, entry.changes, DocumentMode.CELL_DOCS)
        if notice is not None:
            notices.append(notice)
    return notices
