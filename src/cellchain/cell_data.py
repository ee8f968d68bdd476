"""Per-cell data updates (kind, metadata, execution summary), keyed by document."""

from __future__ import annotations

import logging
from typing import Sequence

from lsprotocol.types import NotebookCell, NotebookDocument

logger = logging.getLogger("cellchain.cell_data")


def apply_cell_data(
    notebook: NotebookDocument,
    updates: Sequence[NotebookCell],
    *,
    report_unmatched: bool = True,
) -> list[NotebookCell]:
    """Replace the data of every cell whose document has a pending update.

    Matching is by document URI, never by position; cell text is untouched.
    Returns the updates that matched no current cell.
    """
    pending = {update.document: update for update in updates}
    for index, cell in enumerate(notebook.cells):
        if not pending:
            break
        update = pending.pop(cell.document, None)
        if update is None:
            continue
        notebook.cells[index] = NotebookCell(
            kind=update.kind,
            document=cell.document,
            metadata=update.metadata,
            execution_summary=update.execution_summary,
        )
    unmatched = list(pending.values())
    if unmatched:
        level = logging.WARNING if report_unmatched else logging.DEBUG
        logger.log(
            level,
            "%s: dropped cell data for %d unknown cell(s): %s",
            notebook.uri,
            len(unmatched),
            ", ".join(update.document for update in unmatched),
        )
    return unmatched
