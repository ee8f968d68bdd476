"""Structural cell diffs: splice the cell list, then open and close cell documents."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Sequence

from lsprotocol.types import NotebookCell, NotebookDocument

from cellchain.documents import DocumentMode
from cellchain.notebooks import NotebookStore
from cellchain.pipeline import FileNotice, TextDocumentPipeline

if TYPE_CHECKING:
    from lsprotocol.types import NotebookDocumentCellChangeStructure

    from cellchain.chaining import ChainLinker, ChainToken

logger = logging.getLogger("cellchain.structure")


def splice_cells(
    cells: list[NotebookCell],
    start: int,
    delete_count: int,
    inserted: Sequence[NotebookCell] | None = None,
) -> list[NotebookCell]:
    """Replace `cells[start:start + delete_count]` with `inserted`, in place.

    Out-of-range bounds clamp to the list, matching array splice semantics.
    Returns the removed cells.
    """
    start = max(0, min(start, len(cells)))
    stop = min(len(cells), start + max(0, delete_count))
    removed = cells[start:stop]
    cells[start:stop] = list(inserted or ())
    return removed


def chained_predecessor_of(cells: Sequence[NotebookCell], document_uri: str) -> str | None:
    for index, cell in enumerate(cells):
        if cell.document == document_uri:
            return cells[index - 1].document if index > 0 else None
    return None


@dataclass
class StructuralUpdate:
    """Registry work already done for one structural change, awaiting delivery."""

    notebook_uri: str
    token: ChainToken | None
    notices: list[FileNotice] = field(default_factory=list)
    chain: list[tuple[str, str | None]] | None = None


class StructureApplier:
    def __init__(
        self,
        store: NotebookStore,
        pipeline: TextDocumentPipeline,
        linker: ChainLinker,
    ) -> None:
        self.store = store
        self.pipeline = pipeline
        self.linker = linker

    def apply(
        self,
        notebook: NotebookDocument,
        structure: NotebookDocumentCellChangeStructure,
        token: ChainToken | None,
    ) -> StructuralUpdate:
        array = structure.array
        removed = splice_cells(notebook.cells, array.start, array.delete_count, array.cells)
        self.store.reindex(notebook.uri)
        logger.debug(
            "%s: spliced %d cell(s) out and %d in at %d",
            notebook.uri,
            len(removed),
            len(array.cells or ()),
            array.start,
        )
        update = StructuralUpdate(notebook.uri, token)
        # Predecessors come from the post-splice list.
        for item in structure.did_open or ():
            predecessor = chained_predecessor_of(notebook.cells, item.uri)
            update.notices.append(
                self.pipeline.register_open(item, DocumentMode.CELL_DOCS, predecessor)
            )
        for identifier in structure.did_close or ():
            update.notices.append(self.pipeline.register_close(identifier.uri))
        if token is not None:
            update.chain = self.linker.stage(notebook.uri, token)
        return update

    async def publish(self, update: StructuralUpdate) -> None:
        await self.pipeline.publish(update.notices)
        if update.token is not None:
            await self.linker.publish(update.notebook_uri, update.chain, update.token)
