"""Chain linking: publish each cell's predecessor to the owning workspaces.

A pass is staged and then published. Staging reads the cell list once and
records the predecessors in the document registry; publishing notifies
workspaces cell by cell. Workspace resolution can
suspend, so every pass carries a token; a structural change for the same
notebook issues a newer token and the older pass stops at its next
resumption instead of publishing a stale order.
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Sequence

from lsprotocol.types import NotebookCell

from cellchain.documents import DocumentRegistry
from cellchain.notebooks import NotebookStore
from cellchain.uris import uri_key
from cellchain.workspace import WorkspaceRegistry

logger = logging.getLogger("cellchain.chaining")


@dataclass(frozen=True)
class ChainToken:
    notebook_key: str
    generation: int


def has_duplicate_cells(cells: Sequence[NotebookCell]) -> bool:
    return len({cell.document for cell in cells}) != len(cells)


def chain_pairs(cells: Sequence[NotebookCell]) -> list[tuple[str, str | None]]:
    pairs: list[tuple[str, str | None]] = []
    previous: str | None = None
    for cell in cells:
        pairs.append((cell.document, previous))
        previous = cell.document
    return pairs


class ChainLinker:
    def __init__(
        self,
        store: NotebookStore,
        documents: DocumentRegistry,
        workspaces: WorkspaceRegistry,
    ) -> None:
        self.store = store
        self.documents = documents
        self.workspaces = workspaces
        self._generations = itertools.count(1)
        self._current: dict[str, int] = {}

    def supersede(self, notebook_uri: str) -> ChainToken:
        """Issue a fresh token, invalidating any pass still in flight."""
        key = uri_key(notebook_uri)
        generation = next(self._generations)
        self._current[key] = generation
        return ChainToken(key, generation)

    def is_current(self, token: ChainToken) -> bool:
        return self._current.get(token.notebook_key) == token.generation

    def forget(self, notebook_uri: str) -> None:
        self._current.pop(uri_key(notebook_uri), None)

    def reset(self) -> None:
        self._current.clear()

    def stage(self, notebook_uri: str, token: ChainToken) -> list[tuple[str, str | None]] | None:
        """Record predecessors in the registry; returns the pairs to publish."""
        notebook = self.store.get(notebook_uri)
        if notebook is None or not self.is_current(token):
            return None
        if has_duplicate_cells(notebook.cells):
            logger.warning(
                "%s: cell list contains duplicate documents; chain not published",
                notebook_uri,
            )
            return None
        pairs = chain_pairs(notebook.cells)
        for cell_uri, predecessor in pairs:
            self.documents.set_chained_predecessor(cell_uri, predecessor)
        return pairs

    async def link(self, notebook_uri: str, token: ChainToken) -> int | None:
        """Publish the chain; returns the number of pairs sent, or None if skipped."""
        return await self.publish(notebook_uri, self.stage(notebook_uri, token), token)

    async def publish(
        self,
        notebook_uri: str,
        pairs: Sequence[tuple[str, str | None]] | None,
        token: ChainToken,
    ) -> int | None:
        if pairs is None:
            return None
        for cell_uri, predecessor in pairs:
            owners = await self.workspaces.get_containing_workspaces(cell_uri)
            if not self.is_current(token):
                logger.debug("%s: chain pass superseded", notebook_uri)
                return None
            for workspace in owners:
                workspace.notify_chain(cell_uri, predecessor)
        logger.debug("%s: published chain of %d cell(s)", notebook_uri, len(pairs))
        return len(pairs)
