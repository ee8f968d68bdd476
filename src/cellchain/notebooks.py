"""Notebook store: the server-side record of every open notebook."""

from __future__ import annotations

import logging
from typing import Iterator

from lsprotocol.types import NotebookDocument

from cellchain.exceptions import UnknownNotebookError
from cellchain.json_types import JSONObject
from cellchain.uris import uri_key

logger = logging.getLogger("cellchain.notebooks")


def snapshot_notebook(notebook: NotebookDocument) -> NotebookDocument:
    """Private copy of a client notebook whose cell list can be spliced safely."""
    return NotebookDocument(
        uri=notebook.uri,
        notebook_type=notebook.notebook_type,
        version=notebook.version,
        metadata=dict(notebook.metadata) if notebook.metadata is not None else None,
        cells=list(notebook.cells),
    )


class NotebookStore:
    def __init__(self) -> None:
        self._notebooks: dict[str, NotebookDocument] = {}
        self._cell_owner: dict[str, str] = {}

    def __contains__(self, uri: object) -> bool:
        return isinstance(uri, str) and uri_key(uri) in self._notebooks

    def __len__(self) -> int:
        return len(self._notebooks)

    def __iter__(self) -> Iterator[NotebookDocument]:
        return iter(list(self._notebooks.values()))

    def open(self, notebook: NotebookDocument) -> NotebookDocument:
        key = uri_key(notebook.uri)
        if key in self._notebooks:
            # Replace rather than reject so a duplicate open cannot wedge the notebook.
            logger.error("Received redundant open notebook document command for %s", notebook.uri)
            self._drop_cell_index(key)
        stored = snapshot_notebook(notebook)
        self._notebooks[key] = stored
        self.reindex(stored.uri)
        return stored

    def get(self, uri: str) -> NotebookDocument | None:
        return self._notebooks.get(uri_key(uri))

    def require(self, uri: str, *, method: str = "") -> NotebookDocument:
        notebook = self.get(uri)
        if notebook is None:
            raise UnknownNotebookError(uri, method=method)
        return notebook

    def apply_version_and_metadata(
        self,
        uri: str,
        version: int,
        metadata: JSONObject | None = None,
    ) -> NotebookDocument:
        notebook = self.require(uri, method="applyVersionAndMetadata")
        notebook.version = version
        if metadata is not None:
            notebook.metadata = dict(metadata)
        return notebook

    def reindex(self, uri: str) -> None:
        key = uri_key(uri)
        notebook = self._notebooks.get(key)
        if notebook is None:
            return
        self._drop_cell_index(key)
        for cell in notebook.cells:
            self._cell_owner[uri_key(cell.document)] = key

    def notebook_for_cell(self, cell_uri: str) -> NotebookDocument | None:
        owner = self._cell_owner.get(uri_key(cell_uri))
        if owner is None:
            return None
        return self._notebooks.get(owner)

    def close(self, uri: str) -> NotebookDocument | None:
        key = uri_key(uri)
        notebook = self._notebooks.pop(key, None)
        if notebook is not None:
            self._drop_cell_index(key)
        return notebook

    def clear(self) -> None:
        self._notebooks.clear()
        self._cell_owner.clear()

    def _drop_cell_index(self, notebook_key: str) -> None:
        for cell_key in [k for k, owner in self._cell_owner.items() if owner == notebook_key]:
            del self._cell_owner[cell_key]
