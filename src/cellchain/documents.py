"""Virtual document registry for open files and notebook cell documents."""

from __future__ import annotations

import logging
from dataclasses import InitVar, dataclass, field
from enum import Enum
from typing import Iterator, Sequence

from lsprotocol.types import TextDocumentContentChangeEvent
from pygls.workspace import TextDocument

from cellchain.uris import uri_key

logger = logging.getLogger("cellchain.documents")


class DocumentMode(str, Enum):
    """How a workspace should interpret a document's text."""

    NONE = "none"
    CELL_DOCS = "cell_docs"


@dataclass
class VirtualTextDocument:
    uri: str
    language_id: str
    mode: DocumentMode = DocumentMode.NONE
    chained_predecessor: str | None = None
    initial_text: InitVar[str] = ""
    initial_version: InitVar[int] = 0
    buffer: TextDocument = field(init=False, repr=False, compare=False)

    def __post_init__(self, initial_text: str, initial_version: int) -> None:
        self.buffer = TextDocument(
            self.uri,
            source=initial_text,
            version=initial_version,
            language_id=self.language_id,
        )

    @property
    def text(self) -> str:
        return self.buffer.source

    @property
    def version(self) -> int:
        return self.buffer.version if self.buffer.version is not None else 0

    @property
    def is_cell(self) -> bool:
        return self.mode is DocumentMode.CELL_DOCS

    def replace(self, text: str, version: int) -> None:
        self.buffer = TextDocument(
            self.uri,
            source=text,
            version=version,
            language_id=self.language_id,
        )

    def apply_changes(
        self, changes: Sequence[TextDocumentContentChangeEvent], version: int
    ) -> None:
        for change in changes:
            self.buffer.apply_change(change)
        self.buffer.version = version


class DocumentRegistry:
    """URI-keyed index of every open virtual document.

    The registry stores text but never interprets it. Cell documents carry the
    URI of their chained predecessor so a reopened cell can be republished
    with the same chain position.
    """

    def __init__(self) -> None:
        self._documents: dict[str, VirtualTextDocument] = {}

    def __contains__(self, uri: object) -> bool:
        return isinstance(uri, str) and uri_key(uri) in self._documents

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self) -> Iterator[VirtualTextDocument]:
        return iter(list(self._documents.values()))

    def open(
        self,
        uri: str,
        language_id: str,
        version: int,
        text: str,
        *,
        mode: DocumentMode = DocumentMode.NONE,
        chained_predecessor: str | None = None,
    ) -> VirtualTextDocument:
        key = uri_key(uri)
        existing = self._documents.get(key)
        if existing is not None:
            logger.error("Received redundant open text document command for %s", uri)
            existing.replace(text, version)
            existing.mode = mode
            existing.chained_predecessor = chained_predecessor
            return existing
        document = VirtualTextDocument(
            uri=uri,
            language_id=language_id,
            mode=mode,
            chained_predecessor=chained_predecessor,
            initial_text=text,
            initial_version=version,
        )
        self._documents[key] = document
        return document

    def update(
        self,
        uri: str,
        changes: Sequence[TextDocumentContentChangeEvent],
        version: int,
    ) -> VirtualTextDocument | None:
        document = self._documents.get(uri_key(uri))
        if document is None:
            logger.error("Received change text document command for closed file %s", uri)
            return None
        document.apply_changes(changes, version)
        return document

    def set_chained_predecessor(self, uri: str, predecessor: str | None) -> None:
        document = self._documents.get(uri_key(uri))
        if document is not None:
            document.chained_predecessor = predecessor

    def close(self, uri: str) -> VirtualTextDocument | None:
        return self._documents.pop(uri_key(uri), None)

    def get(self, uri: str) -> VirtualTextDocument | None:
        return self._documents.get(uri_key(uri))

    def clear(self) -> None:
        self._documents.clear()
