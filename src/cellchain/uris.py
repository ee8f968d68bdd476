from __future__ import annotations

from pathlib import Path
from urllib.parse import unquote, urlparse

NOTEBOOK_CELL_SCHEME = "vscode-notebook-cell"
FILE_SCHEME = "file"


def uri_scheme(uri: str) -> str:
    return urlparse(uri).scheme


def is_cell_uri(uri: str) -> bool:
    return uri_scheme(uri) == NOTEBOOK_CELL_SCHEME


def uri_to_path(uri: str) -> Path:
    """Resolve a document URI to the file path used for workspace ownership.

    Cell URIs share the path of the notebook file they belong to; only the
    scheme and fragment differ, so the fragment is dropped and the path kept.
    """
    parsed = urlparse(uri)
    if parsed.scheme in (FILE_SCHEME, NOTEBOOK_CELL_SCHEME):
        return Path(unquote(parsed.path))
    return Path(uri)


def uri_key(uri: str) -> str:
    """Normalized map key for a document URI."""
    parsed = urlparse(uri)
    if parsed.scheme == FILE_SCHEME:
        return Path(unquote(parsed.path)).as_uri()
    return uri
