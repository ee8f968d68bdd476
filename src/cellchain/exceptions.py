"""Exception taxonomy for notebook synchronization."""

from __future__ import annotations


class CellchainError(RuntimeError):
    pass


class ProtocolViolation(CellchainError):
    """A client notification that does not fit the current document state.

    These are reported and dropped at the engine's event surface; they never
    leave the server.
    """

    def __init__(self, message: str, *, method: str = "", uri: str = ""):
        super().__init__(message)
        self.method = method
        self.uri = uri


class UnknownNotebookError(ProtocolViolation):
    def __init__(self, uri: str, *, method: str = ""):
        super().__init__(f"notebook is not open: {uri}", method=method, uri=uri)


class ConfigError(CellchainError):
    pass
