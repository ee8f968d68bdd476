from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel


class NotebookStateRequest(BaseModel):
    notebook_uri: str


class CellStateDTO(BaseModel):
    document: str
    kind: str
    chained_predecessor: Optional[str] = None
    language_id: Optional[str] = None
    version: Optional[int] = None
    is_open: bool = False


class NotebookStateResponse(BaseModel):
    notebook_uri: str
    notebook_type: str = ""
    version: int = 0
    metadata: Dict[str, Any] = {}
    cells: List[CellStateDTO] = []
    chainable: bool = True
    errors: List[str] = []


class ReplayEventDTO(BaseModel):
    method: str
    params: Dict[str, Any]


class ReplayResponse(BaseModel):
    events: int = 0
    notebooks: List[NotebookStateResponse] = []
    errors: List[str] = []
