from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from cellchain.engine import NotebookSyncEngine
from tests.notebook_helpers import RecordingWorkspace, recording_registry


@pytest.fixture
def workspace() -> RecordingWorkspace:
    return RecordingWorkspace(name="ws", root=Path("/ws"))


@pytest.fixture
def engine(workspace: RecordingWorkspace) -> NotebookSyncEngine:
    registry, _ = recording_registry(workspace)
    return NotebookSyncEngine(workspaces=registry)


@pytest.fixture
def cellchain_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    caplog.set_level(logging.DEBUG, logger="cellchain")
    return caplog
