from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest

from cellchain.config import (
    NotebookSettings,
    merge_payload,
    resolve_log_level,
)
from cellchain.exceptions import ConfigError


def _write_config(tmp_path: Path, body: str) -> Path:
    path = tmp_path / "cellchain.toml"
    path.write_text(textwrap.dedent(body).strip() + "\n")
    return path


def test_settings_read_toml_sections(tmp_path: Path) -> None:
    _write_config(
        tmp_path,
        """
        [notebook]
        cell_language = "ipython"
        notebook_type = "jupyter-notebook"
        report_unmatched_cell_data = "off"
        rechain_on_open = 1

        [workspace]
        default_workspace = false

        [logging]
        level = "debug"
        """,
    )
    settings = NotebookSettings.load(root=tmp_path)
    assert settings.cell_language == "ipython"
    assert settings.notebook_type == "jupyter-notebook"
    assert settings.report_unmatched_cell_data is False
    assert settings.rechain_on_open is True
    assert settings.default_workspace is False
    assert settings.log_level == "DEBUG"


def test_missing_or_malformed_config_uses_defaults(tmp_path: Path) -> None:
    assert NotebookSettings.load(root=tmp_path) == NotebookSettings()
    broken = _write_config(tmp_path, "[notebook\ncell_language = ")
    assert NotebookSettings.load(config_path=broken) == NotebookSettings()


def test_wrong_section_types_are_ignored(tmp_path: Path) -> None:
    path = _write_config(tmp_path, 'notebook = "python"\n[workspace]\ndefault_workspace = []')
    settings = NotebookSettings.load(config_path=path)
    assert settings.cell_language == "python"
    assert settings.default_workspace is True


def test_overrides_win_over_file_values(tmp_path: Path) -> None:
    path = _write_config(
        tmp_path,
        """
        [notebook]
        cell_language = "ipython"

        [logging]
        level = "warning"
        """,
    )
    settings = NotebookSettings.load(
        config_path=path,
        overrides={
            "notebook": {"cell_language": "python3", "notebook_type": None},
            "logging": {"level": "debug"},
        },
    )
    assert settings.cell_language == "python3"
    assert settings.notebook_type == "*"
    assert settings.log_level == "DEBUG"


def test_unset_overrides_keep_file_values(tmp_path: Path) -> None:
    path = _write_config(tmp_path, '[logging]\nlevel = "warning"')
    settings = NotebookSettings.load(config_path=path, overrides={"logging": {"level": None}})
    assert settings.log_level == "WARNING"


def test_merge_payload_prefers_explicit_values() -> None:
    merged = merge_payload({"a": None, "b": 2}, {"a": 1, "b": 1, "c": 3})
    assert merged == {"a": 1, "b": 2, "c": 3}


def test_resolve_log_level() -> None:
    assert resolve_log_level("warning") == logging.WARNING
    with pytest.raises(ConfigError):
        resolve_log_level("chatty")
