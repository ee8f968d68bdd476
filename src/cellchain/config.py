from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from pathlib import Path
from typing import TypeAlias
import tomllib

from cellchain.exceptions import ConfigError

DEFAULT_CONFIG_NAME = "cellchain.toml"
SECTIONS = ("notebook", "workspace", "logging")

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def _section(data: TomlTable, name: str) -> TomlTable:
    section = data.get(name, {})
    return section if isinstance(section, dict) else {}


def _as_bool(value: TomlValue, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return default


def _as_str(value: TomlValue, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def resolve_log_level(value: str) -> int:
    level = logging.getLevelName(value.strip().upper())
    if not isinstance(level, int):
        raise ConfigError(f"unknown log level: {value}")
    return level


def merge_payload(payload: TomlTable, defaults: TomlTable) -> TomlTable:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


@dataclass(frozen=True)
class NotebookSettings:
    cell_language: str = "python"
    notebook_type: str = "*"
    report_unmatched_cell_data: bool = True
    rechain_on_open: bool = False
    default_workspace: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_tables(
        cls,
        notebook: TomlTable | None = None,
        workspace: TomlTable | None = None,
        logging_section: TomlTable | None = None,
    ) -> NotebookSettings:
        notebook = notebook or {}
        workspace = workspace or {}
        logging_section = logging_section or {}
        return cls(
            cell_language=_as_str(notebook.get("cell_language"), cls.cell_language),
            notebook_type=_as_str(notebook.get("notebook_type"), cls.notebook_type),
            report_unmatched_cell_data=_as_bool(
                notebook.get("report_unmatched_cell_data"), cls.report_unmatched_cell_data
            ),
            rechain_on_open=_as_bool(notebook.get("rechain_on_open"), cls.rechain_on_open),
            default_workspace=_as_bool(
                workspace.get("default_workspace"), cls.default_workspace
            ),
            log_level=_as_str(logging_section.get("level"), cls.log_level).upper(),
        )

    @classmethod
    def load(
        cls,
        root: Path | None = None,
        config_path: Path | None = None,
        overrides: TomlTable | None = None,
    ) -> NotebookSettings:
        """Read `cellchain.toml`; `overrides` uses the same section layout."""
        data = load_config(root=root, config_path=config_path)
        overrides = overrides or {}
        notebook, workspace, logging_section = (
            merge_payload(_section(overrides, name), _section(data, name))
            for name in SECTIONS
        )
        return cls.from_tables(notebook, workspace, logging_section)
