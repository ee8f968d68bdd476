from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import typer
from lsprotocol.converters import get_converter
from lsprotocol.types import (
    NOTEBOOK_DOCUMENT_DID_CHANGE,
    NOTEBOOK_DOCUMENT_DID_CLOSE,
    NOTEBOOK_DOCUMENT_DID_OPEN,
    NOTEBOOK_DOCUMENT_DID_SAVE,
    TEXT_DOCUMENT_DID_CHANGE,
    TEXT_DOCUMENT_DID_CLOSE,
    TEXT_DOCUMENT_DID_OPEN,
    DidChangeNotebookDocumentParams,
    DidChangeTextDocumentParams,
    DidCloseNotebookDocumentParams,
    DidCloseTextDocumentParams,
    DidOpenNotebookDocumentParams,
    DidOpenTextDocumentParams,
    DidSaveNotebookDocumentParams,
)
from pydantic import ValidationError

from cellchain.config import NotebookSettings, resolve_log_level
from cellchain.engine import NotebookSyncEngine
from cellchain.exceptions import ConfigError
from cellchain.schema import ReplayEventDTO, ReplayResponse

app = typer.Typer(add_completion=False)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

ReplayHandler = Callable[[NotebookSyncEngine, object], Awaitable[None] | None]

_REPLAY_METHODS: dict[str, tuple[type, ReplayHandler]] = {
    NOTEBOOK_DOCUMENT_DID_OPEN: (
        DidOpenNotebookDocumentParams,
        NotebookSyncEngine.did_open_notebook,
    ),
    NOTEBOOK_DOCUMENT_DID_CHANGE: (
        DidChangeNotebookDocumentParams,
        NotebookSyncEngine.did_change_notebook,
    ),
    NOTEBOOK_DOCUMENT_DID_SAVE: (
        DidSaveNotebookDocumentParams,
        NotebookSyncEngine.did_save_notebook,
    ),
    NOTEBOOK_DOCUMENT_DID_CLOSE: (
        DidCloseNotebookDocumentParams,
        NotebookSyncEngine.did_close_notebook,
    ),
    TEXT_DOCUMENT_DID_OPEN: (
        DidOpenTextDocumentParams,
        NotebookSyncEngine.did_open_text_document,
    ),
    TEXT_DOCUMENT_DID_CHANGE: (
        DidChangeTextDocumentParams,
        NotebookSyncEngine.did_change_text_document,
    ),
    TEXT_DOCUMENT_DID_CLOSE: (
        DidCloseTextDocumentParams,
        NotebookSyncEngine.did_close_text_document,
    ),
}


def _configure_logging(level: str) -> None:
    try:
        numeric = resolve_log_level(level)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc
    # stdout carries the LSP stream.
    logging.basicConfig(stream=sys.stderr, level=numeric, format=_LOG_FORMAT, force=True)


def _load_settings(
    root: Path,
    config: Optional[Path],
    log_level: Optional[str],
) -> NotebookSettings:
    return NotebookSettings.load(
        root=root,
        config_path=config,
        overrides={"logging": {"level": log_level}},
    )


def _read_events(path: Path) -> list[ReplayEventDTO]:
    if str(path) == "-":
        raw = sys.stdin.read()
    else:
        raw = path.read_text(encoding="utf-8")
    events: list[ReplayEventDTO] = []
    for lineno, line in enumerate(raw.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            events.append(ReplayEventDTO.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise typer.BadParameter(f"{path}:{lineno}: invalid event: {exc}") from exc
    return events


async def replay_events(
    engine: NotebookSyncEngine, events: list[ReplayEventDTO]
) -> ReplayResponse:
    converter = get_converter()
    errors: list[str] = []
    for index, event in enumerate(events):
        entry = _REPLAY_METHODS.get(event.method)
        if entry is None:
            errors.append(f"event {index}: unsupported method {event.method}")
            continue
        params_type, handler = entry
        try:
            params = converter.structure(event.params, params_type)
        except Exception as exc:  # cattrs: ClassValidationError, KeyError, TypeError
            errors.append(f"event {index}: invalid {event.method} params: {exc}")
            continue
        result = handler(engine, params)
        if result is not None:
            await result
    return ReplayResponse(
        events=len(events),
        notebooks=[engine.notebook_state(notebook.uri) for notebook in engine.store],
        errors=errors,
    )


@app.command("serve")
def serve(
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    tcp: bool = typer.Option(False, "--tcp", help="Listen on TCP instead of stdio."),
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(2087, "--port"),
) -> None:
    """Run the notebook synchronization language server."""
    from cellchain.server import create_server, start

    settings = _load_settings(root, config, log_level)
    _configure_logging(settings.log_level)
    ls = create_server(settings)
    if tcp:
        start(lambda: ls.start_tcp(host, port))
    else:
        start(ls.start_io)


@app.command("replay")
def replay(
    events_path: Path = typer.Argument(..., help="JSONL file of notifications, or '-'."),
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
    output: Optional[Path] = typer.Option(None, "--output"),
) -> None:
    """Replay recorded notebook notifications and print the resulting state."""
    settings = _load_settings(root, config, log_level)
    _configure_logging(settings.log_level)
    events = _read_events(events_path)
    response = asyncio.run(replay_events(NotebookSyncEngine(settings), events))
    rendered = json.dumps(response.model_dump(), indent=2, sort_keys=True)
    if output is None:
        typer.echo(rendered)
    else:
        output.write_text(rendered + "\n", encoding="utf-8")
    if response.errors:
        for error in response.errors:
            typer.secho(error, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command("show-config")
def show_config(
    root: Path = typer.Option(Path("."), "--root"),
    config: Optional[Path] = typer.Option(None, "--config"),
) -> None:
    """Print the effective settings as JSON."""
    settings = _load_settings(root, config, None)
    typer.echo(json.dumps(dataclasses.asdict(settings), indent=2, sort_keys=True))


def main() -> None:  # pragma: no cover
    app()
