#!/usr/bin/env python3
"""
sake - a personal task registry
===============================

CLI entry point that wires up:
* Logging & configuration
* The task store
* install / uninstall / examine / list / publish / serve / run
"""

from __future__ import annotations

# ── Standard library ────────────────────────────────────────────────────────
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

# ── Third-party ─────────────────────────────────────────────────────────────
import typer
import uvicorn

# ── Local imports ───────────────────────────────────────────────────────────
from sake import __version__
from sake.api.main import create_app
from sake.core import config as config_loader
from sake.core import operations
from sake.core.command import spawn_detached
from sake.core.errors import SakeError
from sake.core.logger import LoggerProxy, setup_logging
from sake.core.parser import parse
from sake.core.result import OperationResult, Severity
from sake.core.store import Store

DEFAULT_CONFIG_PATH = config_loader.DEFAULT_CONFIG_PATH

log = LoggerProxy(__name__)


class ListingFormat(str, Enum):
    text = "text"
    json = "json"
    yaml = "yaml"


class CliState:
    """What the global options resolve to; the store is only opened on first use."""

    def __init__(self, config: dict[str, Any], config_file: Path, store_path: Path | None = None):
        self.config = config
        self.config_file = config_file
        self.store_path = store_path
        self._store: Store | None = None

    @property
    def store(self) -> Store:
        if self._store is None:
            self._store = Store(self.store_path, self.config)
        return self._store

    @property
    def http_timeout(self) -> float:
        return float(self.config.get("http", {}).get("timeout", 10))


# ── Typer CLI app ───────────────────────────────────────────────────────────
app = typer.Typer(
    help="sake - install Rake tasks once, run them from anywhere.",
    add_completion=False,
)


@contextmanager
def _fatal_errors() -> Iterator[None]:
    """Turn a SakeError into one ``ERROR:`` line on stderr and exit status 1."""
    try:
        yield
    except SakeError as exc:
        log.debug("Command failed", exc_info=True)
        typer.echo(f"ERROR: {exc}", err=True)
        raise typer.Exit(code=1) from None


def _emit(result: OperationResult) -> None:
    for sev, msg in result.messages:
        log.debug("%s: %s", result.name, msg.rstrip("\n"))
        if sev is Severity.SOURCE:
            typer.echo(msg.rstrip("\n"))
        elif sev is not Severity.DEBUG:
            typer.echo(f"{sev.prefix()}{msg}")


def _show_listing(
    state: CliState,
    source: str | None,
    pattern: str | None,
    show_all: bool,
    fmt: ListingFormat,
) -> None:
    with _fatal_errors():
        tasks, pattern = operations.resolve_listing(
            state.store, source, pattern, timeout=state.http_timeout
        )
        text = operations.format_listing(
            operations.list_tasks(tasks, pattern, include_hidden=show_all), fmt.value
        )
    if text:
        typer.echo(text)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    store: Annotated[
        Path | None,
        typer.Option(
            "--store",
            help="Task store file (default: ~/.sake).",
            envvar="SAKE_STORE",
        ),
    ] = None,
    config_file: Annotated[
        Path,
        typer.Option(
            "--config-file",
            help="Path to JSON configuration file.",
            envvar="SAKE_CONFIG_FILE",
        ),
    ] = DEFAULT_CONFIG_PATH,
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Enable verbose (DEBUG) output.")
    ] = False,
) -> None:
    """
    Keep Rake tasks in one personal store and share them.

    Without a command, lists the installed tasks.
    """
    config = config_loader.load_config(config_file)
    setup_logging(config, verbose=verbose)
    ctx.obj = CliState(config, config_file, store)

    if ctx.invoked_subcommand is None:
        _show_listing(ctx.obj, None, None, False, ListingFormat.text)


# ── CLI commands ────────────────────────────────────────────────────────────
@app.command(name="list")
def list_command(
    ctx: typer.Context,
    source: Annotated[
        str | None,
        typer.Argument(help="Task file, URL or '-'. Anything unreadable is used as a pattern."),
    ] = None,
    pattern: Annotated[
        str | None, typer.Argument(help="Only tasks whose name or comment contains this.")
    ] = None,
    show_all: Annotated[
        bool, typer.Option("--all", "-a", help="Include tasks without a description.")
    ] = False,
    fmt: Annotated[
        ListingFormat, typer.Option("--format", "-f", help="Output format.")
    ] = ListingFormat.text,
) -> None:
    """
    List installed tasks, or the tasks in a task file.
    """
    _show_listing(ctx.obj, source, pattern, show_all, fmt)


@app.command()
def install(
    ctx: typer.Context,
    source: Annotated[str, typer.Argument(help="Task file, URL or '-' for stdin.")],
    tasks: Annotated[
        list[str] | None, typer.Argument(help="Install only these tasks.")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Replace tasks that are already installed.")
    ] = False,
) -> None:
    """
    Install all tasks from a task file, or just the named ones.
    """
    state: CliState = ctx.obj
    with _fatal_errors():
        source_tasks = parse(source, timeout=state.http_timeout)
        result = operations.install(state.store, source_tasks, tasks, force=force, source=source)
    _emit(result)


@app.command()
def uninstall(
    ctx: typer.Context,
    tasks: Annotated[list[str], typer.Argument(help="Tasks to remove.")],
) -> None:
    """
    Remove tasks from the store, printing each one first.
    """
    state: CliState = ctx.obj
    with _fatal_errors():
        result = operations.uninstall(state.store, tasks)
    _emit(result)


@app.command()
def examine(
    ctx: typer.Context,
    first: Annotated[str | None, typer.Argument(metavar="[FILE]", help="Task file to look in.")] = None,
    second: Annotated[str | None, typer.Argument(metavar="[TASK]", help="Task to show.")] = None,
) -> None:
    """
    Print a task's source.

    With one argument the task is looked up in the store; with two, in FILE.
    With none, the whole store is printed.
    """
    state: CliState = ctx.obj
    task, file = (second, first) if second is not None else (first, None)
    with _fatal_errors():
        text = operations.examine(state.store, task, file, timeout=state.http_timeout)
    if text.strip():
        typer.echo(text.rstrip("\n"))


@app.command()
def publish(
    ctx: typer.Context,
    tasks: Annotated[
        list[str] | None, typer.Argument(help="Tasks to publish (default: all).")
    ] = None,
) -> None:
    """
    Upload tasks to the paste service and print the link.
    """
    state: CliState = ctx.obj
    with _fatal_errors():
        url = operations.publish(state.store, tasks, state.config.get("paste", {}))
    typer.echo(url)


@app.command()
def serve(
    ctx: typer.Context,
    host: Annotated[str | None, typer.Option(help="Interface to bind.")] = None,
    port: Annotated[int | None, typer.Option("--port", "-p", help="Port to listen on.")] = None,
    daemon: Annotated[
        bool, typer.Option("--daemon", "-d", help="Detach and keep serving in the background.")
    ] = False,
) -> None:
    """
    Serve the store over HTTP so others can `sake install` from it.
    """
    state: CliState = ctx.obj
    server_cfg = state.config.get("server", {})
    host = host or server_cfg.get("host", "0.0.0.0")
    port = port or server_cfg.get("port", 4567)

    with _fatal_errors():
        store_path = state.store.path
        state.store.open()

    if daemon:
        cmd = [
            sys.executable,
            "-m",
            "sake.main",
            "--store",
            str(store_path),
            "--config-file",
            str(state.config_file),
            "serve",
            "--host",
            host,
            "--port",
            str(port),
        ]
        result = spawn_detached(cmd, Path(server_cfg.get("daemon_log", "~/.local/state/sake/server.log")))
        if not result.success:
            typer.echo(f"ERROR: {result.stderr}", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"=> Serving {store_path} on http://{host}:{port}/ (pid {result.pid})")
        return

    typer.echo(f"=> Serving {store_path} on http://{host}:{port}/")
    uvicorn.run(create_app(state.store), host=host, port=port)


@app.command()
def run(
    ctx: typer.Context,
    task: Annotated[str, typer.Argument(help="Installed task to run.")],
    args: Annotated[list[str] | None, typer.Argument(help="Task arguments.")] = None,
) -> None:
    """
    Run an installed task with the configured executor (rake by default).
    """
    state: CliState = ctx.obj
    executor = state.config.get("executor", {}).get("command", "rake")
    with _fatal_errors():
        result = operations.run(state.store, task, args, executor=executor)
    if result.returncode == 127 and result.stderr:
        typer.echo(f"ERROR: {result.stderr}", err=True)
    raise typer.Exit(code=result.returncode)


@app.command(name="generate-config")
def generate_config_command(
    ctx: typer.Context,
    force: Annotated[bool, typer.Option("--force", help="Overwrite existing config file.")] = False,
) -> None:
    """
    Generate a default config file at ~/.config/sake/config.json.
    """
    cfg_path: Path = ctx.obj.config_file
    log.info("Generating default config at %s", cfg_path)
    if cfg_path.exists() and not force:
        typer.echo(f"ERROR: {cfg_path} already exists - use --force to overwrite.", err=True)
        raise typer.Exit(code=1)

    if config_loader.generate_default_config(cfg_path):
        typer.echo(f"Default config written to {cfg_path}")
    else:
        typer.echo("ERROR: Failed to create default config", err=True)
        raise typer.Exit(code=1)


@app.command()
def version() -> None:
    """
    Print the sake version.
    """
    typer.echo(f"sake, version {__version__}")


# ── Main guard ──────────────────────────────────────────────────────────────
if __name__ == "__main__":
    app()
