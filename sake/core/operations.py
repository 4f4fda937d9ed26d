# sake/core/operations.py
"""
The things a user does with the store: install, uninstall, examine, list,
publish and run. Each takes the :class:`Store` it works on explicitly.

Install and uninstall report per-task progress through an
:class:`OperationResult` instead of printing, so the CLI decides how the
notices are shown.
"""

from __future__ import annotations

import json
import shlex
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import httpx
import yaml

from sake.core.collection import TaskCollection
from sake.core.command import CommandResult, run_command
from sake.core.errors import (
    PARSE_ERRORS,
    PublishFailure,
    SourceUnavailable,
    TaskAlreadyExists,
    TaskNotFound,
)
from sake.core.logger import LoggerProxy
from sake.core.parser import DEFAULT_HTTP_TIMEOUT, parse
from sake.core.result import OperationResult, Severity
from sake.core.store import Store

log = LoggerProxy(__name__)

LISTING_FORMATS = ("text", "json", "yaml")


# -- install / uninstall -----------------------------------------------------


def install(
    store: Store,
    source_tasks: TaskCollection,
    names: Sequence[str] | None = None,
    force: bool = False,
    source: str | None = None,
) -> OperationResult:
    """
    Copy tasks from a parsed source into *store* and save it once.

    Tasks already in the store are left alone unless *force* is set, in
    which case the stored copy is replaced.
    """
    result = OperationResult(name="install")
    where = source or "the source"

    if names:
        candidates = []
        for name in names:
            task = source_tasks.lookup(name)
            if task is None:
                result.note(Severity.WARNING, f"Task `{name}' not found in `{where}'")
                continue
            candidates.append(task)
    else:
        candidates = list(source_tasks)
        if not candidates:
            result.note(Severity.WARNING, f"No tasks found in `{where}'")

    installed: list[str] = []
    updated: list[str] = []
    skipped: list[str] = []

    for task in candidates:
        if store.has(task):
            if not force:
                result.note(Severity.WARNING, str(TaskAlreadyExists(task.name, str(store.path))))
                skipped.append(task.name)
                continue
            result.note(Severity.INFO, f"Updating task `{task}'")
            store.remove(task)
            store.add(task)
            updated.append(task.name)
        else:
            result.note(Severity.INFO, f"Installing task `{task}'")
            store.add(task)
            installed.append(task.name)

    store.save()

    result.changed = bool(installed or updated)
    result.details = {"installed": installed, "updated": updated, "skipped": skipped}
    return result


def uninstall(store: Store, names: Sequence[str]) -> OperationResult:
    """Remove *names* from *store*, echoing each removed task's text first."""
    result = OperationResult(name="uninstall")
    removed: list[str] = []
    missing: list[str] = []

    for name in names:
        task = store.tasks().lookup(name)
        if task is None:
            result.note(Severity.WARNING, f"Task `{name}' is not installed")
            missing.append(name)
            continue
        result.note(Severity.SOURCE, task.render())
        store.remove(task)
        result.note(Severity.INFO, f"Uninstalled task `{name}'")
        removed.append(name)

    store.save()

    result.changed = bool(removed)
    result.details = {"removed": removed, "missing": missing}
    return result


# -- examine -----------------------------------------------------------------


def examine(
    store: Store,
    task: str | None = None,
    file: str | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> str:
    """
    Text to show for ``sake examine``.

    In order: no *task* gives the whole store; a task found in *file* (or
    the store when no file is named) gives that task; a *task* that is
    itself a readable task file gives that file; anything else is
    :class:`TaskNotFound`.
    """
    if not task:
        return store.tasks().render()

    tasks = parse(file, timeout=timeout) if file else store.tasks()
    found = tasks.lookup(task)
    if found is not None:
        return found.render()

    try:
        return parse(task, timeout=timeout).render()
    except PARSE_ERRORS as exc:
        log.debug("`%s' is not a task file either: %s", task, exc)

    raise TaskNotFound(task, file)


# -- listing -----------------------------------------------------------------


def resolve_listing(
    store: Store,
    source: str | None = None,
    pattern: str | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> tuple[TaskCollection, str | None]:
    """
    Work out which tasks ``sake list`` is about and what to filter them by.

    *source* is tried as a task file first. When it cannot be read or
    parsed it is taken to be a pattern over the store instead; a file that
    exists but is broken is reported before falling back.
    """
    if source is None:
        return store.tasks().sorted(), pattern

    try:
        return parse(source, timeout=timeout), pattern
    except SourceUnavailable as exc:
        log.debug("Treating `%s' as a pattern: %s", source, exc)
    except PARSE_ERRORS as exc:
        log.warning("Could not read tasks from `%s' (%s); listing the store instead.", source, exc)

    if pattern:
        log.debug("Ignoring pattern `%s'; `%s' is used as the pattern.", pattern, source)
    return store.tasks().sorted(), source


def list_tasks(
    tasks: TaskCollection,
    pattern: str | None = None,
    include_hidden: bool = False,
) -> TaskCollection:
    return tasks.filter(pattern, include_hidden=include_hidden)


def format_listing(tasks: TaskCollection, fmt: str = "text") -> str:
    """
    Render an already-filtered listing.

    ``text`` is one ``sake <name>   # <comment>`` line per task with names
    padded to a common width; ``json`` and ``yaml`` dump each task's fields.
    """
    if fmt not in LISTING_FORMATS:
        raise ValueError(f"unknown listing format: {fmt!r}")
    if fmt == "json":
        return json.dumps([task.as_dict() for task in tasks], indent=2)
    if fmt == "yaml":
        return yaml.safe_dump([task.as_dict() for task in tasks], sort_keys=False).rstrip("\n")

    if not tasks:
        return ""
    width = max(len(task.name) for task in tasks)
    lines = []
    for task in tasks:
        line = f"sake {task.name:<{width}}"
        if task.comment:
            line += f"   # {task.comment}"
        lines.append(line.rstrip())
    return "\n".join(lines)


# -- publish -----------------------------------------------------------------


def select_tasks(store: Store, names: Sequence[str] | None = None) -> TaskCollection:
    """Named store tasks in the order given, or the whole store."""
    if not names:
        return store.tasks()
    selected = TaskCollection()
    for name in names:
        task = store.tasks().lookup(name)
        if task is None:
            raise TaskNotFound(name)
        selected.append(task)
    return selected


def publish(store: Store, names: Sequence[str] | None, paste: dict[str, Any]) -> str:
    """Upload the rendered tasks to the paste service; returns the paste URL."""
    tasks = select_tasks(store, names)
    if not tasks:
        raise PublishFailure("there are no tasks to publish")

    url = paste.get("url", "https://dpaste.com/api/v2/")
    data = {"content": tasks.render(), "syntax": paste.get("syntax", "ruby")}
    log.info("Publishing %d task(s) to %s", len(tasks), url)
    try:
        response = httpx.post(url, data=data, timeout=paste.get("timeout", 15))
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise PublishFailure(f"{url} answered HTTP {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise PublishFailure(f"could not reach {url}: {str(exc) or type(exc).__name__}") from exc

    location = response.headers.get("Location") or response.text.strip()
    if not location:
        raise PublishFailure(f"{url} did not say where the paste went")
    return location


# -- run ---------------------------------------------------------------------


def task_invocation(name: str, args: Sequence[str] | None = None) -> str:
    """``name[arg1,arg2]``, the form Rake takes task arguments in."""
    if not args:
        return name
    return f"{name}[{','.join(args)}]"


def run(
    store: Store,
    name: str,
    args: Sequence[str] | None = None,
    executor: str = "rake",
    cwd: Path | None = None,
) -> CommandResult:
    """Hand an installed task to the external executor and wait for it."""
    if not store.has(name):
        raise TaskNotFound(name)
    cmd = [*shlex.split(executor), "-f", str(store.path), task_invocation(name, args)]
    return run_command(cmd, cwd=str(cwd) if cwd else None)
