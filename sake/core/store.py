# sake/core/store.py
"""
The user's personal task file.

A :class:`Store` wraps one file on disk. Its tasks are parsed the first
time they are asked for and kept in memory until :meth:`Store.close`;
:meth:`Store.save` writes the in-memory tasks back with an atomic replace.
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path
from typing import Any

from sake.core.collection import TaskCollection
from sake.core.errors import HomeResolutionFailure
from sake.core.io import atomic_write_text, ensure_file
from sake.core.logger import LoggerProxy
from sake.core.parser import parse
from sake.core.task import Task

log = LoggerProxy(__name__)

STORE_ENV_VAR = "SAKE_STORE"


def default_store_path() -> Path:
    """``~/.sake`` on POSIX, ``%HOMEDRIVE%%HOMEPATH%\\Sakefile`` on Windows."""
    if sys.platform.startswith("win"):
        drive = os.environ.get("HOMEDRIVE")
        home = os.environ.get("HOMEPATH")
        if not drive or not home:
            raise HomeResolutionFailure("HOMEDRIVE and HOMEPATH must be set to locate the Sakefile")
        return Path(drive + home) / "Sakefile"
    try:
        return Path.home() / ".sake"
    except (KeyError, RuntimeError) as exc:
        raise HomeResolutionFailure(f"cannot determine the home directory: {exc}") from exc


def resolve_store_path(path: Path | str | None = None, config: dict[str, Any] | None = None) -> Path:
    """First of: *path*, ``$SAKE_STORE``, the config's ``store_path``, the platform default."""
    candidate = path or os.environ.get(STORE_ENV_VAR) or (config or {}).get("store_path")
    if candidate:
        return Path(candidate).expanduser()
    return default_store_path()


class Store:
    """
    Persistent collection of installed tasks.

    Only the operations below are offered; callers that need the whole
    collection go through :meth:`tasks`.
    """

    def __init__(self, path: Path | str | None = None, config: dict[str, Any] | None = None):
        self._requested = path
        self._config = config or {}
        self._path: Path | None = None
        self._tasks: TaskCollection | None = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        if self._path is None:
            self._path = resolve_store_path(self._requested, self._config)
        return self._path

    def open(self) -> Store:
        """Create the file if needed and load it; safe to call more than once."""
        self.tasks()
        return self

    def close(self) -> None:
        with self._lock:
            self._tasks = None

    def __enter__(self) -> Store:
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def tasks(self) -> TaskCollection:
        if self._tasks is not None:
            return self._tasks
        with self._lock:
            if self._tasks is None:
                ensure_file(self.path)
                self._tasks = parse(self.path, strict=False)
                log.debug("Loaded %d task(s) from store %s", len(self._tasks), self.path)
            return self._tasks

    def has(self, task: Task | str) -> bool:
        return self.tasks().contains(task)

    def add(self, task: Task) -> None:
        self.tasks().append(task)

    def remove(self, task: Task | str) -> int:
        return self.tasks().remove_by_name(str(task))

    def save(self) -> None:
        tasks = self.tasks()
        atomic_write_text(self.path, tasks.render())
        log.debug("Wrote %d task(s) to %s", len(tasks), self.path)

    def __repr__(self) -> str:
        return f"Store({str(self._path or self._requested or '<default>')!r})"
