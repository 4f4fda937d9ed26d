# sake/core/collection.py
from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import overload

from sake.core.task import Task


class TaskCollection:
    """
    Ordered list of tasks addressable by name.

    Names are not deduplicated here; several tasks may share a name and
    lookups return the first one. Keeping the store free of duplicates is
    the install operation's job.
    """

    def __init__(self, tasks: Iterable[Task] | None = None):
        self._tasks: list[Task] = list(tasks or [])

    @overload
    def lookup(self, key: str) -> Task | None: ...

    @overload
    def lookup(self, key: int) -> Task | None: ...

    def lookup(self, key: str | int) -> Task | None:
        if isinstance(key, str):
            return next((task for task in self._tasks if task.name == key), None)
        try:
            return self._tasks[key]
        except IndexError:
            return None

    __getitem__ = lookup

    def append(self, task: Task) -> None:
        self._tasks.append(task)

    def merge(self, other: TaskCollection | Iterable[Task]) -> None:
        for task in list(other):
            self.append(task)

    def remove_by_name(self, name: str) -> int:
        """Drop every task called *name*; returns how many were removed."""
        before = len(self._tasks)
        self._tasks = [task for task in self._tasks if task.name != name]
        return before - len(self._tasks)

    def contains(self, task: Task | str) -> bool:
        wanted = str(task)
        return any(t.name == wanted for t in self._tasks)

    __contains__ = contains

    def names(self) -> list[str]:
        return [task.name for task in self._tasks]

    def sorted(self) -> TaskCollection:
        return TaskCollection(sorted(self._tasks))

    def filter(self, pattern: str | None = None, include_hidden: bool = False) -> TaskCollection:
        """Tasks whose name or comment contains *pattern*; comment-less ones only on request."""
        selected = []
        for task in self._tasks:
            if task.hidden and not include_hidden:
                continue
            if pattern and pattern not in task.name and pattern not in (task.comment or ""):
                continue
            selected.append(task)
        return TaskCollection(selected)

    def render(self) -> str:
        return "\n".join(task.render() for task in self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(self._tasks)

    def __len__(self) -> int:
        return len(self._tasks)

    def __bool__(self) -> bool:
        return bool(self._tasks)

    def __repr__(self) -> str:
        return f"TaskCollection({self.names()!r})"
