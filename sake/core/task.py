# sake/core/task.py
from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from functools import total_ordering
from typing import Any

from sake.core.errors import DefinitionSyntaxError
from sake.core.lexer import verbatim_lines
from sake.core.logger import LoggerProxy

log = LoggerProxy(__name__)

BodyRenderer = Callable[[Any], str]

_BARE_SYMBOL = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*[?!]?$")


def quote(text: str) -> str:
    """Single-quote *text* the way the task file expects it."""
    escaped = text.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


def symbol(name: str) -> str:
    if _BARE_SYMBOL.match(name):
        return f":{name}"
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f':"{escaped}"'


def reindent(text: str, indent: str = "", hanging: bool = False) -> str:
    """
    Remove the common leading whitespace of the code lines in *text* and
    prefix each of them with *indent*.

    Lines that begin inside a literal (see :func:`verbatim_lines`) are left
    exactly as they are: a plain ``<<EOS`` terminator has to stay in column
    0 and the indentation of a ``<<-`` body is part of its value. With
    *hanging* the first line is the rest of an opener line (``do |t| foo``)
    and is stripped instead of measured. Text that does not tokenize is
    returned unchanged.
    """
    try:
        verbatim = verbatim_lines(text)
    except DefinitionSyntaxError as exc:
        log.debug("Keeping body layout as written: %s", exc)
        return text

    lines = text.split("\n")
    first = 2 if hanging else 1
    margin = min(
        (
            len(line) - len(line.lstrip())
            for number, line in enumerate(lines, 1)
            if number >= first and number not in verbatim and line.strip()
        ),
        default=0,
    )

    out: list[str] = []
    for number, line in enumerate(lines, 1):
        if number in verbatim:
            out.append(line)
        elif not line.strip():
            out.append("")
        elif number < first:
            out.append(indent + line.strip())
        else:
            out.append(indent + line[margin:])
    return "\n".join(out)


def source_block(body: Any) -> str:
    """
    Default body renderer: wrap the captured body text in a ``do``/``end`` block.

    Callers only ever keep the lines between the wrapper lines, so the
    wrapper itself is never written to a task file.
    """
    if body is None:
        return "do\nend"
    if not isinstance(body, str):
        raise TypeError(f"cannot render a task body of type {type(body).__name__}")
    text = body.strip("\n")
    if not text.strip():
        return "do\nend"
    return "do\n" + reindent(text, "  ").strip("\n") + "\nend"


@total_ordering
@dataclass(frozen=True, eq=False)
class Task:
    """One declared task: a name plus everything needed to write it back out."""

    name: str
    parameters: tuple[str, ...] = ()
    dependencies: tuple[str, ...] = ()
    comment: str | None = None
    body: Any = None
    body_renderer: BodyRenderer = field(default=source_block, repr=False)

    def __post_init__(self) -> None:
        # Accept any sequence from callers but store tuples so the record stays immutable.
        object.__setattr__(self, "parameters", _as_names(self.parameters))
        object.__setattr__(self, "dependencies", _as_names(self.dependencies))

    @property
    def hidden(self) -> bool:
        return not self.comment

    def render_body(self) -> str:
        """Body text with the renderer's opening and closing wrapper lines removed."""
        try:
            wrapped = self.body_renderer(self.body)
        except Exception as exc:
            log.warning("Could not render the body of task %s (%s); writing it empty.", self.name, exc)
            return ""
        return "\n".join(wrapped.split("\n")[1:-1])

    def render(self) -> str:
        lines: list[str] = []
        if self.comment is not None:
            lines.append(f"desc {quote(self.comment)}")

        header = f"task {quote(self.name)}"
        if self.parameters:
            header += ", " + ", ".join(symbol(p) for p in self.parameters)
        if self.dependencies:
            deps = ", ".join(quote(d) for d in self.dependencies)
            header += f", :needs => [ {deps} ]"
        header += " do |t, args|" if self.parameters else " do"
        lines.append(header)

        interior = self.render_body()
        if interior.strip():
            lines.append(interior)
        lines.append("end")
        return "\n".join(lines) + "\n"

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "comment": self.comment,
            "parameters": list(self.parameters),
            "dependencies": list(self.dependencies),
            "body": self.render_body(),
        }

    def __eq__(self, other: object) -> bool:
        if isinstance(other, (Task, str)):
            return self.name == str(other)
        return NotImplemented

    def __lt__(self, other: object) -> bool:
        if isinstance(other, (Task, str)):
            return self.name < str(other)
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.name)

    def __str__(self) -> str:
        return self.name


def _as_names(values: Sequence[Any] | str | None) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        return (values,)
    return tuple(str(v) for v in values)
