# sake/core/parser.py
"""
Reads task files into a :class:`TaskCollection` without running them.

Only three statement forms matter: ``namespace``, ``desc``/``description``
and ``task``. A task's block is captured as source text and never
evaluated. Every other top-level statement is skipped, after checking it
does not try to touch the filesystem, spawn processes or open sockets;
such statements raise :class:`SandboxViolation`. Code inside task bodies,
``def`` bodies and the blocks of ``file``/``rule``-style declarations is
left alone because it only runs when a task runs.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

import httpx

from sake.core.collection import TaskCollection
from sake.core.errors import DefinitionSyntaxError, SandboxViolation, SourceUnavailable
from sake.core.lexer import (
    EOF,
    IDENT,
    LABEL,
    NEWLINE,
    OP,
    REGEX,
    STRING,
    SYMBOL,
    WORDS,
    XSTRING,
    Token,
    tokenize,
)
from sake.core.logger import LoggerProxy
from sake.core.task import Task, reindent

log = LoggerProxy(__name__)

DEFAULT_HTTP_TIMEOUT = 10.0

# Kernel-level calls that touch the outside world.
SIDE_EFFECT_CALLS = frozenset(
    {
        "system", "exec", "sh", "ruby", "spawn", "fork", "exit", "exit!", "abort",
        "eval", "instance_eval", "class_eval", "module_eval", "binding", "open",
        "syscall", "trap", "load", "at_exit", "rm", "rm_f", "rm_r", "rm_rf", "rmdir",
        "mkdir", "mkdir_p", "cp", "cp_r", "mv", "touch", "ln", "ln_s", "ln_sf",
        "chmod", "chmod_R", "chown", "chown_R", "install", "safe_unlink", "remove_dir",
    }
)

# Constants whose methods reach the filesystem, processes or the network, with
# the read-only methods that are still fine at load time.
SIDE_EFFECT_RECEIVERS: dict[str, frozenset[str]] = {
    "File": frozenset(
        {"join", "expand_path", "dirname", "basename", "extname", "exist?", "exists?",
         "file?", "directory?", "readable?", "absolute_path", "split", "fnmatch", "fnmatch?"}
    ),
    "Dir": frozenset({"pwd", "glob", "exist?", "exists?", "home"}),
    "FileUtils": frozenset(),
    "IO": frozenset(),
    "Process": frozenset({"pid", "clock_gettime"}),
    "Kernel": frozenset(),
    "Open3": frozenset(),
    "Socket": frozenset(),
    "TCPSocket": frozenset(),
    "UDPSocket": frozenset(),
    "Net": frozenset(),
    "URI": frozenset({"parse", "join", "escape", "encode_www_form"}),
    "ObjectSpace": frozenset(),
    "Signal": frozenset(),
}

_STATEMENT_START_OPS = frozenset(
    {";", "(", "[", "{", ",", "|", "=", "||", "&&", "||=", "&&=", "+=", "-=", "*=", "/=",
     "|=", "&=", "<<=", ">>=", "**=", "=>", "!", "?", ":", "->"}
)
_STATEMENT_START_WORDS = frozenset(
    {"then", "else", "do", "begin", "and", "or", "not", "ensure", "in", "when"}
)
_CONDITIONAL_OPENERS = frozenset({"if", "unless", "while", "until"})
_ALWAYS_OPENERS = frozenset({"def", "class", "module", "begin", "case", "for"})
# Declarations whose block Rake keeps for later instead of running it at load time.
DEFERRED_DECLARATIONS = frozenset({"task", "file", "file_create", "directory", "multitask", "rule"})


class DefinitionParser:
    """
    Recursive-descent reader over the token stream of one task file.

    ``strict=False`` turns off the side-effect scan; the store file is
    written by us and only ever holds task declarations.
    """

    def __init__(self, text: str, source: str | None = None, strict: bool = True):
        self.text = text
        self.source = source
        self.strict = strict
        self.tokens = tokenize(text, source)
        self.pos = 0
        self._namespace: list[str] = []
        self._comment: str | None = None
        self._tasks = TaskCollection()

    # -- token stream ------------------------------------------------------

    def _peek(self, offset: int = 0) -> Token:
        idx = min(self.pos + offset, len(self.tokens) - 1)
        return self.tokens[idx]

    def _prev(self) -> Token | None:
        return self.tokens[self.pos - 1] if self.pos > 0 else None

    def _next(self) -> Token:
        tok = self._peek()
        if tok.kind != EOF:
            self.pos += 1
        return tok

    def _error(self, message: str, tok: Token | None = None) -> DefinitionSyntaxError:
        line = (tok or self._peek()).line
        return DefinitionSyntaxError(message, line, self.source)

    def _skip_newlines(self) -> None:
        while self._peek().kind == NEWLINE:
            self.pos += 1

    # -- statements --------------------------------------------------------

    def parse(self) -> TaskCollection:
        self._statements(closer=None)
        return self._tasks

    def _statements(self, closer: str | None) -> None:
        while True:
            tok = self._peek()
            if tok.kind == NEWLINE or tok.is_op(";"):
                self.pos += 1
                continue
            if tok.kind == EOF:
                if closer is not None:
                    raise self._error(f"unexpected end of file, expected `{closer}'", tok)
                return
            if _is_closer(tok):
                if closer is None or tok.text != closer:
                    raise self._error(f"unexpected `{tok.text}'", tok)
                self.pos += 1
                return
            self._statement()

    def _statement(self) -> None:
        tok = self._peek()
        if tok.kind == IDENT and not self._assignment_follows():
            if tok.text == "namespace":
                return self._namespace_block()
            if tok.text in ("desc", "description"):
                return self._description()
            if tok.text == "task":
                return self._task()
        self._inert_statement()

    def _assignment_follows(self) -> bool:
        nxt = self._peek(1)
        return nxt.is_op("=", "+=", "||=", "-=", ".", "&.", "::")

    def _namespace_block(self) -> None:
        keyword = self._next()
        args = self._call_args()
        name = args[0] if args else None
        if name is not None and not isinstance(name, str):
            raise self._error("namespace name must be a string or symbol", keyword)
        opener = self._peek()
        if not (opener.is_word("do") or opener.is_op("{")):
            raise self._error("namespace needs a block", opener)
        self._open_block()
        if name:
            self._namespace.append(name)
        try:
            self._statements(closer="end" if opener.is_word("do") else "}")
        finally:
            if name:
                self._namespace.pop()

    def _description(self) -> None:
        keyword = self._next()
        args = self._call_args()
        if not args or not isinstance(args[0], str):
            raise self._error(f"`{keyword.text}' needs a string", keyword)
        self._comment = args[0]

    def _task(self) -> None:
        keyword = self._next()
        args = self._call_args()
        if not args:
            raise self._error("task needs a name", keyword)
        name, parameters, dependencies = _resolve_task_args(args)
        if not isinstance(name, str) or not name:
            raise self._error("task name must be a string or symbol", keyword)

        body = None
        opener = self._peek()
        if opener.is_word("do") or opener.is_op("{"):
            body = self._capture_block()

        qualified = ":".join([*self._namespace, name])
        self._tasks.append(
            Task(
                name=qualified,
                parameters=parameters,
                dependencies=dependencies,
                comment=self._comment,
                body=body,
            )
        )
        # a description belongs to exactly one task
        self._comment = None

    def _inert_statement(self) -> None:
        depth = 0
        prev: Token | None = self._prev()
        head = self._peek()
        loop_pending = False
        while True:
            tok = self._peek()
            if tok.kind == EOF:
                return
            if depth == 0 and (tok.kind == NEWLINE or tok.is_op(";")):
                return
            if depth == 0 and _is_closer(tok, prev):
                # closes the enclosing namespace block; leave it for _statements
                return
            if tok.kind == NEWLINE or tok.is_op(";"):
                loop_pending = False

            closer = _opens_block(tok, prev, loop_pending)
            if closer:
                self._check_sandbox(self.pos)
                self.pos += 1
                if tok.is_word("while", "until", "for"):
                    # the optional `do` of the loop header is part of the same opener
                    self._skip_loop_header()
                self._skip_block(tok, closer, scan=self.strict and not _runs_later(tok, prev, head))
                prev = self._prev()
                continue

            self._check_sandbox(self.pos)
            if tok.is_op("(", "["):
                depth += 1
            elif tok.is_op(")", "]"):
                depth = max(0, depth - 1)
            elif tok.is_word("while", "until", "for"):
                loop_pending = True
            prev = tok
            self.pos += 1

    # -- blocks ------------------------------------------------------------

    def _open_block(self) -> Token:
        """Consume `do`/`{` plus any `|block, params|`; return the opener."""
        opener = self._next()
        if self._peek().is_op("|"):
            self.pos += 1
            while not self._peek().is_op("|"):
                if self._peek().kind in (EOF, NEWLINE):
                    raise self._error("unterminated block parameter list", opener)
                self.pos += 1
            self.pos += 1
        elif self._peek().is_op("||"):
            self.pos += 1
        return opener

    def _capture_block(self) -> str:
        opener = self._open_block()
        body_start = self._prev().end  # type: ignore[union-attr]
        closer = self._skip_block(opener, "end" if opener.is_word("do") else "}", scan=False)
        return _clean_body(self.text[body_start : closer.start])

    def _skip_loop_header(self) -> None:
        while True:
            tok = self._peek()
            if tok.kind in (NEWLINE, EOF) or tok.is_op(";"):
                return
            if tok.is_word("do"):
                self.pos += 1
                return
            if tok.is_op("(", "[", "{"):
                closer = {"(": ")", "[": "]", "{": "}"}[tok.text]
                self._skip_group(tok, closer)
                continue
            self._check_sandbox(self.pos)
            self.pos += 1

    def _skip_group(self, opener: Token, closer: str) -> None:
        depth = 0
        while True:
            tok = self._next()
            if tok.kind == EOF:
                raise self._error(f"`{opener.text}' is never closed", opener)
            if tok.is_op(opener.text):
                depth += 1
            elif tok.is_op(closer):
                depth -= 1
                if depth == 0:
                    return
            elif self.strict:
                self._check_sandbox(self.pos - 1)

    def _skip_block(self, opener: Token, closer: str, scan: bool) -> Token:
        """
        Consume tokens up to the `end`/`}` matching *opener* and return it.

        The stack holds the expected closer of every open construct along
        with whether tokens inside it are scanned for side effects.
        """
        stack: list[tuple[str, bool]] = [(closer, scan)]
        prev: Token | None = opener
        head: Token | None = None
        loop_pending = False
        while True:
            tok = self._next()
            if tok.kind == EOF:
                raise self._error(f"`{opener.text}' opened on line {opener.line} is never closed", opener)
            if tok.kind == NEWLINE or tok.is_op(";"):
                loop_pending = False
                prev = tok
                head = None
                continue
            scanning = stack[-1][1]

            if _is_closer(tok, prev):
                expected, _ = stack.pop()
                if tok.text != expected:
                    raise self._error(f"unexpected `{tok.text}', expected `{expected}'", tok)
                if not stack:
                    return tok
                prev = tok
                continue

            if head is None:
                head = tok
            nested = _opens_block(tok, prev, loop_pending)
            if scanning:
                self._check_sandbox(self.pos - 1)
            if nested:
                stack.append((nested, scanning and not _runs_later(tok, prev, head)))
                head = None
                if tok.is_word("while", "until", "for"):
                    loop_pending = True
            prev = tok

    # -- call arguments ----------------------------------------------------

    def _call_args(self) -> list[Any]:
        """
        Parse the argument list after `task`, `desc` or `namespace`.

        Returns plain values: strings for strings and symbols, lists for
        arrays and ``("pair", key, value)`` tuples for hash entries.
        """
        tok = self._peek()
        if tok.is_op("(") and not tok.spaced:
            self.pos += 1
            args = self._arg_list(terminators=(")",), in_parens=True)
            self._expect_op(")")
            return args
        return self._arg_list(terminators=(), in_parens=False)

    def _arg_list(self, terminators: tuple[str, ...], in_parens: bool) -> list[Any]:
        args: list[Any] = []
        while True:
            if in_parens:
                self._skip_newlines()
            tok = self._peek()
            if tok.kind in (NEWLINE, EOF) or tok.is_op(";", *terminators) or _is_closer(tok):
                return args
            if not in_parens and (tok.is_word("do") or tok.is_op("{")):
                return args
            if in_parens and tok.is_op("{"):
                args.extend(self._hash_literal())
            else:
                args.append(self._arg_item())
            if self._peek().is_op(","):
                self.pos += 1
                self._skip_newlines()
                continue
            return args

    def _arg_item(self) -> Any:
        tok = self._peek()
        if tok.kind == LABEL:
            self.pos += 1
            self._skip_newlines()
            return ("pair", tok.value, self._value())
        key = self._value()
        if self._peek().is_op("=>"):
            self.pos += 1
            self._skip_newlines()
            return ("pair", key, self._value())
        return key

    def _hash_literal(self) -> list[Any]:
        self._expect_op("{")
        pairs: list[Any] = []
        while True:
            self._skip_newlines()
            if self._peek().is_op("}"):
                self.pos += 1
                return pairs
            item = self._arg_item()
            if not (isinstance(item, tuple) and item and item[0] == "pair"):
                raise self._error("expected `key => value' in hash")
            pairs.append(item)
            self._skip_newlines()
            if self._peek().is_op(","):
                self.pos += 1

    def _value(self) -> Any:
        tok = self._peek()
        if tok.kind == XSTRING:
            self._check_sandbox(self.pos)
            raise self._error("a command string is not a valid task argument", tok)
        if tok.is_op("("):
            self.pos += 1
            self._skip_newlines()
            inner = self._value()
            self._skip_newlines()
            self._expect_op(")")
            return inner
        if tok.kind in (STRING, SYMBOL):
            self.pos += 1
            if "#{" in tok.text and tok.text.startswith(('"', ':"')):
                log.debug("Interpolation in %s at line %d is kept literally.", tok.text, tok.line)
            return tok.value
        if tok.kind == WORDS:
            self.pos += 1
            return list(tok.value)
        if tok.is_op("["):
            return self._array()
        if tok.kind == IDENT and tok.text not in ("do", "end"):
            # bare constants / identifiers, e.g. `task :default => DEFAULT_TASKS`
            self.pos += 1
            self._check_sandbox(self.pos - 1)
            return tok.text
        if tok.kind == REGEX:
            raise self._error("a regular expression is not a valid task argument", tok)
        raise self._error(f"unexpected `{tok.text or tok.kind}' in declaration", tok)

    def _array(self) -> list[Any]:
        self._expect_op("[")
        items: list[Any] = []
        while True:
            self._skip_newlines()
            if self._peek().is_op("]"):
                self.pos += 1
                return items
            items.append(self._value())
            self._skip_newlines()
            if self._peek().is_op(","):
                self.pos += 1
            elif not self._peek().is_op("]"):
                raise self._error("expected `,' or `]' in array")

    def _expect_op(self, op: str) -> Token:
        tok = self._peek()
        if not tok.is_op(op):
            raise self._error(f"expected `{op}', found `{tok.text or tok.kind}'", tok)
        self.pos += 1
        return tok

    # -- side-effect policy -----------------------------------------------

    def _check_sandbox(self, idx: int) -> None:
        """Raise SandboxViolation if the token at *idx* starts a side-effecting call."""
        if not self.strict:
            return
        tok = self.tokens[idx]
        if tok.kind == XSTRING:
            raise SandboxViolation(tok.text.split("\n", 1)[0], tok.line, self.source)
        if tok.kind != IDENT:
            return
        prev = self.tokens[idx - 1] if idx > 0 else None
        if prev is not None and prev.is_op(".", "&.", "::"):
            return
        nxt = self.tokens[idx + 1] if idx + 1 < len(self.tokens) else None
        if tok.text in SIDE_EFFECT_CALLS:
            if nxt is not None and nxt.is_op("=", "+=", "||=", "=="):
                return
            raise SandboxViolation(tok.text, tok.line, self.source)
        if tok.text in SIDE_EFFECT_RECEIVERS and nxt is not None and nxt.is_op(".", "::", "&."):
            method = self.tokens[idx + 2] if idx + 2 < len(self.tokens) else None
            if method is None or method.text not in SIDE_EFFECT_RECEIVERS[tok.text]:
                called = method.text if method is not None else ""
                raise SandboxViolation(f"{tok.text}{nxt.text}{called}", tok.line, self.source)


def _is_closer(tok: Token, prev: Token | None = None) -> bool:
    if tok.is_op("}"):
        return True
    if tok.is_word("end"):
        return prev is None or not prev.is_op(".", "&.", "::")
    return False


def _at_statement_start(prev: Token | None) -> bool:
    if prev is None or prev.kind == NEWLINE:
        return True
    if prev.kind == OP:
        return prev.text in _STATEMENT_START_OPS
    return prev.kind == IDENT and prev.text in _STATEMENT_START_WORDS


def _runs_later(opener: Token, prev: Token | None, head: Token | None) -> bool:
    """True when the block *opener* starts is a method body or belongs to a Rake declaration."""
    if opener.is_word("def"):
        return True
    if head is None or not head.is_word(*DEFERRED_DECLARATIONS):
        return False
    if opener.is_word("do"):
        return True
    # `{` binds to the nearest call, so it is the declaration's block only after a literal argument
    return opener.is_op("{") and prev is not None and (
        prev.kind in (STRING, SYMBOL, WORDS, REGEX) or prev.is_op(")", "]")
    )


def _opens_block(tok: Token, prev: Token | None, loop_pending: bool) -> str | None:
    """The closer *tok* expects (`end` or `}`), or None if it opens nothing."""
    if tok.is_op("{"):
        return "}"
    if tok.kind != IDENT:
        return None
    if prev is not None and prev.is_op(".", "&.", "::"):
        return None
    if tok.text == "do":
        return None if loop_pending else "end"
    if tok.text in _ALWAYS_OPENERS:
        return "end"
    if tok.text in _CONDITIONAL_OPENERS and _at_statement_start(prev):
        return "end"
    return None


def _resolve_task_args(args: list[Any]) -> tuple[Any, list[str], list[str]]:
    """
    Split `task` arguments into (name, parameters, dependencies).

    Understands the Rake spellings::

        task :name => [:dep]
        task 'name', :param, :needs => ['dep']
        task :name, [:param] => :dep
        task :name, [:param], needs: [:dep]
    """
    parameters: list[str] = []
    dependencies: list[str] = []

    first, rest = args[0], args[1:]
    if _is_pair(first):
        _, name, deps = first
        dependencies.extend(_names(deps))
    else:
        name = first

    for item in rest:
        if _is_pair(item):
            _, key, value = item
            if key == "needs":
                dependencies.extend(_names(value))
            else:
                parameters.extend(_names(key))
                dependencies.extend(_names(value))
        else:
            parameters.extend(_names(item))
    return name, parameters, dependencies


def _is_pair(item: Any) -> bool:
    return isinstance(item, tuple) and len(item) == 3 and item[0] == "pair"


def _names(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        out: list[str] = []
        for item in value:
            out.extend(_names(item))
        return out
    return [str(value)]


def _clean_body(raw: str) -> str:
    return reindent(raw, hanging=True).strip("\n").rstrip()


# -- source acquisition ------------------------------------------------------


def is_url(source: str) -> bool:
    return source.startswith(("http://", "https://"))


def read_source(source: str | Path, timeout: float = DEFAULT_HTTP_TIMEOUT) -> str:
    """Text of a task file given as a path, ``-`` for stdin, or an http(s) URL."""
    source = str(source)
    if source == "-":
        try:
            return sys.stdin.read()
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceUnavailable("standard input", str(exc)) from exc
    if is_url(source):
        log.debug("Fetching task file from %s", source)
        try:
            response = httpx.get(source, timeout=timeout, follow_redirects=True)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SourceUnavailable(source, f"HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise SourceUnavailable(source, str(exc) or type(exc).__name__) from exc
        return response.text
    path = Path(source).expanduser()
    if not path.is_file():
        raise SourceUnavailable(source, "no such file")
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceUnavailable(source, str(exc)) from exc


def parse_text(text: str, source: str | None = None, strict: bool = True) -> TaskCollection:
    return DefinitionParser(text, source=source, strict=strict).parse()


def parse(
    source: str | Path,
    strict: bool = True,
    timeout: float = DEFAULT_HTTP_TIMEOUT,
) -> TaskCollection:
    """Read and parse a task file; see :func:`read_source` for what *source* may be."""
    text = read_source(source, timeout=timeout)
    tasks = parse_text(text, source=str(source), strict=strict)
    log.debug("Parsed %d task(s) from %s", len(tasks), source)
    return tasks
