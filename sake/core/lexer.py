# sake/core/lexer.py
"""
Tokenizer for the Ruby subset that task files are written in.

The parser only needs to recognise ``namespace``/``desc``/``task``
declarations and to find where each block ends, so the lexer's job is
mostly to keep strings, comments, heredocs and percent literals from being
mistaken for code. Token offsets point into the original text so task
bodies can be captured verbatim.
"""

from __future__ import annotations

import re
import textwrap
from dataclasses import dataclass, field
from typing import Any

from sake.core.errors import DefinitionSyntaxError

STRING = "string"
XSTRING = "xstring"  # backticks / %x{} - shell-outs
SYMBOL = "symbol"
LABEL = "label"  # `needs:` style hash key
IDENT = "ident"
NUMBER = "number"
REGEX = "regex"
WORDS = "words"  # %w[] / %i[]
OP = "op"
NEWLINE = "newline"
EOF = "eof"

_IDENT = re.compile(r"(?:@@|@|\$)?[A-Za-z_\x80-\U0010ffff][A-Za-z0-9_\x80-\U0010ffff]*")
_NUMBER = re.compile(r"0[xXbBoO][0-9a-fA-F_]+|\d[\d_]*(?:\.\d[\d_]*)?(?:[eE][+-]?\d+)?")
_HEREDOC = re.compile(r"<<([-~]?)([\"'`]?)([A-Za-z_][A-Za-z0-9_]*)\2")
_GLOBAL_SPECIAL = re.compile(r"\$[!@&`'+~=/\\,;.<>_*$?:\"0-9]")
_DATA_SECTION = re.compile(r"__END__[ \t\r]*(?:\n|$)")
_EMBEDDED_DOC_END = re.compile(r"^=end\b.*$", re.MULTILINE)
_PERCENT = re.compile(r"%([qQwWiIrsx]?)([^\w\s])")

_OPERATORS = (
    "**=", "<=>", "===", "...", "<<=", ">>=", "&&=", "||=",
    "==", "!=", ">=", "<=", "&&", "||", "<<", ">>", "**", "=>", "->",
    "..", "::", "+=", "-=", "*=", "/=", "|=", "&=", "=~", "!~", "&.",
)

_PAIRS = {"(": ")", "[": "]", "{": "}", "<": ">"}

_ESCAPES = {"n": "\n", "t": "\t", "s": " ", "0": "\0", "e": "\x1b", "r": "\r", "a": "\a", "b": "\b"}

# Identifiers after which a `/`, `%` or `<<` starts a literal rather than an operator.
VALUE_KEYWORDS = frozenset(
    {"if", "unless", "while", "until", "when", "and", "or", "not", "return", "then", "else",
     "elsif", "do", "begin", "in", "case", "puts", "print", "p", "raise", "yield"}
)


@dataclass
class Token:
    kind: str
    text: str
    start: int
    end: int
    line: int
    spaced: bool = False
    value: Any = field(default=None)

    def is_op(self, *ops: str) -> bool:
        return self.kind == OP and self.text in ops

    def is_word(self, *words: str) -> bool:
        return self.kind == IDENT and self.text in words

    def __repr__(self) -> str:
        return f"Token({self.kind}, {self.text!r}, line={self.line})"


@dataclass
class _PendingHeredoc:
    token: Token
    terminator: str
    indented: bool
    squiggly: bool
    raw: bool


class Lexer:
    def __init__(self, text: str, source: str | None = None):
        self.text = text
        self.source = source
        self.pos = 0
        self.line = 1
        self.tokens: list[Token] = []
        self._heredocs: list[_PendingHeredoc] = []
        self._spaced = False
        # lines whose leading whitespace is part of a literal, not indentation
        self.verbatim_lines: set[int] = set()

    def error(self, message: str, line: int | None = None) -> DefinitionSyntaxError:
        return DefinitionSyntaxError(message, line or self.line, self.source)

    # -- helpers -----------------------------------------------------------

    def _peek(self, offset: int = 0) -> str:
        idx = self.pos + offset
        return self.text[idx] if idx < len(self.text) else ""

    def _at_line_start(self) -> bool:
        return self.pos == 0 or self.text[self.pos - 1] == "\n"

    def _prev(self) -> Token | None:
        return self.tokens[-1] if self.tokens else None

    def _value_position(self) -> bool:
        """True when the next character begins an operand rather than continues an expression."""
        prev = self._prev()
        if prev is None or prev.kind in (NEWLINE, LABEL):
            return True
        if prev.kind == OP:
            return prev.text not in (")", "]", "}")
        if prev.kind == IDENT:
            if prev.text in VALUE_KEYWORDS:
                return True
            # `puts /x/` or `sh %{ls}`: a space before and none after means an argument.
            return self._spaced and self._peek(1) not in (" ", "\t", "\n", "=")
        return False

    def _emit(self, kind: str, start: int, line: int, value: Any = None) -> Token:
        token = Token(kind, self.text[start:self.pos], start, self.pos, line, self._spaced, value)
        self.tokens.append(token)
        if kind != NEWLINE:
            breaks = self.text.count("\n", start, self.pos)
            self.verbatim_lines.update(range(line + 1, line + breaks + 1))
        self._spaced = False
        return token

    def _advance_to(self, end: int) -> None:
        self.line += self.text.count("\n", self.pos, end)
        self.pos = end

    # -- entry point -------------------------------------------------------

    def tokenize(self) -> list[Token]:
        text = self.text
        while self.pos < len(text):
            if self._at_line_start():
                if text.startswith("=begin", self.pos):
                    self._skip_embedded_doc()
                    continue
                if _DATA_SECTION.match(text, self.pos):
                    break

            ch = text[self.pos]
            if ch == "\n":
                start, line = self.pos, self.line
                self.pos += 1
                self.line += 1
                self._emit(NEWLINE, start, line)
                self._read_heredoc_bodies()
            elif ch in " \t\r\f\v":
                self.pos += 1
                self._spaced = True
            elif ch == "\\" and self._peek(1) == "\n":
                self.pos += 2
                self.line += 1
                self._spaced = True
            elif ch == "#":
                end = text.find("\n", self.pos)
                self.pos = len(text) if end == -1 else end
            elif ch.isdigit():
                self._lex_regex(_NUMBER, NUMBER)
            elif ch == '"':
                self._lex_quoted('"', interpolate=True, kind=STRING)
            elif ch == "'":
                self._lex_quoted("'", interpolate=False, kind=STRING)
            elif ch == "`":
                self._lex_quoted("`", interpolate=True, kind=XSTRING)
            elif ch == ":":
                self._lex_colon()
            elif ch == "%" and self._value_position() and self._lex_percent():
                pass
            elif ch == "/" and self._value_position():
                self._lex_regex_literal()
            elif ch == "<" and self._lex_heredoc():
                pass
            elif ch == "?" and self._value_position() and self._lex_char_literal():
                pass
            elif ch == "$" and _GLOBAL_SPECIAL.match(text, self.pos):
                self._lex_regex(_GLOBAL_SPECIAL, IDENT)
            elif _IDENT.match(text, self.pos):
                self._lex_identifier()
            else:
                self._lex_operator()

        if self._heredocs:
            pending = self._heredocs[0]
            raise self.error(f"heredoc `{pending.terminator}' is never terminated", pending.token.line)
        self.tokens.append(Token(EOF, "", len(text), len(text), self.line))
        return self.tokens

    # -- individual token kinds -------------------------------------------

    def _skip_embedded_doc(self) -> None:
        start_line = self.line
        match = _EMBEDDED_DOC_END.search(self.text, self.pos)
        if not match:
            raise self.error("=begin without matching =end", start_line)
        self._advance_to(match.end())
        self.verbatim_lines.update(range(start_line, self.line + 1))

    def _lex_regex(self, pattern: re.Pattern[str], kind: str) -> Token:
        start, line = self.pos, self.line
        match = pattern.match(self.text, self.pos)
        assert match is not None
        self.pos = match.end()
        return self._emit(kind, start, line, match.group(0))

    def _lex_identifier(self) -> None:
        start, line = self.pos, self.line
        match = _IDENT.match(self.text, self.pos)
        assert match is not None
        end = match.end()
        sigil = match.group(0)[0] in "@$"
        # predicate / bang methods, but not `x!=` or `x?=`
        if not sigil and end < len(self.text) and self.text[end] in "?!":
            if end + 1 >= len(self.text) or self.text[end + 1] != "=":
                end += 1
        name = self.text[start:end]
        prev = self._prev()
        after_dot = prev is not None and prev.is_op(".", "&.", "::")
        if (
            not sigil
            and not after_dot
            and end < len(self.text)
            and self.text[end] == ":"
            and self.text[end + 1 : end + 2] != ":"
        ):
            self.pos = end + 1
            self._emit(LABEL, start, line, name)
            return
        self.pos = end
        self._emit(IDENT, start, line, name)

    def _lex_colon(self) -> None:
        start, line = self.pos, self.line
        nxt = self._peek(1)
        if nxt == ":":
            self.pos += 2
            self._emit(OP, start, line)
        elif nxt in ('"', "'"):
            self.pos += 1
            value = self._scan_quoted(nxt, interpolate=nxt == '"')
            self._emit(SYMBOL, start, line, value)
        else:
            match = _IDENT.match(self.text, self.pos + 1)
            if match and match.group(0)[0] not in "$":
                end = match.end()
                if end < len(self.text) and self.text[end] in "?!=" and self.text[end + 1 : end + 2] not in ("=", ">", "~"):
                    end += 1
                self.pos = end
                self._emit(SYMBOL, start, line, self.text[start + 1 : end])
            else:
                self.pos += 1
                self._emit(OP, start, line)

    def _lex_quoted(self, quote: str, interpolate: bool, kind: str) -> None:
        start, line = self.pos, self.line
        value = self._scan_quoted(quote, interpolate)
        # "foo": in a hash literal is a label, not a string
        if kind == STRING and self._peek() == ":" and self._peek(1) != ":":
            prev = self._prev()
            if prev is not None and (prev.is_op("{", ",", "(") or prev.kind == NEWLINE):
                self.pos += 1
                self._emit(LABEL, start, line, value)
                return
        self._emit(kind, start, line, value)

    def _scan_quoted(self, quote: str, interpolate: bool) -> str:
        """Consume a quoted literal starting at the opening quote and return its value."""
        text = self.text
        line = self.line
        self.pos += 1
        out: list[str] = []
        while True:
            if self.pos >= len(text):
                raise self.error(f"unterminated {quote}-quoted string", line)
            ch = text[self.pos]
            if ch == "\\":
                nxt = self._peek(1)
                if not nxt:
                    raise self.error(f"unterminated {quote}-quoted string", line)
                if interpolate:
                    out.append(_ESCAPES.get(nxt, nxt))
                elif nxt in (quote, "\\"):
                    out.append(nxt)
                else:
                    out.append(ch + nxt)
                if nxt == "\n":
                    self.line += 1
                self.pos += 2
            elif ch == quote:
                self.pos += 1
                return "".join(out)
            elif interpolate and ch == "#" and self._peek(1) == "{":
                end = self._interpolation_end(self.pos + 2)
                out.append(text[self.pos : end])
                self._advance_to(end)
            else:
                if ch == "\n":
                    self.line += 1
                out.append(ch)
                self.pos += 1

    def _interpolation_end(self, idx: int) -> int:
        depth = 1
        text = self.text
        while idx < len(text):
            ch = text[idx]
            if ch == "\\":
                idx += 2
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return idx + 1
            idx += 1
        raise self.error("unterminated #{...} interpolation")

    def _lex_percent(self) -> bool:
        match = _PERCENT.match(self.text, self.pos)
        if not match:
            return False
        kind_char, open_delim = match.group(1), match.group(2)
        if open_delim == "=" and not kind_char:
            return False
        start, line = self.pos, self.line
        close_delim = _PAIRS.get(open_delim, open_delim)
        idx = match.end()
        depth = 1
        text = self.text
        while True:
            if idx >= len(text):
                raise self.error(f"unterminated %{kind_char}{open_delim} literal", line)
            ch = text[idx]
            if ch == "\\":
                idx += 2
                continue
            if ch == close_delim:
                depth -= 1
                if depth == 0:
                    break
            elif ch == open_delim and open_delim != close_delim:
                depth += 1
            idx += 1
        content = text[match.end() : idx]
        self._advance_to(idx + 1)
        if kind_char == "r":
            while self._peek().isalpha():
                self.pos += 1
            self._emit(REGEX, start, line, content)
        elif kind_char == "x":
            self._emit(XSTRING, start, line, content)
        elif kind_char in ("w", "W", "i", "I"):
            self._emit(WORDS, start, line, content.split())
        elif kind_char == "s":
            self._emit(SYMBOL, start, line, content)
        else:
            self._emit(STRING, start, line, content)
        return True

    def _lex_regex_literal(self) -> None:
        start, line = self.pos, self.line
        idx = self.pos + 1
        text = self.text
        in_class = False
        while True:
            if idx >= len(text):
                raise self.error("unterminated regular expression", line)
            ch = text[idx]
            if ch == "\\":
                idx += 2
                continue
            if ch == "[":
                in_class = True
            elif ch == "]":
                in_class = False
            elif ch == "/" and not in_class:
                break
            idx += 1
        content = text[self.pos + 1 : idx]
        self._advance_to(idx + 1)
        while self._peek().isalpha():
            self.pos += 1
        self._emit(REGEX, start, line, content)

    def _lex_heredoc(self) -> bool:
        match = _HEREDOC.match(self.text, self.pos)
        if not match:
            return False
        flag, quote, ident = match.groups()
        if not quote and not flag and not re.fullmatch(r"[A-Z_][A-Z0-9_]*", ident):
            return False
        prev = self._prev()
        allowed = self._value_position() or (
            prev is not None and prev.kind == IDENT and self._spaced
        )
        if not allowed:
            return False
        start, line = self.pos, self.line
        self.pos = match.end()
        token = self._emit(XSTRING if quote == "`" else STRING, start, line, "")
        self._heredocs.append(
            _PendingHeredoc(
                token=token,
                terminator=ident,
                indented=bool(flag),
                squiggly=flag == "~",
                raw=quote == "'",
            )
        )
        return True

    def _read_heredoc_bodies(self) -> None:
        """Consume the bodies of heredocs opened on the line that just ended."""
        while self._heredocs:
            pending = self._heredocs.pop(0)
            lines: list[str] = []
            while True:
                if self.pos >= len(self.text):
                    raise self.error(
                        f"heredoc `{pending.terminator}' is never terminated", pending.token.line
                    )
                end = self.text.find("\n", self.pos)
                end = len(self.text) if end == -1 else end
                raw_line = self.text[self.pos : end]
                self.verbatim_lines.add(self.line)
                self.pos = min(end + 1, len(self.text))
                self.line += 1
                candidate = raw_line.strip() if pending.indented else raw_line.rstrip("\r")
                if candidate == pending.terminator:
                    break
                lines.append(raw_line)
            body = "\n".join(lines)
            if pending.squiggly:
                body = textwrap.dedent(body)
            pending.token.value = body

    def _lex_char_literal(self) -> bool:
        text = self.text
        nxt = self._peek(1)
        if not nxt or nxt.isspace():
            return False
        width = 3 if nxt == "\\" else 2
        after = text[self.pos + width : self.pos + width + 1]
        if after and (after.isalnum() or after == "_"):
            return False
        start, line = self.pos, self.line
        self.pos += width
        self._emit(STRING, start, line, text[start + 1 : self.pos])
        return True

    def _lex_operator(self) -> None:
        start, line = self.pos, self.line
        for op in _OPERATORS:
            if self.text.startswith(op, self.pos):
                self.pos += len(op)
                break
        else:
            self.pos += 1
        self._emit(OP, start, line)


def tokenize(text: str, source: str | None = None) -> list[Token]:
    return Lexer(text, source).tokenize()


def verbatim_lines(text: str, source: str | None = None) -> set[int]:
    """
    1-based numbers of the lines of *text* that must keep their leading
    whitespace: continuation lines of multi-line strings and regexes,
    heredoc bodies with their terminators, and ``=begin``/``=end`` blocks.
    """
    lexer = Lexer(text, source)
    lexer.tokenize()
    return lexer.verbatim_lines
