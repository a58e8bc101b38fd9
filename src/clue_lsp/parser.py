"""Parser for the clue compiler's textual diagnostic output.

The compiler reports failures on stderr as line pairs::

    Error in src/main.clue:12:5!
    Error: "unexpected token"

and successes on stdout as::

    Compiled file "src/main.clue" in 3ms!

Anything else on either stream is informational and ignored. The two streams
are parsed independently; no ordering between them is assumed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from clue_lsp.invariants import never

_ERROR_HEADER_RE = re.compile(r"^Error in (?P<path>.*):(?P<line>\d+):(?P<col>\d+)!$")
_ERROR_MESSAGE_RE = re.compile(r'^Error: "(?P<message>.*)"$')
_COMPILED_FILE_RE = re.compile(r'^Compiled file "(?P<path>.*)" in (?P<duration>.+)!$')


class ParserState(Enum):
    SEEKING = "seeking"
    EXPECT_MESSAGE = "expect_message"


@dataclass(frozen=True)
class ErrorRecord:
    path: str
    line: int
    character: int
    message: str


@dataclass(frozen=True)
class _PendingError:
    path: str
    line: int
    character: int


@dataclass(frozen=True)
class ParseResult:
    errors: tuple[ErrorRecord, ...] = ()
    compiled_files: tuple[str, ...] = ()

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class ErrorBlockParser:
    """Two-state automaton over stderr lines.

    A fresh instance is used per invocation so no pending header can leak from
    one compiler run into the next.
    """

    state: ParserState = ParserState.SEEKING
    errors: list[ErrorRecord] = field(default_factory=list)
    _pending: _PendingError | None = None

    def feed(self, line: str) -> None:
        if self.state is ParserState.SEEKING:
            match = _ERROR_HEADER_RE.match(line)
            if match is None:
                return
            self._pending = _PendingError(
                path=match.group("path"),
                line=int(match.group("line")) - 1,
                character=int(match.group("col")) - 1,
            )
            self.state = ParserState.EXPECT_MESSAGE
            return
        if self.state is ParserState.EXPECT_MESSAGE:
            pending = self._pending
            if pending is None:
                never("message expected without a pending header", line=line)
            match = _ERROR_MESSAGE_RE.match(line)
            message = match.group("message") if match is not None else line
            self.errors.append(
                ErrorRecord(
                    path=pending.path,
                    line=pending.line,
                    character=pending.character,
                    message=message,
                )
            )
            self._pending = None
            self.state = ParserState.SEEKING
            return
        never("unknown parser state", state=self.state)

    def finish(self) -> tuple[ErrorRecord, ...]:
        # A header with no message line is a truncated block; drop it.
        self._pending = None
        self.state = ParserState.SEEKING
        return tuple(self.errors)


def _split_lines(text: str) -> list[str]:
    return [line.rstrip("\r") for line in text.split("\n")]


def parse_errors(stderr: str) -> tuple[ErrorRecord, ...]:
    parser = ErrorBlockParser()
    lines = _split_lines(stderr)
    # A trailing newline leaves an empty final element that is not a line.
    if lines and lines[-1] == "" and stderr.endswith("\n"):
        lines.pop()
    for line in lines:
        parser.feed(line)
    return parser.finish()


def parse_compiled_files(stdout: str) -> tuple[str, ...]:
    compiled: list[str] = []
    for line in _split_lines(stdout):
        match = _COMPILED_FILE_RE.match(line)
        if match is not None:
            compiled.append(match.group("path"))
    return tuple(compiled)


def parse_output(stdout: str, stderr: str) -> ParseResult:
    return ParseResult(
        errors=parse_errors(stderr),
        compiled_files=parse_compiled_files(stdout),
    )
