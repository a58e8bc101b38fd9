from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from clue_lsp.exceptions import MissingTextSource, RangeResolutionError
from clue_lsp.scope import uri_to_path

_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True)
class LiveDocument:
    uri: str
    text: str
    version: int | None = None


@dataclass(frozen=True)
class TextSnapshot:
    uri: str
    lines: tuple[str, ...]
    version: int | None = None

    @classmethod
    def from_text(cls, uri: str, text: str, version: int | None = None) -> TextSnapshot:
        return cls(uri=uri, lines=tuple(_LINE_BREAK_RE.split(text)), version=version)


LiveDocumentLookup = Callable[[str], "LiveDocument | None"]
FileReader = Callable[[Path], str]


def _no_live_documents(uri: str) -> LiveDocument | None:
    return None


def read_file(path: Path) -> str:
    return path.read_text(encoding="utf-8")


class DocumentTextCache:
    """Text of every file touched by one reconciliation cycle.

    Open buffers win over the disk. A disk snapshot, or the failure to read
    one, is remembered for the lifetime of this object only, so create a new
    cache per cycle.
    """

    def __init__(
        self,
        live_documents: LiveDocumentLookup | None = None,
        *,
        reader: FileReader = read_file,
    ) -> None:
        self._live_documents = live_documents or _no_live_documents
        self._reader = reader
        self._snapshots: dict[str, TextSnapshot] = {}
        self._missing: dict[str, MissingTextSource] = {}
        self.disk_reads = 0

    def snapshot(self, uri: str) -> TextSnapshot:
        cached = self._snapshots.get(uri)
        if cached is not None:
            return cached
        missing = self._missing.get(uri)
        if missing is not None:
            raise missing
        live = self._live_documents(uri)
        if live is not None:
            snapshot = TextSnapshot.from_text(uri, live.text, live.version)
        else:
            self.disk_reads += 1
            try:
                text = self._reader(uri_to_path(uri))
            except (OSError, UnicodeDecodeError) as exc:
                missing = MissingTextSource(uri, str(exc))
                self._missing[uri] = missing
                raise missing from exc
            snapshot = TextSnapshot.from_text(uri, text)
        self._snapshots[uri] = snapshot
        return snapshot

    def line_text(self, uri: str, line: int) -> str:
        snapshot = self.snapshot(uri)
        if line < 0 or line >= len(snapshot.lines):
            raise RangeResolutionError(uri, line, len(snapshot.lines))
        return snapshot.lines[line]

    def get_line(self, uri: str, line: int, start_character: int) -> str:
        return self.line_text(uri, line)[max(0, start_character):]
