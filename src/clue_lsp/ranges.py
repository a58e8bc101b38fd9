from __future__ import annotations

import re

from lsprotocol.types import Position, Range

from clue_lsp.text_cache import DocumentTextCache

_WHITESPACE_RE = re.compile(r"\s")


def token_length(remainder: str) -> int:
    """Length of the run of non-whitespace at the start of ``remainder``."""
    match = _WHITESPACE_RE.search(remainder)
    if match is None:
        return len(remainder)
    return match.start()


def resolve_end(line_text: str, start_character: int) -> int:
    start = max(0, start_character)
    return start + token_length(line_text[start:])


class RangeResolver:
    """Widens a compiler's single-point error anchor to the token it names."""

    def __init__(self, cache: DocumentTextCache) -> None:
        self._cache = cache

    def resolve_end(self, uri: str, line: int, start_character: int) -> int:
        start = max(0, start_character)
        return start + token_length(self._cache.get_line(uri, line, start))

    def resolve(self, uri: str, line: int, start_character: int) -> Range:
        start = max(0, start_character)
        end = self.resolve_end(uri, line, start)
        return Range(
            start=Position(line=line, character=start),
            end=Position(line=line, character=end),
        )
