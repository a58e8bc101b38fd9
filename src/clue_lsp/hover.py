from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Mapping

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
SIGIL = "$"


@dataclass(frozen=True)
class VariableReference:
    name: str
    start: int
    end: int


def variable_at(line_text: str, character: int) -> VariableReference | None:
    """Find the ``$NAME`` reference covering ``character`` on one line.

    The sigil is the nearest ``$`` at or before the position; the position
    must fall on the sigil or within the identifier that follows it.
    """
    if character < 0 or character > len(line_text):
        return None
    sigil = line_text.rfind(SIGIL, 0, character + 1)
    if sigil < 0:
        return None
    match = _IDENTIFIER_RE.match(line_text, sigil + 1)
    if match is None or character > match.end():
        return None
    return VariableReference(name=match.group(), start=sigil, end=match.end())


def overlay_value(
    line_text: str, character: int, overlay: Mapping[str, str]
) -> tuple[VariableReference, str] | None:
    reference = variable_at(line_text, character)
    if reference is None or reference.name not in overlay:
        return None
    return reference, overlay[reference.name]
