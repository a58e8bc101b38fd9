from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from clue_lsp.compiler import CompilerAvailability
from clue_lsp.config import ClueSettings
from clue_lsp.reconcile import SessionSnapshot


@pytest.fixture
def available_snapshot():
    def _make(**environment: object) -> SessionSnapshot:
        return SessionSnapshot(
            settings=ClueSettings(path="clue", environment=environment),
            availability=CompilerAvailability.AVAILABLE,
        )

    return _make


@pytest.fixture
def write_source(tmp_path: Path):
    def _write(relative: str, text: str) -> Path:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _write
