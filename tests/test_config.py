from __future__ import annotations

import logging
import textwrap
from pathlib import Path

import pytest

from clue_lsp.config import (
    ClueSettings,
    apply_log_level,
    clue_defaults,
    coerce_env_value,
    environment_overlay,
    merge_payload,
    process_environment,
    resolve_settings,
    settings_from_payload,
)


def _write_config(root: Path) -> Path:
    config_path = root / "clue.toml"
    config_path.write_text(
        textwrap.dedent(
            """
            [clue]
            path = "/usr/local/bin/clue"
            environment = { TARGET = "lua", OPTIMIZE = 2 }
            """
        ).strip()
        + "\n"
    )
    return config_path


def test_clue_defaults_reads_toml(tmp_path: Path) -> None:
    _write_config(tmp_path)
    defaults = clue_defaults(root=tmp_path)
    assert defaults["path"] == "/usr/local/bin/clue"
    assert defaults["environment"] == {"TARGET": "lua", "OPTIMIZE": 2}


def test_missing_or_malformed_toml_is_empty(tmp_path: Path) -> None:
    assert clue_defaults(root=tmp_path) == {}
    (tmp_path / "clue.toml").write_text("[clue\npath=")
    assert clue_defaults(root=tmp_path) == {}


def test_editor_settings_override_file_defaults(tmp_path: Path) -> None:
    _write_config(tmp_path)
    settings = resolve_settings({"path": None, "environment": {"TARGET": "luajit"}}, root=tmp_path)
    assert settings.path == "/usr/local/bin/clue"
    assert dict(settings.environment) == {"TARGET": "luajit"}


def test_overrides_win_over_everything(tmp_path: Path) -> None:
    _write_config(tmp_path)
    settings = resolve_settings(
        {"path": "editor-clue"}, root=tmp_path, overrides={"path": "cli-clue"}
    )
    assert settings.path == "cli-clue"


def test_invalid_payload_falls_back_to_defaults() -> None:
    assert settings_from_payload({"environment": "not a table"}) == ClueSettings()


def test_empty_path_means_default_binary() -> None:
    assert settings_from_payload({"path": ""}).path == "clue"
    assert settings_from_payload({"logLevel": "debug"}).log_level == "debug"


def test_settings_are_frozen_snapshots() -> None:
    source = {"A": "1"}
    settings = ClueSettings(environment=source)
    source["A"] = "2"
    assert settings.environment["A"] == "1"
    with pytest.raises(TypeError):
        settings.environment["B"] = "3"  # type: ignore[index]


def test_environment_values_are_stringified() -> None:
    assert coerce_env_value("plain") == "plain"
    assert coerce_env_value(True) == "true"
    assert coerce_env_value(None) == "null"
    assert coerce_env_value({"a": [1, 2]}) == '{"a": [1, 2]}'
    overlay = environment_overlay(ClueSettings(environment={"N": 3}))
    assert overlay == {"N": "3"}
    assert process_environment(overlay, base={"N": "0", "PATH": "/bin"}) == {
        "N": "3",
        "PATH": "/bin",
    }


def test_merge_payload_prefers_explicit_values() -> None:
    merged = merge_payload({"path": None, "environment": {}}, {"path": "x", "environment": {"A": 1}})
    assert merged == {"path": "x", "environment": {}}


def test_apply_log_level_ignores_unknown_names() -> None:
    root = logging.getLogger()
    previous = root.level
    try:
        apply_log_level("debug")
        assert root.level == logging.DEBUG
        apply_log_level("chatty")
        assert root.level == logging.DEBUG
    finally:
        root.setLevel(previous)
