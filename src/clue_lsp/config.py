from __future__ import annotations

import json
import logging
import os
import tomllib
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, TypeAlias

from pydantic import ValidationError

from clue_lsp.schema import ClueSettingsDTO

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "clue.toml"
CONFIG_SECTION = "clue"
DEFAULT_CLUE_PATH = "clue"

TomlScalar: TypeAlias = str | int | float | bool | None | date | datetime | time
TomlValue: TypeAlias = TomlScalar | list["TomlValue"] | dict[str, "TomlValue"]
TomlTable: TypeAlias = dict[str, TomlValue]

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]


@dataclass(frozen=True)
class ClueSettings:
    """Settings frozen for the duration of one reconciliation cycle."""

    path: str = DEFAULT_CLUE_PATH
    environment: Mapping[str, JSONValue] = field(default_factory=dict)
    log_level: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "path", self.path or DEFAULT_CLUE_PATH)
        object.__setattr__(
            self, "environment", MappingProxyType(dict(self.environment))
        )


def _load_toml(path: Path) -> TomlTable:
    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError:
        logger.warning("cannot read %s", path, exc_info=True)
        return {}
    try:
        data = tomllib.loads(raw)
    except tomllib.TOMLDecodeError:
        logger.warning("ignoring malformed %s", path, exc_info=True)
        return {}
    return data if isinstance(data, dict) else {}


def load_config(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    if config_path is None:
        base = root if root is not None else Path.cwd()
        config_path = base / DEFAULT_CONFIG_NAME
    return _load_toml(config_path)


def clue_defaults(root: Path | None = None, config_path: Path | None = None) -> TomlTable:
    data = load_config(root=root, config_path=config_path)
    section = data.get(CONFIG_SECTION, {})
    return section if isinstance(section, dict) else {}


def merge_payload(payload: Mapping[str, object], defaults: Mapping[str, object]) -> dict[str, object]:
    merged = dict(defaults)
    for key, value in payload.items():
        if value is None:
            continue
        merged[key] = value
    return merged


def settings_from_payload(payload: Mapping[str, object] | None) -> ClueSettings:
    if not payload:
        return ClueSettings()
    try:
        dto = ClueSettingsDTO.model_validate(dict(payload))
    except ValidationError:
        logger.warning("invalid clue settings %r; using defaults", payload, exc_info=True)
        return ClueSettings()
    return ClueSettings(
        path=dto.path or DEFAULT_CLUE_PATH,
        environment=dto.environment,
        log_level=dto.log_level,
    )


def resolve_settings(
    editor_payload: Mapping[str, object] | None,
    *,
    root: Path | None = None,
    config_path: Path | None = None,
    overrides: Mapping[str, object] | None = None,
) -> ClueSettings:
    """Layer clue.toml, editor settings and explicit overrides, lowest first."""
    merged: dict[str, object] = dict(clue_defaults(root=root, config_path=config_path))
    if isinstance(editor_payload, Mapping):
        merged = merge_payload(editor_payload, merged)
    if overrides:
        merged = merge_payload(overrides, merged)
    return settings_from_payload(merged)


def coerce_env_value(value: object) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def environment_overlay(settings: ClueSettings) -> dict[str, str]:
    return {str(key): coerce_env_value(value) for key, value in settings.environment.items()}


def process_environment(
    overlay: Mapping[str, str], base: Mapping[str, str] | None = None
) -> dict[str, str]:
    env = dict(os.environ if base is None else base)
    env.update(overlay)
    return env


def apply_log_level(raw: str | None) -> None:
    if not raw:
        return
    level = getattr(logging, raw.upper(), None)
    if isinstance(level, int):
        logging.getLogger().setLevel(level)
