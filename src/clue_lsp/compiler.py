"""Invoking the clue binary and probing its version."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from clue_lsp.config import ClueSettings, environment_overlay, process_environment
from clue_lsp.scope import InvocationScope

logger = logging.getLogger(__name__)

ProcessRunner = Callable[..., subprocess.CompletedProcess]

SUPPORTED_MAJOR = 3
MINIMUM_MINOR = 2
_PROBE_TIMEOUT_SECONDS = 10.0

_VERSION_RE = re.compile(
    r"^clue (?P<major>\d+)\.(?P<minor>\d+)\.(?P<patch>\d+)"
    r"(?:-(?P<pre>[0-9A-Za-z.-]+))?"
    r"(?:\+(?P<build>[0-9A-Za-z.-]+))?\s*$",
    re.MULTILINE,
)


class CompilerAvailability(Enum):
    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CompilerVersion:
    major: int
    minor: int
    patch: int
    prerelease: str | None = None
    build: str | None = None

    @property
    def text(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            text += f"-{self.prerelease}"
        if self.build:
            text += f"+{self.build}"
        return text

    @property
    def is_supported(self) -> bool:
        return self.major == SUPPORTED_MAJOR and self.minor >= MINIMUM_MINOR


@dataclass(frozen=True)
class ProbeResult:
    availability: CompilerAvailability
    message: str
    version: CompilerVersion | None = None

    @property
    def is_available(self) -> bool:
        return self.availability is CompilerAvailability.AVAILABLE


@dataclass(frozen=True)
class CompilerRun:
    target: str
    is_directory: bool
    stdout: str
    stderr: str
    returncode: int

    @property
    def failed(self) -> bool:
        return self.returncode != 0


def parse_version(output: str) -> CompilerVersion | None:
    match = _VERSION_RE.search(output)
    if match is None:
        return None
    return CompilerVersion(
        major=int(match.group("major")),
        minor=int(match.group("minor")),
        patch=int(match.group("patch")),
        prerelease=match.group("pre"),
        build=match.group("build"),
    )


def availability_for(output: str) -> ProbeResult:
    version = parse_version(output)
    if version is None:
        return ProbeResult(
            CompilerAvailability.UNAVAILABLE,
            f"unrecognized clue version output: {output.strip()!r}",
        )
    if not version.is_supported:
        return ProbeResult(
            CompilerAvailability.UNAVAILABLE,
            f"clue {version.text} is not supported "
            f"(requires {SUPPORTED_MAJOR}.{MINIMUM_MINOR} or a later {SUPPORTED_MAJOR}.x)",
            version,
        )
    return ProbeResult(CompilerAvailability.AVAILABLE, f"clue {version.text}", version)


def compile_command(settings: ClueSettings, target: str) -> list[str]:
    return [settings.path, "-D", target]


def version_command(settings: ClueSettings) -> list[str]:
    return [settings.path, "-V"]


def _run(
    runner: ProcessRunner,
    argv: list[str],
    settings: ClueSettings,
    **kwargs: object,
) -> subprocess.CompletedProcess:
    return runner(
        argv,
        capture_output=True,
        text=True,
        encoding="utf-8",
        errors="replace",
        env=process_environment(environment_overlay(settings)),
        check=False,
        **kwargs,
    )


def probe_version(
    settings: ClueSettings,
    *,
    runner: ProcessRunner = subprocess.run,
) -> ProbeResult:
    argv = version_command(settings)
    try:
        proc = _run(runner, argv, settings, timeout=_PROBE_TIMEOUT_SECONDS)
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("version probe %s failed: %s", argv, exc)
        return ProbeResult(
            CompilerAvailability.UNAVAILABLE,
            f"cannot run {settings.path}: {exc}",
        )
    output = "\n".join(part for part in (proc.stdout, proc.stderr) if part)
    result = availability_for(output)
    logger.debug("version probe %s -> %s", argv, result.availability.value)
    return result


def run_compiler(
    settings: ClueSettings,
    scope: InvocationScope,
    *,
    runner: ProcessRunner = subprocess.run,
) -> CompilerRun:
    """Run the compiler once over ``scope``.

    Raises ``OSError`` when the process cannot be started at all.
    """
    argv = compile_command(settings, scope.target)
    logger.debug("running %s in %s", argv, scope.cwd)
    proc = _run(runner, argv, settings, cwd=str(scope.cwd))
    return CompilerRun(
        target=scope.target,
        is_directory=scope.is_directory,
        stdout=proc.stdout or "",
        stderr=proc.stderr or "",
        returncode=proc.returncode,
    )
