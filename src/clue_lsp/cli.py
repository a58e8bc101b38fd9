from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import List, Mapping, Optional

import typer

from clue_lsp.compiler import ProbeResult, ProcessRunner, probe_version
from clue_lsp.config import ClueSettings, resolve_settings
from clue_lsp.exceptions import CompilerUnavailable
from clue_lsp.reconcile import (
    ClueSession,
    Reconciler,
    ReconcileOutcome,
    ReconcileStatus,
    event_payload,
)
from clue_lsp.scope import InvocationScope

app = typer.Typer(add_completion=False)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _configure_logging(level: str | None) -> None:
    resolved = getattr(logging, (level or "warning").upper(), None)
    if not isinstance(resolved, int):
        raise typer.BadParameter(f"Unknown log level: {level}")
    logging.basicConfig(level=resolved, format=_LOG_FORMAT)


def _context_process_runner(ctx: typer.Context) -> ProcessRunner:
    obj = ctx.obj
    if isinstance(obj, Mapping):
        candidate = obj.get("process_runner")
        if callable(candidate):
            return candidate
    return subprocess.run


def _parse_env_entries(entries: List[str]) -> dict[str, str]:
    overlay: dict[str, str] = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        key = key.strip()
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {entry!r}")
        overlay[key] = value
    return overlay


def _cli_settings(
    *,
    root: Path,
    clue_path: str | None,
    env: List[str] | None,
    config: Path | None,
) -> ClueSettings:
    overrides: dict[str, object] = {"path": clue_path}
    if env:
        overrides["environment"] = _parse_env_entries(env)
    return resolve_settings(None, root=root, config_path=config, overrides=overrides)


def _require_available(probe: ProbeResult) -> ProbeResult:
    if not probe.is_available:
        raise CompilerUnavailable(
            probe.message,
            version=probe.version.text if probe.version else None,
        )
    return probe


def run_check(
    target: Path,
    settings: ClueSettings,
    *,
    runner: ProcessRunner = subprocess.run,
) -> ReconcileOutcome:
    """Probe the compiler and reconcile ``target`` once, without live buffers."""
    session = ClueSession(settings=settings)
    session.apply_probe(_require_available(probe_version(settings, runner=runner)))
    resolved = target.resolve()
    scope = InvocationScope(target=str(resolved), is_directory=resolved.is_dir())
    return Reconciler(runner=runner).reconcile(scope, session.snapshot(), run_id=1)


@app.command("serve")
def serve(
    log_level: Optional[str] = typer.Option(None, "--log-level"),
) -> None:
    """Run the language server over stdio."""
    _configure_logging(log_level)
    from clue_lsp.server import start

    start()


@app.command("version")
def version(
    ctx: typer.Context,
    clue_path: Optional[str] = typer.Option(None, "--clue-path"),
    config: Optional[Path] = typer.Option(None, "--config"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
) -> None:
    """Probe the clue binary and report whether it is supported."""
    _configure_logging(log_level)
    settings = _cli_settings(root=Path.cwd(), clue_path=clue_path, env=None, config=config)
    try:
        probe = _require_available(
            probe_version(settings, runner=_context_process_runner(ctx))
        )
    except CompilerUnavailable as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc
    typer.echo(probe.message)


@app.command("check")
def check(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True),
    clue_path: Optional[str] = typer.Option(None, "--clue-path"),
    env: Optional[List[str]] = typer.Option(
        None, "--env", help="Environment overlay entry KEY=VALUE (repeatable)."
    ),
    config: Optional[Path] = typer.Option(None, "--config"),
    log_level: Optional[str] = typer.Option(None, "--log-level"),
) -> None:
    """Compile PATH once and print the resulting diagnostics as JSON."""
    _configure_logging(log_level)
    root = path if path.is_dir() else path.parent
    settings = _cli_settings(root=root, clue_path=clue_path, env=env, config=config)
    try:
        outcome = run_check(path, settings, runner=_context_process_runner(ctx))
    except CompilerUnavailable as exc:
        typer.secho(str(exc), err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2) from exc
    if outcome.status is ReconcileStatus.FAILED and outcome.error is not None:
        typer.secho(outcome.error.detail, err=True, fg=typer.colors.RED)
        raise typer.Exit(code=2)
    payload = [event_payload(event).model_dump() for event in outcome.events]
    typer.echo(json.dumps(payload, indent=2, sort_keys=True))
    for failure in outcome.failures:
        typer.secho(failure.reason, err=True, fg=typer.colors.YELLOW)
    raise typer.Exit(code=1 if outcome.set_events else 0)


def main() -> None:  # pragma: no cover
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
