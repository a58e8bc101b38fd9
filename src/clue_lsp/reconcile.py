"""One reconciliation cycle: compiler output to publish events."""

from __future__ import annotations

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Sequence

from lsprotocol.types import Diagnostic, DiagnosticSeverity

from clue_lsp.compiler import (
    CompilerAvailability,
    CompilerRun,
    ProbeResult,
    ProcessRunner,
    run_compiler,
)
from clue_lsp.config import ClueSettings
from clue_lsp.exceptions import (
    MissingTextSource,
    RangeResolutionError,
    UnrecognizedCompilerFailure,
)
from clue_lsp.parser import ErrorRecord, parse_output
from clue_lsp.ranges import RangeResolver
from clue_lsp.schema import (
    CheckResponse,
    DiagnosticDTO,
    PositionDTO,
    PublishDiagnosticsDTO,
    RangeDTO,
)
from clue_lsp.scope import InvocationScope, path_to_uri
from clue_lsp.text_cache import DocumentTextCache, FileReader, LiveDocumentLookup, read_file

logger = logging.getLogger(__name__)

DIAGNOSTIC_SOURCE = "clue"


class ReconcileStatus(Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class PublishEvent:
    uri: str
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def kind(self) -> str:
        return "set" if self.diagnostics else "clear"


@dataclass(frozen=True)
class RecordFailure:
    record: ErrorRecord
    uri: str | None
    reason: str


@dataclass(frozen=True)
class ReconcileOutcome:
    run_id: int
    scope: InvocationScope
    status: ReconcileStatus
    events: tuple[PublishEvent, ...] = ()
    failures: tuple[RecordFailure, ...] = ()
    error: UnrecognizedCompilerFailure | None = None
    run: CompilerRun | None = None

    @property
    def set_events(self) -> tuple[PublishEvent, ...]:
        return tuple(event for event in self.events if event.kind == "set")

    @property
    def clear_events(self) -> tuple[PublishEvent, ...]:
        return tuple(event for event in self.events if event.kind == "clear")


@dataclass(frozen=True)
class SessionSnapshot:
    settings: ClueSettings
    availability: CompilerAvailability
    roots: tuple[str, ...] = ()


@dataclass
class ClueSession:
    """Mutable session state with explicit transitions.

    Cycles never read this object directly; they work from a
    :class:`SessionSnapshot` taken when they start.
    """

    settings: ClueSettings = field(default_factory=ClueSettings)
    availability: CompilerAvailability = CompilerAvailability.UNKNOWN
    roots: tuple[str, ...] = ()
    probe: ProbeResult | None = None
    probe_generation: int = 0

    def apply_settings(self, settings: ClueSettings) -> None:
        self.settings = settings

    def begin_probe(self) -> int:
        self.probe_generation += 1
        return self.probe_generation

    def apply_probe(self, probe: ProbeResult, generation: int | None = None) -> bool:
        """Record ``probe`` unless a newer probe has been started since."""
        if generation is not None and generation < self.probe_generation:
            return False
        self.probe = probe
        self.availability = probe.availability
        return True

    def set_roots(self, roots: Iterable[str]) -> None:
        self.roots = tuple(roots)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            settings=self.settings,
            availability=self.availability,
            roots=self.roots,
        )


def _normalized_path(path: Path) -> Path:
    return Path(os.path.normpath(path))


def error_target(record: ErrorRecord, scope: InvocationScope) -> Path | None:
    # In single-file mode the reported path is unreliable; the file we asked
    # for is the only file the errors can belong to.
    if not scope.is_directory:
        return Path(scope.target)
    if not record.path:
        return None
    path = Path(record.path)
    if not path.is_absolute():
        path = scope.cwd / path
    return _normalized_path(path)


def compiled_target(reported: str, scope: InvocationScope) -> Path | None:
    if not scope.is_directory:
        return Path(scope.target)
    if not reported:
        return None
    path = Path(reported)
    if not path.is_absolute():
        path = scope.cwd / path
    return _normalized_path(path)


def build_diagnostic(record: ErrorRecord, resolver: RangeResolver, uri: str) -> Diagnostic:
    return Diagnostic(
        range=resolver.resolve(uri, record.line, record.character),
        message=record.message,
        severity=DiagnosticSeverity.Error,
        source=DIAGNOSTIC_SOURCE,
    )


class Reconciler:
    def __init__(
        self,
        *,
        runner: ProcessRunner = subprocess.run,
        live_documents: LiveDocumentLookup | None = None,
        reader: FileReader = read_file,
    ) -> None:
        self._runner = runner
        self._live_documents = live_documents
        self._reader = reader

    def reconcile(
        self,
        scope: InvocationScope,
        snapshot: SessionSnapshot,
        run_id: int = 0,
        live_documents: LiveDocumentLookup | None = None,
    ) -> ReconcileOutcome:
        if snapshot.availability is not CompilerAvailability.AVAILABLE:
            logger.debug(
                "run %d: skipping %s, compiler is %s",
                run_id,
                scope.target,
                snapshot.availability.value,
            )
            return ReconcileOutcome(run_id, scope, ReconcileStatus.SKIPPED)
        try:
            run = run_compiler(snapshot.settings, scope, runner=self._runner)
        except OSError as exc:
            error = UnrecognizedCompilerFailure(
                f"cannot run {snapshot.settings.path} on {scope.target}: {exc}",
                target=scope.target,
            )
            logger.error("run %d: %s", run_id, error)
            return ReconcileOutcome(run_id, scope, ReconcileStatus.FAILED, error=error)
        parsed = parse_output(run.stdout, run.stderr)
        logger.debug(
            "run %d: %s exited %d with %d errors, %d compiled files",
            run_id,
            scope.target,
            run.returncode,
            len(parsed.errors),
            len(parsed.compiled_files),
        )
        if run.failed and not parsed.has_errors:
            error = UnrecognizedCompilerFailure(
                f"clue exited with status {run.returncode} on {scope.target}",
                target=scope.target,
                returncode=run.returncode,
                stdout=run.stdout,
                stderr=run.stderr,
            )
            logger.error("run %d: %s", run_id, error.detail)
            return ReconcileOutcome(
                run_id, scope, ReconcileStatus.FAILED, error=error, run=run
            )

        cache = DocumentTextCache(live_documents or self._live_documents, reader=self._reader)
        resolver = RangeResolver(cache)
        grouped: dict[str, list[Diagnostic]] = {}
        failures: list[RecordFailure] = []
        for record in parsed.errors:
            target = error_target(record, scope)
            if target is None:
                logger.warning("run %d: error without a file: %s", run_id, record.message)
                failures.append(RecordFailure(record, None, "no file reported"))
                continue
            uri = path_to_uri(target)
            try:
                diagnostic = build_diagnostic(record, resolver, uri)
            except (MissingTextSource, RangeResolutionError) as exc:
                logger.warning("run %d: dropping diagnostic: %s", run_id, exc)
                failures.append(RecordFailure(record, uri, str(exc)))
                continue
            grouped.setdefault(uri, []).append(diagnostic)

        events = [PublishEvent(uri, tuple(diagnostics)) for uri, diagnostics in grouped.items()]
        cleared: set[str] = set()
        for reported in parsed.compiled_files:
            target = compiled_target(reported, scope)
            if target is None:
                continue
            uri = path_to_uri(target)
            if uri in grouped or uri in cleared:
                continue
            cleared.add(uri)
            events.append(PublishEvent(uri))
        return ReconcileOutcome(
            run_id,
            scope,
            ReconcileStatus.COMPLETED,
            events=tuple(events),
            failures=tuple(failures),
            run=run,
        )


DiagnosticsSink = Callable[[str, Sequence[Diagnostic]], None]


class DiagnosticsPublisher:
    """Applies publish events so each URI reflects the newest started run.

    Events from a run older than the last one applied to the same URI are
    dropped; the compiler process behind them is not cancelled.
    """

    def __init__(self, sink: DiagnosticsSink) -> None:
        self._sink = sink
        self._applied: dict[str, int] = {}
        self._lock = threading.Lock()

    def last_applied(self, uri: str) -> int | None:
        with self._lock:
            return self._applied.get(uri)

    def publish(self, event: PublishEvent, run_id: int) -> bool:
        with self._lock:
            last = self._applied.get(event.uri)
            if last is not None and run_id < last:
                logger.debug(
                    "dropping stale %s for %s from run %d (applied %d)",
                    event.kind,
                    event.uri,
                    run_id,
                    last,
                )
                return False
            self._applied[event.uri] = run_id
            self._sink(event.uri, list(event.diagnostics))
            return True

    def prune(self, floor: int | None) -> int:
        """Forget URIs whose last run is older than ``floor``.

        ``floor`` is the oldest run still in flight; ``None`` means none is.
        Such entries can no longer cause an event to be dropped.
        """
        with self._lock:
            stale = [
                uri
                for uri, run_id in self._applied.items()
                if floor is None or run_id < floor
            ]
            for uri in stale:
                del self._applied[uri]
            return len(stale)

    def apply(self, outcome: ReconcileOutcome) -> list[PublishEvent]:
        return [event for event in outcome.events if self.publish(event, outcome.run_id)]


def _severity_name(severity: DiagnosticSeverity | None) -> str:
    if severity is None:
        return "error"
    return severity.name.lower()


def event_payload(event: PublishEvent) -> PublishDiagnosticsDTO:
    return PublishDiagnosticsDTO(
        uri=event.uri,
        diagnostics=[
            DiagnosticDTO(
                range=RangeDTO(
                    start=PositionDTO(
                        line=diagnostic.range.start.line,
                        character=diagnostic.range.start.character,
                    ),
                    end=PositionDTO(
                        line=diagnostic.range.end.line,
                        character=diagnostic.range.end.character,
                    ),
                ),
                severity=_severity_name(diagnostic.severity),
                message=diagnostic.message,
                source=diagnostic.source or DIAGNOSTIC_SOURCE,
            )
            for diagnostic in event.diagnostics
        ],
    )


def outcome_response(outcome: ReconcileOutcome) -> CheckResponse:
    return CheckResponse(
        run_id=outcome.run_id,
        target=outcome.scope.target,
        is_directory=outcome.scope.is_directory,
        status=outcome.status.value,
        published=[event_payload(event) for event in outcome.events],
        failures=[failure.reason for failure in outcome.failures],
        errors=[outcome.error.detail] if outcome.error is not None else [],
    )
