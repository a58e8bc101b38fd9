"""Turns editor events into reconciliation runs."""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from concurrent.futures import Executor
from dataclasses import dataclass
from functools import partial
from typing import Callable, Mapping, Sequence, Union

from clue_lsp.compiler import CompilerRun, ProbeResult, probe_version
from clue_lsp.config import ClueSettings
from clue_lsp.invariants import never
from clue_lsp.reconcile import (
    ClueSession,
    DiagnosticsPublisher,
    Reconciler,
    ReconcileOutcome,
    ReconcileStatus,
    SessionSnapshot,
)
from clue_lsp.scope import InvocationScope, all_scopes, scope_for
from clue_lsp.text_cache import LiveDocument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentOpened:
    uri: str


@dataclass(frozen=True)
class DocumentSaved:
    uri: str


@dataclass(frozen=True)
class ConfigurationChanged:
    settings: ClueSettings | None = None


@dataclass(frozen=True)
class Startup:
    settings: ClueSettings | None = None


ReconcileTrigger = Union[DocumentOpened, DocumentSaved, ConfigurationChanged, Startup]


class RunCounter:
    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def next(self) -> int:
        with self._lock:
            return next(self._counter)


def _ignore(_value: object) -> None:
    return None


def _no_buffers() -> Mapping[str, LiveDocument]:
    return {}


class ReconcileCoordinator:
    """Single consumer of the editor's event stream.

    Each run gets its id when it starts, so the publisher can tell which of
    two overlapping runs is newer regardless of which one finishes first.
    Runs over different scopes proceed in parallel on ``executor``. Open
    buffers are copied on the event loop before a batch is handed off.
    """

    def __init__(
        self,
        session: ClueSession,
        reconciler: Reconciler,
        publisher: DiagnosticsPublisher,
        *,
        probe: Callable[[ClueSettings], ProbeResult] = probe_version,
        executor: Executor | None = None,
        workspace_roots: Callable[[], Sequence[str]] | None = None,
        open_documents: Callable[[], Sequence[str]] | None = None,
        open_buffers: Callable[[], Mapping[str, LiveDocument]] = _no_buffers,
        on_status: Callable[[ProbeResult], None] = _ignore,
        on_failure: Callable[[ReconcileOutcome], None] = _ignore,
        on_run: Callable[[CompilerRun], None] = _ignore,
    ) -> None:
        self.session = session
        self.publisher = publisher
        self._reconciler = reconciler
        self._probe = probe
        self._executor = executor
        self._workspace_roots = workspace_roots
        self._open_documents = open_documents or (lambda: ())
        self._open_buffers = open_buffers
        self._on_status = on_status
        self._on_failure = on_failure
        self._on_run = on_run
        self._counter = RunCounter()
        self._in_flight: set[int] = set()

    def _refresh_roots(self) -> None:
        if self._workspace_roots is not None:
            self.session.set_roots(self._workspace_roots())

    async def dispatch(self, event: ReconcileTrigger) -> list[ReconcileOutcome]:
        self._refresh_roots()
        if isinstance(event, (DocumentOpened, DocumentSaved)):
            snapshot = self.session.snapshot()
            scopes = [scope_for(event.uri, snapshot.roots)]
        elif isinstance(event, (ConfigurationChanged, Startup)):
            if event.settings is not None:
                self.session.apply_settings(event.settings)
            if not await self.check_version():
                # A later configuration change owns the refresh.
                return []
            snapshot = self.session.snapshot()
            scopes = all_scopes(snapshot.roots, list(self._open_documents()))
        else:
            never("unknown reconcile trigger", trigger=type(event).__name__)
        return await self.run_scopes(scopes, snapshot)

    async def check_version(self) -> bool:
        """Probe the configured compiler; False if a newer probe superseded it."""
        loop = asyncio.get_running_loop()
        settings = self.session.settings
        generation = self.session.begin_probe()
        result = await loop.run_in_executor(self._executor, partial(self._probe, settings))
        if not self.session.apply_probe(result, generation):
            logger.info("discarding superseded probe of %s", settings.path)
            return False
        logger.info("clue availability: %s (%s)", result.availability.value, result.message)
        self._on_status(result)
        return True

    async def run_scopes(
        self, scopes: Sequence[InvocationScope], snapshot: SessionSnapshot
    ) -> list[ReconcileOutcome]:
        if not scopes:
            return []
        buffers = dict(self._open_buffers())
        runs = [(scope, self._counter.next()) for scope in scopes]
        self._in_flight.update(run_id for _, run_id in runs)
        return list(
            await asyncio.gather(
                *(self._run(scope, snapshot, run_id, buffers) for scope, run_id in runs)
            )
        )

    async def _run(
        self,
        scope: InvocationScope,
        snapshot: SessionSnapshot,
        run_id: int,
        buffers: Mapping[str, LiveDocument],
    ) -> ReconcileOutcome:
        loop = asyncio.get_running_loop()
        try:
            outcome = await loop.run_in_executor(
                self._executor,
                partial(
                    self._reconciler.reconcile,
                    scope,
                    snapshot,
                    run_id,
                    buffers.get if buffers else None,
                ),
            )
            self._finish(outcome)
        finally:
            self._in_flight.discard(run_id)
            self.publisher.prune(min(self._in_flight) if self._in_flight else None)
        return outcome

    def _finish(self, outcome: ReconcileOutcome) -> None:
        if outcome.run is not None:
            self._on_run(outcome.run)
        if outcome.status is ReconcileStatus.FAILED:
            self._on_failure(outcome)
            return
        if outcome.status is ReconcileStatus.COMPLETED:
            applied = self.publisher.apply(outcome)
            logger.debug(
                "run %d: published %d of %d events",
                outcome.run_id,
                len(applied),
                len(outcome.events),
            )

    async def check(self, uri: str | None = None) -> list[ReconcileOutcome]:
        """Reconcile on request: one document's scope, or every known unit."""
        self._refresh_roots()
        if self.session.probe is None:
            await self.check_version()
        snapshot = self.session.snapshot()
        if uri is not None:
            scopes = [scope_for(uri, snapshot.roots)]
        else:
            scopes = all_scopes(snapshot.roots, list(self._open_documents()))
        return await self.run_scopes(scopes, snapshot)
