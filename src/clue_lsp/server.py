from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Mapping

from pygls.lsp.server import LanguageServer
from pydantic import ValidationError
from lsprotocol.types import (
    INITIALIZE,
    INITIALIZED,
    TEXT_DOCUMENT_DID_OPEN,
    TEXT_DOCUMENT_DID_SAVE,
    TEXT_DOCUMENT_HOVER,
    WORKSPACE_DID_CHANGE_CONFIGURATION,
    ConfigurationItem,
    ConfigurationParams,
    DidChangeConfigurationParams,
    DidOpenTextDocumentParams,
    DidSaveTextDocumentParams,
    Hover,
    HoverParams,
    InitializedParams,
    InitializeParams,
    LogMessageParams,
    MarkupContent,
    MarkupKind,
    MessageType,
    Position,
    PublishDiagnosticsParams,
    Range,
    Registration,
    RegistrationParams,
    ShowMessageParams,
)

from clue_lsp import __version__
from clue_lsp.compiler import CompilerRun, ProbeResult
from clue_lsp.config import (
    CONFIG_SECTION,
    ClueSettings,
    apply_log_level,
    environment_overlay,
    resolve_settings,
)
from clue_lsp.coordinator import (
    ConfigurationChanged,
    DocumentOpened,
    DocumentSaved,
    ReconcileCoordinator,
    Startup,
)
from clue_lsp.hover import overlay_value
from clue_lsp.reconcile import (
    ClueSession,
    DiagnosticsPublisher,
    Reconciler,
    ReconcileOutcome,
    outcome_response,
)
from clue_lsp.schema import CheckRequest, StatusDTO
from clue_lsp.scope import uri_to_path
from clue_lsp.text_cache import LiveDocument

logger = logging.getLogger(__name__)

server = LanguageServer("clue-lsp", __version__)
CHECK_COMMAND = "clue.check"
STATUS_NOTIFICATION = "clue/status"

_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="clue-reconcile")
_COORDINATOR_ATTR = "_clue_coordinator"


def _workspace_roots(ls: LanguageServer) -> list[str]:
    workspace = ls.workspace
    folders = getattr(workspace, "folders", None) or {}
    roots = [folder.uri for folder in folders.values()]
    if not roots and getattr(workspace, "root_uri", None):
        roots = [workspace.root_uri]
    return roots


def _open_documents(ls: LanguageServer) -> list[str]:
    return list(ls.workspace.text_documents)


def _open_buffers(ls: LanguageServer) -> dict[str, LiveDocument]:
    # Runs on the event loop; reconciliation threads only see this copy.
    return {
        uri: LiveDocument(uri=uri, text=document.source, version=document.version)
        for uri, document in list(ls.workspace.text_documents.items())
    }


def _publish(ls: LanguageServer):
    def _sink(uri: str, diagnostics) -> None:
        ls.text_document_publish_diagnostics(
            PublishDiagnosticsParams(uri=uri, diagnostics=list(diagnostics))
        )

    return _sink


def _send_status(ls: LanguageServer, probe: ProbeResult) -> None:
    status = StatusDTO(
        text=probe.message if probe.is_available else f"clue unavailable: {probe.message}",
        is_error=not probe.is_available,
    )
    ls.protocol.notify(STATUS_NOTIFICATION, status.model_dump(by_alias=True))
    if not probe.is_available:
        ls.window_show_message(
            ShowMessageParams(type=MessageType.Error, message=status.text)
        )


def _report_failure(ls: LanguageServer, outcome: ReconcileOutcome) -> None:
    error = outcome.error
    if error is None:
        return
    ls.window_show_message(ShowMessageParams(type=MessageType.Error, message=str(error)))
    ls.window_log_message(LogMessageParams(type=MessageType.Error, message=error.detail))


def _log_run(ls: LanguageServer, run: CompilerRun) -> None:
    if run.stdout:
        ls.window_log_message(LogMessageParams(type=MessageType.Log, message=run.stdout))
    if run.stderr:
        ls.window_log_message(LogMessageParams(type=MessageType.Error, message=run.stderr))


def _coordinator_for(ls: LanguageServer) -> ReconcileCoordinator:
    coordinator = getattr(ls, _COORDINATOR_ATTR, None)
    if coordinator is None:
        coordinator = ReconcileCoordinator(
            ClueSession(),
            Reconciler(),
            DiagnosticsPublisher(_publish(ls)),
            executor=_executor,
            workspace_roots=lambda: _workspace_roots(ls),
            open_documents=lambda: _open_documents(ls),
            open_buffers=lambda: _open_buffers(ls),
            on_status=lambda probe: _send_status(ls, probe),
            on_failure=lambda outcome: _report_failure(ls, outcome),
            on_run=lambda run: _log_run(ls, run),
        )
        setattr(ls, _COORDINATOR_ATTR, coordinator)
    return coordinator


def _first_root(ls: LanguageServer) -> Path | None:
    roots = _workspace_roots(ls)
    return uri_to_path(roots[0]) if roots else None


def _settings_section(settings: object) -> Mapping[str, object] | None:
    # Push-style clients send {"clue": {...}}; pull-style ones send nothing.
    if isinstance(settings, Mapping):
        section = settings.get(CONFIG_SECTION)
        if isinstance(section, Mapping):
            return section
    return None


async def _fetch_settings(ls: LanguageServer) -> Mapping[str, object] | None:
    try:
        result = await ls.workspace_configuration_async(
            ConfigurationParams(items=[ConfigurationItem(section=CONFIG_SECTION)])
        )
    except Exception:
        logger.warning("workspace/configuration request failed", exc_info=True)
        return None
    if result and isinstance(result[0], Mapping):
        return result[0]
    return None


def _load_settings(ls: LanguageServer, payload: Mapping[str, object] | None) -> ClueSettings:
    settings = resolve_settings(payload, root=_first_root(ls))
    apply_log_level(settings.log_level)
    return settings


async def _register_configuration(ls: LanguageServer) -> None:
    try:
        await ls.client_register_capability_async(
            RegistrationParams(
                registrations=[
                    Registration(
                        id=str(uuid.uuid4()),
                        method=WORKSPACE_DID_CHANGE_CONFIGURATION,
                    )
                ]
            )
        )
    except Exception:
        logger.info("client refused configuration registration", exc_info=True)


@server.feature(INITIALIZE)
def on_initialize(ls: LanguageServer, params: InitializeParams) -> None:
    options = params.initialization_options
    if isinstance(options, Mapping):
        apply_log_level(options.get("logLevel"))


@server.feature(INITIALIZED)
async def on_initialized(ls: LanguageServer, params: InitializedParams) -> None:
    await _register_configuration(ls)
    payload = await _fetch_settings(ls)
    await _coordinator_for(ls).dispatch(Startup(settings=_load_settings(ls, payload)))


@server.feature(WORKSPACE_DID_CHANGE_CONFIGURATION)
async def did_change_configuration(
    ls: LanguageServer, params: DidChangeConfigurationParams
) -> None:
    payload = _settings_section(params.settings)
    if payload is None:
        payload = await _fetch_settings(ls)
    await _coordinator_for(ls).dispatch(
        ConfigurationChanged(settings=_load_settings(ls, payload))
    )


@server.feature(TEXT_DOCUMENT_DID_OPEN)
async def did_open(ls: LanguageServer, params: DidOpenTextDocumentParams) -> None:
    await _coordinator_for(ls).dispatch(DocumentOpened(params.text_document.uri))


@server.feature(TEXT_DOCUMENT_DID_SAVE)
async def did_save(ls: LanguageServer, params: DidSaveTextDocumentParams) -> None:
    await _coordinator_for(ls).dispatch(DocumentSaved(params.text_document.uri))


@server.feature(TEXT_DOCUMENT_HOVER)
def hover(ls: LanguageServer, params: HoverParams) -> Hover | None:
    document = ls.workspace.text_documents.get(params.text_document.uri)
    if document is None:
        return None
    lines = document.lines
    line = params.position.line
    if line < 0 or line >= len(lines):
        return None
    overlay = environment_overlay(_coordinator_for(ls).session.settings)
    found = overlay_value(lines[line].rstrip("\r\n"), params.position.character, overlay)
    if found is None:
        return None
    reference, value = found
    return Hover(
        contents=MarkupContent(kind=MarkupKind.PlainText, value=value),
        range=Range(
            start=Position(line=line, character=reference.start),
            end=Position(line=line, character=reference.end),
        ),
    )


@server.command(CHECK_COMMAND)
async def execute_check(ls: LanguageServer, payload: dict | None = None) -> dict:
    try:
        request = CheckRequest.model_validate(payload or {})
    except ValidationError as exc:
        return {"exit_code": 2, "errors": [str(exc)]}
    outcomes = await _coordinator_for(ls).check(request.uri)
    runs = [outcome_response(outcome).model_dump() for outcome in outcomes]
    exit_code = 0
    if any(run["errors"] for run in runs):
        exit_code = 2
    elif any(event["diagnostics"] for run in runs for event in run["published"]):
        exit_code = 1
    return {"exit_code": exit_code, "runs": runs}


def start(start_fn: Callable[[], None] | None = None) -> None:
    """Start the language server over stdio."""
    (start_fn or server.start_io)()


if __name__ == "__main__":  # pragma: no cover
    start()  # pragma: no cover
