"""Console entry point for the Inkwell assistant."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

from .ai.client import ClientSettings, OpenAITransport
from .ai.events import EventBus, NoticePosted, StreamChunk, StreamRestarted, ToolExecuted
from .ai.orchestration import (
    AgentTurnOrchestrator,
    DocumentContextBuilder,
    InMemoryHistoryStore,
    OrchestratorConfig,
    SessionManager,
    TurnStatus,
)
from .ai.retry import RetryConfig, RetryingModelTransport
from .ai.session import SessionContext
from .ai.tools import ConfirmationRequest, ExecutorConfig, ToolExecutionEngine, ToolRegistry
from .ai.tools.documents import create_document_tools
from .services.document_store import FileSystemDocumentStore
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)
_PROMPT = "you> "


@dataclass(slots=True)
class ConsoleRuntime:
    """Everything the chat loop needs, wired from settings."""

    orchestrator: AgentTurnOrchestrator
    engine: ToolExecutionEngine
    registry: ToolRegistry
    transport: OpenAITransport
    event_bus: EventBus
    streaming: bool


def configure_logging(debug: bool = False, *, force: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    logging_utils.setup_logging(level, force=force)
    _LOGGER.debug("Logging configured (level=%s)", logging.getLevelName(level))


def load_settings(
    path: Optional[Path] = None,
    *,
    store: SettingsStore | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> Settings:
    """Load persisted settings or fall back to defaults."""

    active_store = store or SettingsStore(path)
    try:
        return active_store.load(overrides=overrides)
    except (OSError, ValueError) as exc:
        _LOGGER.warning("Failed to load settings from %s: %s", active_store.path, exc)
        return Settings()


def build_runtime(settings: Settings, workspace: Path, *, stream: TextIO | None = None) -> ConsoleRuntime:
    """Wire transport, tools and orchestrator for a workspace directory."""

    out = stream or sys.stdout
    bus: EventBus = EventBus()
    store = FileSystemDocumentStore(workspace)
    registry = ToolRegistry()
    for tool in create_document_tools(store):
        registry.register(tool)

    engine = ToolExecutionEngine(
        registry,
        confirmation_handler=console_confirmation,
        config=ExecutorConfig(history_limit=settings.execution_history_limit, log_arguments=settings.debug_logging),
    )
    transport = OpenAITransport(ClientSettings.from_settings(settings))
    retrying = RetryingModelTransport(transport, RetryConfig.from_settings(settings), event_bus=bus)

    manager = SessionManager(InMemoryHistoryStore(), default_context=SessionContext.from_settings(settings))
    session = manager.create_session(title=workspace.name)
    orchestrator = AgentTurnOrchestrator(
        session,
        retrying,
        engine,
        registry,
        history_store=manager.store,
        config=OrchestratorConfig(
            max_rounds=max(1, settings.max_tool_rounds),
            streaming_enabled=settings.streaming_enabled,
        ),
        event_bus=bus,
        context_builder=DocumentContextBuilder(store),
    )

    bus.subscribe(StreamChunk, lambda event: _write(out, event.content))
    bus.subscribe(StreamRestarted, lambda event: _write(out, f"\n[connection lost, retrying (attempt {event.attempt})]\n"))
    bus.subscribe(NoticePosted, lambda event: _write(out, f"\n[{event.level}] {event.message}\n"))
    bus.subscribe(
        ToolExecuted,
        lambda event: _write(out, f"\n[tool] {event.tool_name}: {'ok' if event.success else event.error}\n"),
    )
    return ConsoleRuntime(
        orchestrator=orchestrator,
        engine=engine,
        registry=registry,
        transport=transport,
        event_bus=bus,
        streaming=settings.streaming_enabled,
    )


async def console_confirmation(request: ConfirmationRequest) -> bool:
    """Ask on the terminal whether a tool call may run."""

    print(f"\n{request.message}")
    answer = await asyncio.to_thread(input, f"Allow {request.display_name}? [y/N] ")
    return answer.strip().lower() in {"y", "yes"}


async def chat_loop(runtime: ConsoleRuntime, *, stream: TextIO | None = None) -> None:
    out = stream or sys.stdout
    orchestrator = runtime.orchestrator
    context = orchestrator.session.context
    _write(out, "Type a message, /tools, /attach PATH, /trust TOOL, /history or /quit.\n")
    while True:
        try:
            line = await asyncio.to_thread(input, _PROMPT)
        except EOFError:
            break
        message = line.strip()
        if not message:
            continue
        if message in {"/quit", "/exit"}:
            break
        if message == "/tools":
            _write(out, runtime.engine.describe_available_tools(context))
            continue
        if message == "/history":
            for record in runtime.engine.get_execution_history(orchestrator.session.session_id):
                _write(out, runtime.engine.format_execution(record) + "\n")
            continue
        if message.startswith("/attach "):
            context.attach(message.split(" ", 1)[1].strip())
            _write(out, f"Attached: {', '.join(context.attached_documents)}\n")
            continue
        if message.startswith("/trust "):
            context.trust_tool(message.split(" ", 1)[1].strip())
            continue

        _write(out, "inkwell> ")
        outcome = await orchestrator.run_turn(message)
        if outcome.status is TurnStatus.COMPLETED:
            _write(out, "\n" if runtime.streaming else f"{outcome.text}\n")
        elif outcome.status is TurnStatus.CANCELED:
            _write(out, "\n[canceled]\n")
        elif outcome.status is not TurnStatus.EMPTY_RESPONSE:
            _write(out, f"\n[error] {outcome.error}\n")


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point invoked by the `inkwell` console script."""

    args = _parse_cli_args(argv)
    debug = _env_flag("INKWELL_DEBUG", default=False)
    configure_logging(debug)

    settings_path = args.settings_path or os.environ.get("INKWELL_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    settings_store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        raise SystemExit(2) from exc

    settings = load_settings(resolved_path, store=settings_store, overrides=cli_overrides or None)

    if args.dump_settings:
        _dump_settings(settings, settings_store, overrides=cli_overrides)
        return

    if settings.debug_logging and not debug:
        configure_logging(True, force=True)

    workspace = Path(args.workspace or settings.workspace_path or Path.cwd()).expanduser()
    if not workspace.is_dir():
        print(f"Workspace {workspace} is not a directory", file=sys.stderr)
        raise SystemExit(2)
    if not settings.api_key:
        _LOGGER.warning("No API key configured; set INKWELL_API_KEY or use --set api_key=...")

    runtime = build_runtime(settings, workspace)
    try:
        asyncio.run(_run(runtime))
    except KeyboardInterrupt:  # pragma: no cover - manual shutdown path
        _LOGGER.info("Shutdown requested by user.")


async def _run(runtime: ConsoleRuntime) -> None:
    try:
        await chat_loop(runtime)
    finally:
        await runtime.transport.aclose()


def _write(stream: TextIO, text: str) -> None:
    stream.write(text)
    stream.flush()


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="inkwell",
        description="Chat with an AI assistant that can read and edit the documents in a workspace.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.inkwell/settings.json path.",
    )
    parser.add_argument(
        "--workspace",
        metavar="DIR",
        help="Directory the document tools operate on (defaults to the current directory).",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings for this run (repeatable).",
    )
    return parser.parse_args(argv)


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    fields = Settings.__dataclass_fields__  # type: ignore[attr-defined]
    type_hints = get_type_hints(Settings)
    for entry in items:
        if "=" not in entry:
            raise ValueError(f"Override '{entry}' must use KEY=VALUE syntax.")
        key, raw_value = entry.split("=", 1)
        key = key.strip()
        if not key:
            raise ValueError("Override is missing a field name.")
        if key not in fields:
            raise ValueError(f"Unknown setting '{key}'.")
        overrides[key] = _coerce_value(type_hints.get(key, fields[key].type), raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    if raw_value.lower() in {"none", "null"} and type(None) in get_args(annotation):
        return None
    target = _resolve_annotation(annotation)
    if target is str or target is Any:
        return raw_value
    if target is bool:
        return _parse_bool(raw_value)
    if target is int:
        return int(raw_value, 10)
    if target is float:
        return float(raw_value)
    if target in (list, dict):
        try:
            value = json.loads(raw_value or ("[]" if target is list else "{}"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"{target.__name__} overrides must be valid JSON") from exc
        if not isinstance(value, target):
            raise ValueError(f"Expected a JSON {target.__name__}")
        return value
    return raw_value


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    return args[0] if args else origin


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"Cannot coerce '{value}' to a boolean.")


def _dump_settings(
    settings: Settings,
    store: SettingsStore,
    *,
    overrides: Mapping[str, Any],
    stream: TextIO | None = None,
) -> None:
    destination = stream or sys.stdout
    payload = asdict(settings)
    payload["api_key"] = redact_secret(payload.get("api_key") or "")
    metadata = {
        "path": str(store.path),
        "secret_backend": store.vault.strategy,
        "cli_overrides": sorted(overrides),
        "environment_variables": sorted(name for name in os.environ if name.startswith("INKWELL_")),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


if __name__ == "__main__":  # pragma: no cover
    main()
