"""Command line entry point for the ragchat proxy and client."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Sequence, TextIO, get_args, get_origin, get_type_hints

import uvicorn

from .ai.orchestration.session import ChatSession, create_session, run_comparison
from .server.app import build_index, create_app
from .services.settings import Settings, SettingsStore, redact_secret
from .utils import logging as logging_utils

_TRUE_VALUES = {"1", "true", "yes", "on", "debug"}
_FALSE_VALUES = {"0", "false", "no", "off", "disabled"}
_LOGGER = logging.getLogger(__name__)


_COMMAND_COMPONENTS = {"serve": "proxy", "index": "index", "chat": "chat"}


def configure_logging(debug: bool = False, *, command: str | None = None, force: bool = False) -> None:
    """Configure logging for ``command``; each command logs to its own file."""

    level = logging.DEBUG if debug else logging.INFO
    component = _COMMAND_COMPONENTS.get(command or "", "ragchat")
    # Chat console shows warnings only.
    console_level = logging.WARNING if component == "chat" else None
    log_path = logging_utils.setup_logging(component, level, console_level=console_level, force=force)
    if component == "proxy":
        logging_utils.route_uvicorn_logging(level)
    _LOGGER.debug("Logging configured (level=%s, file=%s)", logging.getLevelName(level), log_path)


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


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point invoked by the `ragchat` console script."""

    args = _parse_cli_args(argv)
    debug = args.debug or _env_flag("RAGCHAT_DEBUG", default=False)
    command = None if args.dump_settings else args.command or "serve"
    configure_logging(debug, command=command)

    settings_path = args.settings_path or os.environ.get("RAGCHAT_SETTINGS_PATH")
    resolved_path = Path(settings_path).expanduser() if settings_path else None
    store = SettingsStore(resolved_path)
    try:
        cli_overrides = _coerce_cli_overrides(args.overrides or [])
    except ValueError as exc:
        print(f"Invalid --set override: {exc}", file=sys.stderr)
        return 2

    settings = load_settings(resolved_path, store=store, overrides=cli_overrides or None)
    if settings.debug_logging and not debug:
        configure_logging(True, command=command, force=True)

    if args.dump_settings:
        _dump_settings(settings, store, overrides=cli_overrides)
        return 0

    if command == "serve":
        return _serve(settings)
    if command == "index":
        return asyncio.run(_index(settings, args.paths, study_id=args.study_id))
    if command == "chat":
        return asyncio.run(_chat(settings, rag_enabled=not args.no_rag, compare=args.compare))
    raise AssertionError(f"Unhandled command {command!r}")


# -----------------------------------------------------------------------------
# Commands
# -----------------------------------------------------------------------------


def _serve(settings: Settings) -> int:
    if not settings.api_key:
        _LOGGER.warning("OPENAI_API_KEY is not configured; chat requests will fail with 500")
    app = create_app(settings)
    _LOGGER.info("Serving ragchat proxy on http://%s:%s", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)
    return 0


async def _index(settings: Settings, paths: Sequence[str], *, study_id: str | None) -> int:
    index = build_index(settings)
    if index is None:
        print("OPENAI_API_KEY is required to build embeddings.", file=sys.stderr)
        return 2
    target_study = study_id or settings.study_id
    failures = 0
    try:
        for raw_path in paths:
            path = Path(raw_path).expanduser()
            if path.suffix.lower() != ".pdf":
                _LOGGER.info("Skipping non-PDF file %s", path)
                continue
            result = await index.index_document(target_study, path.name, path.read_bytes())
            if not result.success:
                failures += 1
            print(json.dumps({"file": path.name, **result.to_payload()}))
    finally:
        index.close()
    return 1 if failures else 0


async def _chat(settings: Settings, *, rag_enabled: bool, compare: bool) -> int:
    def _session(enabled: bool) -> ChatSession:
        return create_session(
            proxy_url=settings.proxy_url,
            model=settings.model,
            rag_enabled=enabled,
            proxy_token=settings.proxy_token,
            max_iterations=settings.max_tool_iterations,
            temperature=settings.temperature if settings.temperature is not None else 0.0,
            request_timeout=settings.request_timeout,
        )

    sessions = [_session(True), _session(False)] if compare else [_session(rag_enabled)]
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, _prompt)
            if line is None or line.strip() in {"/quit", "/exit"}:
                break
            if line.strip() == "/reset":
                for session in sessions:
                    session.reset()
                continue
            replies = await run_comparison(sessions, line)
            for session, reply in zip(sessions, replies):
                if reply is None:
                    continue
                prefix = f"[{session.name}] " if compare else ""
                if session.rag_context is not None:
                    print(f"{prefix}(retrieved {session.rag_context.context_length} characters of context)")
                print(f"{prefix}{reply.content or ''}\n")
    finally:
        for session in sessions:
            await session.client.aclose()
    return 0


def _prompt() -> str | None:
    try:
        return input("> ")
    except EOFError:
        return None


# -----------------------------------------------------------------------------
# Argument parsing
# -----------------------------------------------------------------------------


def _parse_cli_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="ragchat",
        description="Run the retrieval-augmented chat proxy, index documents, or chat through it.",
    )
    parser.add_argument(
        "--dump-settings",
        action="store_true",
        help="Print the effective settings payload (with secrets redacted) and exit.",
    )
    parser.add_argument(
        "--settings-path",
        metavar="PATH",
        help="Override the default ~/.ragchat/settings.json path.",
    )
    parser.add_argument(
        "--set",
        dest="overrides",
        metavar="KEY=VALUE",
        action="append",
        default=[],
        help="Override persisted settings (repeatable).",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command")
    subparsers.add_parser("serve", help="Run the HTTP proxy (default).")

    index_parser = subparsers.add_parser("index", help="Index PDF files into the retrieval store.")
    index_parser.add_argument("paths", nargs="+", metavar="PDF")
    index_parser.add_argument("--study-id", help="Study to index into (defaults to settings.study_id).")

    chat_parser = subparsers.add_parser("chat", help="Chat with the health assistant through the proxy.")
    chat_parser.add_argument("--no-rag", action="store_true", help="Disable retrieval for this session.")
    chat_parser.add_argument(
        "--compare",
        action="store_true",
        help="Send every message to a retrieval-enabled and a retrieval-disabled session.",
    )
    return parser.parse_args(argv)


def _env_flag(name: str, *, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _coerce_cli_overrides(items: Sequence[str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if not items:
        return overrides

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
        annotation = type_hints.get(key, fields[key].type)
        overrides[key] = _coerce_value(annotation, raw_value.strip())
    return overrides


def _coerce_value(annotation: Any, raw_value: str) -> Any:
    target = _resolve_annotation(annotation)
    normalized = raw_value.strip()

    if target is str or target is Any:
        return normalized
    if normalized.lower() in {"none", "null"}:
        return None
    if target is bool:
        return _parse_bool(normalized)
    if target is int:
        return int(normalized, 10)
    if target is float:
        return float(normalized)
    if target is list:
        if normalized.startswith("["):
            try:
                return json.loads(normalized)
            except json.JSONDecodeError as exc:
                raise ValueError("List overrides must be valid JSON arrays") from exc
        return [item.strip() for item in normalized.split(",") if item.strip()]
    return normalized


def _resolve_annotation(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is None:
        return annotation
    if origin in {list, dict}:
        return origin
    args = [arg for arg in get_args(annotation) if arg is not type(None)]
    if not args:
        return origin
    return args[0]


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
    for secret in ("api_key", "proxy_token"):
        payload[secret] = redact_secret(payload.get(secret) or "")
    metadata = {
        "path": str(store.path),
        "cli_overrides": sorted(overrides.keys()),
        "environment_variables": _active_env_overrides(),
    }
    json.dump({"settings": payload, "meta": metadata}, destination, indent=2)
    destination.write("\n")


def _active_env_overrides() -> list[str]:
    names = {"OPENAI_API_KEY", "OUTPUT_RAG_CONTEXT"}
    return sorted(name for name in os.environ if name.startswith("RAGCHAT_") or name in names)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
