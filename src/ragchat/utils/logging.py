"""Logging setup shared by the proxy server, the indexer and the chat client.

Each command writes its own rotating log file (``proxy.log``, ``index.log``,
``chat.log``) under the log directory, and every record is stamped with the
component that produced it. The proxy also pulls uvicorn's loggers into the
same handlers so request lines and application logs end up in one file.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path

__all__ = [
    "COMPONENTS",
    "ComponentFilter",
    "get_log_path",
    "route_uvicorn_logging",
    "setup_logging",
]

COMPONENTS: tuple[str, ...] = ("proxy", "index", "chat", "ragchat")
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(component)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_DEFAULT_LOG_DIR = Path.home() / ".ragchat" / "logs"
_CLIENT_LIBRARY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")
_UVICORN_LOGGERS: tuple[str, ...] = ("uvicorn", "uvicorn.error", "uvicorn.access")

_active_component: str | None = None
_log_path: Path | None = None


class ComponentFilter(logging.Filter):
    """Tags each record with the command that is running."""

    def __init__(self, component: str) -> None:
        super().__init__()
        self.component = component

    def filter(self, record: logging.LogRecord) -> bool:
        record.component = self.component
        return True


def setup_logging(
    component: str = "ragchat",
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    console_level: int | None = None,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Install root handlers for ``component`` and return its log file path.

    Calling again for the same component is a no-op unless ``force`` is set;
    switching component always rebuilds the handlers. ``console_level`` lets
    interactive commands keep the terminal quieter than the log file.
    """

    global _active_component, _log_path
    if component not in COMPONENTS:
        raise ValueError(f"Unknown logging component {component!r}")
    if _log_path is not None and _active_component == component and not force:
        return _log_path

    target_dir = _resolve_log_dir(log_dir)
    target_dir.mkdir(parents=True, exist_ok=True)
    log_path = target_dir / f"{component}.log"

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)
    tagger = ComponentFilter(component)

    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handlers: list[logging.Handler] = [file_handler]
    if console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level if console_level is None else max(level, console_level))
        handlers.append(console_handler)
    for handler in handlers:
        handler.addFilter(tagger)
        handler.setFormatter(formatter)
    file_handler.setLevel(level)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    _quiet_client_libraries(level)

    _active_component = component
    _log_path = log_path
    return log_path


def route_uvicorn_logging(level: int = logging.INFO) -> None:
    """Send uvicorn's server and access logs through the root handlers.

    Use together with ``uvicorn.run(..., log_config=None)`` so uvicorn does not
    install its own console handlers.
    """

    for name in _UVICORN_LOGGERS:
        logger = logging.getLogger(name)
        logger.handlers.clear()
        logger.propagate = True
        logger.setLevel(level)


def get_log_path() -> Path | None:
    """Return the file the active component is logging to, if configured."""

    return _log_path


def _resolve_log_dir(log_dir: Path | str | None) -> Path:
    return Path(log_dir or os.environ.get("RAGCHAT_LOG_DIR") or _DEFAULT_LOG_DIR).expanduser()


def _quiet_client_libraries(root_level: int) -> None:
    quiet_level = max(root_level, logging.WARNING)
    for name in _CLIENT_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)
