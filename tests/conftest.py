"""Shared pytest fixtures."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from ragchat.utils import logging as logging_utils

_ISOLATED_ENV = (
    "OPENAI_API_KEY",
    "OUTPUT_RAG_CONTEXT",
    "RAGCHAT_API_KEY",
    "RAGCHAT_BASE_URL",
    "RAGCHAT_MODEL",
    "RAGCHAT_EMBEDDING_MODEL",
    "RAGCHAT_INDEX_PATH",
    "RAGCHAT_STUDY_ID",
    "RAGCHAT_PROXY_TOKEN",
    "RAGCHAT_PROXY_URL",
    "RAGCHAT_HOST",
    "RAGCHAT_PORT",
    "RAGCHAT_DEBUG",
    "RAGCHAT_DEBUG_LOGGING",
    "RAGCHAT_REQUEST_TIMEOUT",
    "RAGCHAT_TEMPERATURE",
    "RAGCHAT_MAX_TOOL_ITERATIONS",
    "RAGCHAT_RETRIEVAL_LIMIT",
    "RAGCHAT_CORS_ORIGINS",
    "RAGCHAT_SETTINGS_PATH",
)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in _ISOLATED_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("RAGCHAT_LOG_DIR", str(tmp_path / "logs"))


@pytest.fixture(autouse=True)
def _fresh_logging(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(logging_utils, "_log_path", None)
    monkeypatch.setattr(logging_utils, "_active_component", None)
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if any(isinstance(item, logging_utils.ComponentFilter) for item in handler.filters):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture
def sample_history() -> list[dict[str, str]]:
    return [
        {"role": "system", "content": "You are helpful."},
        {"role": "user", "content": "What was my last cholesterol result?"},
    ]
