from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

import pytest

from ragchat import app
from ragchat.utils import logging as logging_utils


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def _handlers(kind: type) -> list[logging.Handler]:
    return [handler for handler in logging.getLogger().handlers if type(handler) is kind]


def test_each_component_writes_its_own_tagged_file(tmp_path: Path) -> None:
    log_path = logging_utils.setup_logging("index", logging.DEBUG, log_dir=tmp_path, console=False)

    logging.getLogger("ragchat.test").info("indexed labs.pdf")
    _flush()

    assert log_path == tmp_path / "index.log"
    assert logging_utils.get_log_path() == log_path
    line = log_path.read_text(encoding="utf-8").strip()
    assert "| INFO     | index | ragchat.test | indexed labs.pdf" in line
    assert _handlers(logging.handlers.RotatingFileHandler)
    assert logging.getLogger("httpx").level == logging.WARNING


def test_same_component_is_not_reconfigured_without_force(tmp_path: Path) -> None:
    first = logging_utils.setup_logging("proxy", log_dir=tmp_path / "one", console=False)

    assert logging_utils.setup_logging("proxy", log_dir=tmp_path / "two", console=False) == first
    assert logging_utils.setup_logging("proxy", log_dir=tmp_path / "two", console=False, force=True) == (
        tmp_path / "two" / "proxy.log"
    )


def test_switching_component_rebuilds_handlers(tmp_path: Path) -> None:
    logging_utils.setup_logging("proxy", log_dir=tmp_path, console=False)

    chat_path = logging_utils.setup_logging("chat", log_dir=tmp_path, console=False)

    assert chat_path == tmp_path / "chat.log"
    (file_handler,) = _handlers(logging.handlers.RotatingFileHandler)
    assert Path(file_handler.baseFilename) == chat_path


def test_log_dir_defaults_to_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAGCHAT_LOG_DIR", str(tmp_path / "env-logs"))

    log_path = logging_utils.setup_logging(console=False)

    assert log_path == tmp_path / "env-logs" / "ragchat.log"


def test_unknown_component_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        logging_utils.setup_logging("worker", log_dir=tmp_path)


def test_console_level_only_limits_the_terminal(tmp_path: Path) -> None:
    logging_utils.setup_logging("chat", logging.DEBUG, log_dir=tmp_path, console_level=logging.WARNING)

    (console,) = _handlers(logging.StreamHandler)
    (file_handler,) = _handlers(logging.handlers.RotatingFileHandler)
    assert console.level == logging.WARNING
    assert file_handler.level == logging.DEBUG


def test_uvicorn_records_land_in_the_proxy_log(tmp_path: Path) -> None:
    log_path = logging_utils.setup_logging("proxy", log_dir=tmp_path, console=False)
    stray = logging.NullHandler()
    logging.getLogger("uvicorn.access").addHandler(stray)

    logging_utils.route_uvicorn_logging(logging.INFO)
    logging.getLogger("uvicorn.access").info('127.0.0.1 - "POST /chat HTTP/1.1" 200')
    _flush()

    access = logging.getLogger("uvicorn.access")
    assert stray not in access.handlers
    assert access.propagate is True
    assert '| proxy | uvicorn.access | 127.0.0.1 - "POST /chat HTTP/1.1" 200' in log_path.read_text(encoding="utf-8")


def test_configure_logging_maps_commands_to_components(tmp_path: Path) -> None:
    app.configure_logging(command="chat")
    (console,) = _handlers(logging.StreamHandler)
    assert logging_utils.get_log_path() == tmp_path / "logs" / "chat.log"
    assert console.level == logging.WARNING

    app.configure_logging(command="serve")
    assert logging_utils.get_log_path() == tmp_path / "logs" / "proxy.log"

    app.configure_logging(debug=True, force=True)
    assert logging_utils.get_log_path() == tmp_path / "logs" / "ragchat.log"
    assert logging.getLogger().level == logging.DEBUG
