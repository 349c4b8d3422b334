"""
Tests for the namespace logging setup.
"""

from __future__ import annotations

import logging
import threading

import pytest

from statement_mapper.logging_setup import (
    LEVEL_ENV_VAR,
    ROOT_LOGGER_NAME,
    SourceFilter,
    configure_logging,
    document_context,
    get_logger,
)


@pytest.fixture(autouse=True)
def _restore_level():
    yield
    configure_logging(logging.WARNING)


class TestConfigureLogging:
    def test_child_loggers_share_namespace(self) -> None:
        assert get_logger("sniffer").name == f"{ROOT_LOGGER_NAME}.sniffer"

    def test_level_reapplied(self) -> None:
        root = configure_logging(logging.INFO)
        assert root.level == logging.INFO
        configure_logging(logging.ERROR)
        assert root.level == logging.ERROR

    def test_single_console_handler(self) -> None:
        root = configure_logging(logging.INFO)
        before = len(root.handlers)
        configure_logging(logging.INFO)
        assert len(root.handlers) == before

    def test_env_override(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(LEVEL_ENV_VAR, "debug")
        assert configure_logging(logging.WARNING).level == logging.DEBUG

    def test_bad_env_value_ignored(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv(LEVEL_ENV_VAR, "LOUD")
        assert configure_logging(logging.WARNING).level == logging.WARNING

    def test_log_file(self, tmp_path) -> None:
        path = tmp_path / "audit.log"
        configure_logging(logging.INFO, log_file=str(path))
        get_logger("test").info("written to file")
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()
        assert "written to file" in path.read_text(encoding="utf-8")


def _record() -> logging.LogRecord:
    return logging.LogRecord("statement_mapper.test", logging.INFO, __file__, 1, "msg", None, None)


class TestDocumentContext:
    def test_stage_records_carry_source(self, tmp_path) -> None:
        path = tmp_path / "audit.log"
        configure_logging(logging.INFO, log_file=str(path))
        with document_context("pyg-2024.csv"):
            get_logger("validator").warning("mapped %d lines", 3)
        get_logger("validator").warning("after the run")
        for handler in logging.getLogger(ROOT_LOGGER_NAME).handlers:
            handler.flush()

        text = path.read_text(encoding="utf-8")
        assert "[pyg-2024.csv] mapped 3 lines" in text
        assert "[-] after the run" in text

    def test_context_resets(self) -> None:
        record = _record()
        with document_context("a.csv"):
            with document_context("b.csv"):
                pass
            SourceFilter().filter(record)
        assert record.source == "a.csv"

    def test_context_is_per_thread(self) -> None:
        seen = []

        def worker() -> None:
            record = _record()
            SourceFilter().filter(record)
            seen.append(record.source)

        with document_context("main.csv"):
            thread = threading.Thread(target=worker)
            thread.start()
            thread.join()
        assert seen == ["-"]
