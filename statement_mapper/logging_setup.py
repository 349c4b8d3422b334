"""
Logging for the ingestion audit trail.

All loggers live under the ``statement_mapper`` namespace and share one
console handler (plus an optional file handler).  Mapping decisions are
logged at INFO, unmapped labels and validation issues at WARNING, storage
failures at ERROR.

Records emitted by any stage while a document is processed, on the thread
processing it, carry its source name (``-`` outside a document), so
interleaved output from ``ingest_batch`` stays attributable::

    2024-03-01 10:00:00 | WARNING  | statement_mapper.validator | [pyg-2024.csv] ...

Store calls run on their own executor and log without a source.

``STATEMENT_MAPPER_LOG_LEVEL`` in the environment overrides the configured
level (e.g. ``DEBUG`` to see every alias lookup).
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional


ROOT_LOGGER_NAME = "statement_mapper"
LEVEL_ENV_VAR = "STATEMENT_MAPPER_LOG_LEVEL"

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-36s | [%(source)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_console: Optional[logging.Handler] = None
_file_handlers: dict = {}

_current_source: ContextVar[Optional[str]] = ContextVar(
    "statement_mapper_source", default=None
)


class SourceFilter(logging.Filter):
    """Stamps ``record.source`` with the document being processed."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.source = _current_source.get() or "-"
        return True


_source_filter = SourceFilter()


def _resolve_level(level: int) -> int:
    override = os.environ.get(LEVEL_ENV_VAR, "").strip().upper()
    if not override:
        return level
    if override.isdigit():
        return int(override)
    resolved = logging.getLevelName(override)
    return resolved if isinstance(resolved, int) else level


def configure_logging(
    level: int = logging.INFO,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Set up the ``statement_mapper`` namespace logger.

    Safe to call repeatedly: the console handler is installed once, the
    level is re-applied on every call and each distinct *log_file* gets a
    single ``FileHandler``.
    """
    global _console  # noqa: PLW0603

    level = _resolve_level(level)
    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)
    root.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    if _console is None:
        _console = logging.StreamHandler(sys.stdout)
        _console.setFormatter(formatter)
        _console.addFilter(_source_filter)
        root.addHandler(_console)
    _console.setLevel(level)

    if log_file and log_file not in _file_handlers:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        fh.addFilter(_source_filter)
        root.addHandler(fh)
        _file_handlers[log_file] = fh
    for fh in _file_handlers.values():
        fh.setLevel(level)

    return root


def get_logger(name: str) -> logging.Logger:
    """Return a child logger under the ``statement_mapper`` namespace."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


@contextmanager
def document_context(source: str) -> Iterator[None]:
    """Tag records logged in this block, on this thread, with *source*."""
    token = _current_source.set(source)
    try:
        yield
    finally:
        _current_source.reset(token)
