"""structlog setup shared by the in-process coordinator and the Temporal worker."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import IO

import structlog

from grocery.config import settings

_LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}


class _TeeWriter:
    """Mirror log lines to stdout and an append-only JSON lines file.

    A file that cannot be opened or written is dropped and logging carries on
    to stdout only.
    """

    def __init__(self, file_path: str) -> None:
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet
            print(
                f"WARNING: Could not open log file {file_path!r}: {exc}. "
                "Pipeline logs go to stdout only.",
                file=sys.stderr,
            )

    def _disable(self, action: str) -> None:
        self._file = None
        print(f"WARNING: Log file {action} failed. File logging disabled.", file=sys.stderr)

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is None:
            return
        try:
            self._file.write(data)
            self._file.flush()
        except (OSError, ValueError):
            self._disable("write")

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is None:
            return
        try:
            self._file.flush()
        except (OSError, ValueError):
            self._disable("flush")


def configure_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Configure structlog: console output in development, JSON lines elsewhere.

    ``level`` and ``log_file`` default to LOG_LEVEL / LOG_FILE from settings.
    """
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "development"
        else structlog.processors.JSONRenderer()
    )
    level_name = (level or settings.log_level).upper()
    target = settings.log_file if log_file is None else log_file

    logger_factory: structlog.types.WrappedLogger
    if target:
        logger_factory = structlog.PrintLoggerFactory(file=_TeeWriter(target))  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            _LOG_LEVEL_MAP.get(level_name, logging.INFO)
        ),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )


@contextmanager
def request_context(request_id: str, **extra: object) -> Iterator[None]:
    """Bind ``request_id`` (and any extra keys) to every log line in the block.

    Uses contextvars, so concurrent pipeline runs on one event loop keep
    their own ids.
    """
    with structlog.contextvars.bound_contextvars(request_id=request_id, **extra):
        yield
