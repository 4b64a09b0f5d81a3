"""structlog configuration shared by the API process and one-off scripts."""

from __future__ import annotations

import logging
import sys
from typing import IO, Any

import structlog

from listing_advisor.config import settings

_LOG_LEVEL_MAP: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Event keys whose values are credentials and must never reach a sink.
_SECRET_KEYS = frozenset(
    {"token", "access_token", "refresh_token", "client_secret", "authorization", "code"}
)


def redact_secrets(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Mask credential values that were bound to a log event by mistake."""
    for key in event_dict.keys() & _SECRET_KEYS:
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


class _TeeWriter:
    """Write to both stdout and a JSON-lines log file.

    If the file cannot be opened or a write fails, logging continues to
    stdout only.
    """

    def __init__(self, file_path: str) -> None:
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            # structlog is not configured yet
            print(
                f"WARNING: Could not open log file {file_path!r}: {exc}. "
                "Falling back to stdout-only logging.",
                file=sys.stderr,
            )

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is not None:
            try:
                self._file.write(data)
                self._file.flush()
            except (OSError, ValueError):
                self._file = None
                print("WARNING: Log file write failed. File logging disabled.", file=sys.stderr)

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is not None:
            try:
                self._file.flush()
            except (OSError, ValueError):
                self._file = None
                print("WARNING: Log file flush failed. File logging disabled.", file=sys.stderr)


def configure_logging() -> None:
    """Console renderer in development, JSON lines everywhere else."""
    renderer = (
        structlog.dev.ConsoleRenderer()
        if settings.environment == "development"
        else structlog.processors.JSONRenderer()
    )

    level = _LOG_LEVEL_MAP.get(settings.log_level.upper(), logging.INFO)

    logger_factory: structlog.types.WrappedLogger
    if settings.log_file:
        logger_factory = structlog.PrintLoggerFactory(file=_TeeWriter(settings.log_file))  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            redact_secrets,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )
