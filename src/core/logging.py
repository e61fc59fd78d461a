"""Structlog setup: console plus rotating JSON files.

The console renders colored key/value lines or JSON depending on
``log_format``. ``<app>.log`` receives everything at ``log_level`` and
``<app>.error.log`` only errors, both as JSON so progression and repair
events can be replayed later. Every event carries the bound request
context (request_id, user_id, trace_id).
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor

from src.core.context import get_context


if TYPE_CHECKING:
    from src.config.settings import Settings


_REDACTED_KEYS = ("authorization", "token", "secret", "password")

# Third-party loggers that stay at WARNING regardless of log_level
_QUIET_LOGGERS = ("uvicorn.access", "uvicorn.error", "cassandra", "httpx")


def add_request_context(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    for key, value in get_context().items():
        event_dict.setdefault(key, value)
    return event_dict


def redact_credentials(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Replace values of credential-like keys, e.g. a logged Authorization header."""

    def redact(key: str, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: redact(k, v) for k, v in value.items()}
        if isinstance(value, str) and any(k in key.lower() for k in _REDACTED_KEYS):
            return "[redacted]"
        return value

    return {key: redact(key, value) for key, value in event_dict.items()}


def service_stamp(settings: "Settings") -> Processor:
    stamp = {
        "app": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }

    def processor(
        logger: logging.Logger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        event_dict.update(stamp)
        return event_dict

    return processor


def shared_processors(settings: "Settings") -> list[Processor]:
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        add_request_context,
        service_stamp(settings),
        redact_credentials,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.log_include_caller_info:
        processors.append(
            structlog.processors.CallsiteParameterAdder(
                [
                    structlog.processors.CallsiteParameter.MODULE,
                    structlog.processors.CallsiteParameter.FUNC_NAME,
                    structlog.processors.CallsiteParameter.LINENO,
                ]
            )
        )
    return processors


def _rotating_file(path: Path, settings: "Settings", level: str) -> logging.Handler:
    handler = RotatingFileHandler(
        filename=path,
        maxBytes=settings.log_file_max_bytes,
        backupCount=settings.log_file_backup_count,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def configure_structlog(settings: "Settings", log_dir: Path | str | None = None) -> None:
    """Route structlog and stdlib logging to the console and log files."""
    log_dir = Path(log_dir or settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    pre_chain = shared_processors(settings)

    json_renderer = structlog.processors.JSONRenderer()
    console_renderer: Processor = (
        json_renderer
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    )

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(settings.log_level)
    handlers: list[tuple[logging.Handler, Processor]] = [
        (console, console_renderer),
        (
            _rotating_file(
                log_dir / f"{settings.app_name}.log", settings, settings.log_level
            ),
            json_renderer,
        ),
        (
            _rotating_file(log_dir / f"{settings.app_name}.error.log", settings, "ERROR"),
            json_renderer,
        ),
    ]

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(settings.log_level)
    for handler, renderer in handlers:
        handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    *([structlog.processors.format_exc_info]
                      if renderer is json_renderer else []),
                    renderer,
                ],
                foreign_pre_chain=pre_chain,
            )
        )
        root.addHandler(handler)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
