"""Structured logging configuration using structlog."""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor

from .. import __version__


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with the application name and version."""
    event_dict["app"] = "resumeflow"
    event_dict["version"] = __version__
    return event_dict


def _renderers(log_format: str) -> list[Processor]:
    if log_format == "console":
        return [
            structlog.processors.ExceptionPrettyPrinter(),
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ]
    return [
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(ensure_ascii=False),
    ]


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: str | Path | None = None,
) -> None:
    """Setup structured logging with structlog.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format ("json" or "console")
        log_file: Optional log file path, written in addition to stdout
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list[Processor] = [
        # Job identifiers bound with job_log_context land on every entry
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_app_context,
        *_renderers(log_format),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    # force=True so the CLI can reconfigure after the import-time defaults
    logging.basicConfig(format="%(message)s", level=level, handlers=handlers, force=True)


def configure_from(config: dict[str, Any]) -> None:
    """Apply the ``logging`` section of a loaded configuration."""
    log_cfg = config.get("logging", {})
    setup_logging(
        log_level=log_cfg.get("level", "INFO"),
        log_format=log_cfg.get("format", "json"),
        log_file=log_cfg.get("file"),
    )


@contextmanager
def job_log_context(job_id: str, kind: str, resume_id: str | None = None) -> Iterator[None]:
    """Bind a queue job's identifiers to every entry logged inside the block.

    Context variables follow the running task (and ``asyncio.to_thread``), so
    extractor and AI client logs are attributed to the job that caused them.
    """
    with structlog.contextvars.bound_contextvars(job_id=job_id, job_kind=kind, resume_id=resume_id):
        yield


def get_logger(name: str | None = None) -> structlog.BoundLogger:
    """Get a structured logger instance.

    Example:
        logger = get_logger(__name__)
        logger.info("job_enqueued", job_id="123", kind="parse")
    """
    return structlog.get_logger(name)


# Defaults until the CLI (or an embedding application) reconfigures
setup_logging()
