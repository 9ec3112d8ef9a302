# logging.py

import logging
import os
from logging.handlers import RotatingFileHandler

import structlog
from structlog.contextvars import merge_contextvars

from GridFlow.config import Settings


def _handler_level(settings: Settings | None, attr: str, default: str) -> str:
    if settings is None:
        return default
    value = getattr(settings, attr, None)
    return (value or default).upper()


def setup_logging(settings: Settings | None = None) -> None:
    """Initialize structlog + stdlib logging.

    Console and rotating file handlers each get their own level; ``NONE``
    disables a handler. Defaults: INFO level, console on, file to
    logs/gridflow.jsonl.
    """
    level_name = (settings.logging_level if settings else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)

    # Route Python warnings through logging so they are captured in JSON too
    logging.captureWarnings(True)

    # ProcessorFormatter renders BOTH structlog and stdlib/third-party logs as JSON
    processor_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.add_log_level,
            # Pull run-local context (e.g., import_id) from contextvars
            merge_contextvars,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=[
            structlog.processors.add_log_level,
            merge_contextvars,
        ],
    )

    root_handlers: list[logging.Handler] = []

    console_lvl_name = _handler_level(settings, "logging_console", level_name)
    if console_lvl_name != "NONE":
        ch = logging.StreamHandler()
        ch.setLevel(getattr(logging, console_lvl_name, level))
        ch.setFormatter(processor_formatter)
        root_handlers.append(ch)

    file_lvl_name = _handler_level(settings, "logging_file", level_name)
    if file_lvl_name != "NONE":
        path = settings.logging_file_path if settings is not None else "logs/gridflow.jsonl"
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        fh = RotatingFileHandler(
            path,
            maxBytes=(settings.logging_max_bytes if settings else 5_000_000),
            backupCount=(settings.logging_backup_count if settings else 5),
        )
        fh.setLevel(getattr(logging, file_lvl_name, level))
        fh.setFormatter(processor_formatter)
        root_handlers.append(fh)

    # Install root handlers; force=True to replace any prior configuration
    logging.basicConfig(level=level, handlers=root_handlers, force=True)

    # SQLAlchemy/aiosqlite loggers bubble up into our root handlers
    for name in ("sqlalchemy", "aiosqlite", "asyncio"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True

    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            # Hand off to ProcessorFormatter on handlers
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def redact_settings(settings: Settings) -> dict:
    """Return a settings dict safe for logging (database credentials masked)."""
    data = settings.model_dump()
    url = str(data.get("database_url") or "")
    if "@" in url and "://" in url:
        scheme, rest = url.split("://", 1)
        data["database_url"] = f"{scheme}://[REDACTED]@{rest.split('@', 1)[1]}"
    return data
