"""Structured logging for DEX Bridge.

Console output goes through Rich and is always human readable; the optional
log file receives one JSON object per line so runs can be audited afterwards.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console
from rich.logging import RichHandler
from structlog.typing import EventDict, WrappedLogger

from dex_migration import __version__

APP_NAME = "dex-bridge"

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")

# Keys whose values never reach a log line
SENSITIVE_KEYS = (
    "token",
    "password",
    "secret",
    "authorization",
    "api_key",
    "access_token",
    "refresh_token",
    "slk",
    "birth_date",
    "date_of_birth",
)


def add_app_context(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every event with the application name and version."""
    event_dict["app"] = APP_NAME
    event_dict["version"] = __version__
    return event_dict


class JSONFileFormatter(logging.Formatter):
    """Render stdlib records as JSON lines for the log file.

    structlog has already rendered the event into the record message, so the
    formatter only strips terminal colour codes and wraps it.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname.lower(),
            "logger": record.name,
            "event": _ANSI_PATTERN.sub("", record.getMessage()),
            "app": APP_NAME,
            "version": __version__,
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


def configure_logging(
    level: str = "WARNING",
    log_format: str = "json",
    log_file: str | None = None,
    file_level: str | None = None,
    enable_colors: bool = True,
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        level: Console log level. Default: WARNING
        log_format: File format, 'json' or 'console'
        log_file: Optional path to a log file
        file_level: File log level (defaults to DEBUG)
        enable_colors: Colourize console output
    """
    console_level = getattr(logging, level.upper(), logging.WARNING)
    file_log_level = getattr(logging, (file_level or "DEBUG").upper(), logging.DEBUG)

    rich_handler = RichHandler(
        console=Console(stderr=True, no_color=not enable_colors),
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(console_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(rich_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(file_log_level)
        if log_format == "json":
            file_handler.setFormatter(JSONFileFormatter())
        else:
            file_handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(file_handler)

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        # RichHandler does the colouring
        structlog.dev.ConsoleRenderer(colors=False),
    ]

    # The filtering level must admit whatever the most verbose handler wants
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            min(console_level, file_log_level) if log_file else console_level
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, typically ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def log_api_request(
    logger: structlog.stdlib.BoundLogger,
    method: str,
    url: str,
    status_code: int | None = None,
    duration_ms: float | None = None,
    **extra: Any,
) -> None:
    """Log one DEX API call, choosing the level from the status code."""
    log_data: dict[str, Any] = {"method": method, "url": url, **extra}
    if status_code is not None:
        log_data["status_code"] = status_code
    if duration_ms is not None:
        log_data["duration_ms"] = round(duration_ms, 2)

    if status_code is None:
        logger.debug("api_request_started", **log_data)
    elif status_code < 400:
        logger.debug("api_request_success", **log_data)
    elif status_code < 500:
        logger.warning("api_request_client_error", **log_data)
    else:
        logger.warning("api_request_server_error", **log_data)


def log_migration_progress(
    logger: structlog.stdlib.BoundLogger,
    migration_id: int,
    processed: int,
    total: int,
    **extra: Any,
) -> None:
    """Log aggregate migration progress.

    Args:
        logger: Logger instance
        migration_id: Migration being reported on
        processed: Items processed so far
        total: Items expected in total
        **extra: Additional context to log
    """
    percentage = (processed / total * 100) if total > 0 else 0
    logger.info(
        "migration_progress",
        migration_id=migration_id,
        processed=processed,
        total=total,
        percentage=round(percentage, 2),
        **extra,
    )


def log_error(
    logger: structlog.stdlib.BoundLogger,
    error: Exception,
    context: str,
    **extra: Any,
) -> None:
    """Log an exception with its type and the operation it interrupted."""
    logger.error(
        "error_occurred",
        error_type=type(error).__name__,
        error_message=str(error),
        context=context,
        **extra,
        exc_info=True,
    )


def sanitize_payload(payload: Any, max_depth: int = 10) -> Any:
    """Return a copy of ``payload`` with sensitive values replaced by ``[REDACTED]``.

    Client records carry personal data (statistical linkage keys, birth
    dates) as well as credentials, so both are masked before a payload is
    written to the log.
    """
    if max_depth <= 0:
        return "[MAX_DEPTH_EXCEEDED]"

    if isinstance(payload, dict):
        sanitized = {}
        for key, value in payload.items():
            if any(sensitive in str(key).lower() for sensitive in SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, (dict, list)):
                sanitized[key] = sanitize_payload(value, max_depth - 1)
            else:
                sanitized[key] = value
        return sanitized

    if isinstance(payload, list):
        return [sanitize_payload(item, max_depth - 1) for item in payload]

    return payload


def truncate_payload(payload: Any, max_size: int = 10000) -> str:
    """Serialize ``payload`` for logging, cutting it at ``max_size`` characters."""
    try:
        payload_str = json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError):
        payload_str = str(payload)

    if len(payload_str) > max_size:
        return payload_str[:max_size] + f"\n... [TRUNCATED - {len(payload_str)} total chars]"
    return payload_str


def should_log_payloads(logger: structlog.stdlib.BoundLogger, log_payloads_enabled: bool) -> bool:
    """Payloads are logged only when enabled in config and DEBUG is active."""
    if not log_payloads_enabled:
        return False
    return logging.getLogger().isEnabledFor(logging.DEBUG) and any(
        handler.level <= logging.DEBUG for handler in logging.getLogger().handlers
    )
