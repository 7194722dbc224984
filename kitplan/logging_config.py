import logging
import logging.config
import sys
import time
import uuid
from typing import Optional

import structlog

# Applied to structlog and stdlib records alike before rendering
SHARED_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
    structlog.processors.UnicodeDecoder(),
]

# Third-party loggers that are noisy at INFO
QUIET_LOGGERS = ("apscheduler", "sqlalchemy.engine", "werkzeug")


def configure_logging(log_level: str = "INFO", log_file: Optional[str] = None, json_console: bool = False):
    """
    Configure structured logging for the application.

    Console output is human-readable unless ``json_console`` is set; the
    optional rotating file always gets one JSON object per line.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file path. If None, logs to stdout only.
        json_console: Render console lines as JSON (log shippers)
    """
    log_level = (log_level or "INFO").upper()

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level, *SHARED_PROCESSORS,
                    structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    console_renderer = structlog.processors.JSONRenderer() if json_console \
        else structlog.dev.ConsoleRenderer(colors=False)

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "json" if json_console else "console",
            "stream": sys.stdout,
        }
    }
    if log_file:
        handlers["file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "json",
            "filename": log_file,
            "maxBytes": 10485760,  # 10MB
            "backupCount": 5,
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "console": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta, console_renderer],
                "foreign_pre_chain": SHARED_PROCESSORS,
            },
            "json": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                               structlog.processors.JSONRenderer()],
                "foreign_pre_chain": SHARED_PROCESSORS,
            },
        },
        "handlers": handlers,
        "root": {"level": log_level, "handlers": list(handlers)},
        "loggers": {name: {"level": "WARNING"} for name in QUIET_LOGGERS},
    })

    logger = structlog.get_logger("kitplan")
    logger.info("Logging configured", level=log_level, file=log_file)
    return logger


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class OperationContext:
    """
    Log the start, completion or failure of a multi-step operation.

    While the block runs, ``operation_id`` and ``operation`` are bound to the
    structlog context, so every log line emitted inside (by any module)
    carries them. Exceptions are never suppressed.

    Usage:
        with OperationContext("scenario_commit", scenario_id=scenario_id):
            ...
    """

    def __init__(self, operation_type: str, operation_id: Optional[str] = None, **context):
        self.operation_type = operation_type
        self.operation_id = operation_id or uuid.uuid4().hex[:8]
        self.context = context
        self.logger = get_logger("kitplan.operations")
        self._started = None
        self._bound = None

    def __enter__(self):
        self._bound = structlog.contextvars.bind_contextvars(
            operation=self.operation_type,
            operation_id=self.operation_id,
        )
        self._started = time.monotonic()
        self.logger.info("Operation started", **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = round(time.monotonic() - self._started, 3)
        try:
            if exc_type is None:
                self.logger.info("Operation completed", duration_seconds=duration, **self.context)
            else:
                self.logger.error(
                    "Operation failed",
                    duration_seconds=duration,
                    error_type=exc_type.__name__,
                    error_message=str(exc_val),
                    **self.context
                )
        finally:
            structlog.contextvars.reset_contextvars(**self._bound)
        return False
