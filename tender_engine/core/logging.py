"""Structured logging configuration for the Tender Analysis Engine."""

import logging
import sys
from typing import Any

# Context fields promoted to top-level keys when passed through ``extra``
CONTEXT_FIELDS = ("run_id", "notice_id", "agent", "provider", "section_id")


class StructuredFormatter(logging.Formatter):
    """key=value structured log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        if hasattr(record, "extra_data"):
            log_data.update(record.extra_data)

        line = " ".join(f"{k}={v}" for k, v in log_data.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_for_env() -> int:
    try:
        from tender_engine.core.config import get_settings

        return logging.DEBUG if get_settings().ENGINE_ENV == "dev" else logging.INFO
    except Exception:
        # Settings unavailable (missing env in scripts); stay at INFO
        return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())
        logger.propagate = False

    return logger


class RunLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps every record with a pipeline run context."""

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def get_run_logger(name: str, **context: Any) -> RunLoggerAdapter:
    """
    Get a logger bound to a run context (run_id, notice_id, ...).

    Example:
        >>> log = get_run_logger(__name__, run_id="abc", notice_id="25-12345")
        >>> log.info("Stage started", extra={"agent": "parser"})
    """
    return RunLoggerAdapter(get_logger(name), context)


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log with additional context fields.

    Known context fields (run_id, notice_id, agent, provider, section_id) become
    top-level keys, everything else is appended as free-form extra data.
    """
    extra: dict[str, Any] = {k: kwargs.pop(k) for k in CONTEXT_FIELDS if k in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
