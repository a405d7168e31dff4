"""
Logging for the invoice exchange core.

Console logs go through ContextAwareLogger, which renders extras as
pipe-delimited key=value pairs while keeping them on the record.
"""

import logging
import sys
from typing import Optional, Union

from ..config import get_config

_component_logger = None


class ContextAwareLogger:
    """
    Logger wrapper that formats extra attributes in message while preserving them.

    This keeps extras visible in console output even when a host application
    overrides the formatters.
    """

    def __init__(self, logger):
        """Initialize with an existing logger."""
        self.logger = logger

    def _log_with_formatted_extra(self, level, msg, **kwargs):
        extra = kwargs.pop("extra", {})

        if extra:
            extra_str = " | ".join([f"{k}={v}" for k, v in extra.items()])
            full_msg = f"{msg} | {extra_str}"
        else:
            full_msg = msg

        # LogRecord reserves these attribute names
        safe_extra = {k: v for k, v in extra.items() if k not in ("message", "asctime")}

        log_method = getattr(self.logger, level)
        log_method(full_msg, extra=safe_extra, **kwargs)

    def set_level(self, level):
        """Set the logging level of the underlying logger."""
        self.logger.setLevel(level)

    def info(self, msg, **kwargs):
        self._log_with_formatted_extra("info", msg, **kwargs)

    def error(self, msg, **kwargs):
        self._log_with_formatted_extra("error", msg, **kwargs)

    def warning(self, msg, **kwargs):
        self._log_with_formatted_extra("warning", msg, **kwargs)

    def debug(self, msg, **kwargs):
        self._log_with_formatted_extra("debug", msg, **kwargs)

    def exception(self, msg, **kwargs):
        self._log_with_formatted_extra("exception", msg, **kwargs)


class CorrelationIdFilter(logging.Filter):
    """Logging filter that stamps the current correlation id on each record."""

    def filter(self, record):
        # Lazy import to avoid circular dependency
        from ..exceptions import get_correlation_id

        correlation_id = get_correlation_id()
        if correlation_id:
            record.correlation_id = correlation_id

        return True


def mask_secret(value: Optional[str], visible: int = 5) -> str:
    """Return a loggable prefix of a token or secret."""
    if not value:
        return "missing"
    return f"{value[:visible]}... (len={len(value)})"


def configure_logging(
    component_name: str,
    log_level: Optional[Union[int, str]] = None,
) -> "ContextAwareLogger":
    """
    Configure console logging for a component (web handler, scheduled job).

    Args:
        component_name: Name of the component, used as the logger name suffix
        log_level: Logging level (default: from config)

    Returns:
        The configured logger wrapped with ContextAwareLogger
    """
    global _component_logger

    app_config = get_config()

    if log_level is None:
        log_level = app_config.logging.level

    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"invoice_exchange.{component_name}")
    logger.setLevel(log_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(app_config.logging.format))
    console_handler.addFilter(CorrelationIdFilter())

    logger.addHandler(console_handler)

    wrapped_logger = ContextAwareLogger(logger)

    wrapped_logger.info(
        "Component logger configured",
        extra={"component_name": component_name, "log_level": logging.getLevelName(log_level)},
    )
    _component_logger = wrapped_logger
    return wrapped_logger


def get_logger(
    log_level: Optional[Union[int, str]] = None,
) -> "ContextAwareLogger":
    """
    Get the component logger, or a wrapped package logger if none was configured.

    Args:
        log_level: Optional log level to set

    Returns:
        Logger instance
    """
    if _component_logger is not None:
        return _component_logger

    logger = logging.getLogger("invoice_exchange")

    if log_level is None:
        log_level = get_config().logging.level

    if isinstance(log_level, str):
        log_level = getattr(logging, log_level.upper(), logging.INFO)
    logger.setLevel(log_level)

    return ContextAwareLogger(logger)


def reset_logging() -> None:
    """Forget the configured component logger."""
    global _component_logger
    _component_logger = None
