"""
Logging Configuration Module

Centralized logging configuration for the query plan engine. Every handler
gets the request id stamped onto its records and, unless disabled, a PII
redaction filter that masks identity tokens and credentials.
"""

import logging
import sys
from typing import Optional
from journal_query.security.pii_redactor import PIIRedactionFilter
from journal_query.utils.request_context import RequestContextFilter


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    enable_pii_redaction: bool = True
) -> logging.Logger:
    """
    Configure application logging with request correlation and PII redaction.

    Call once at process startup.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom format string. If None, uses default structured format.
        enable_pii_redaction: Whether to enable automatic PII redaction (default: True)

    Returns:
        Configured root logger instance

    Example:
        >>> logger = setup_logging(log_level="INFO")
        >>> logger.info("Logging configured successfully")
    """
    if log_format is None:
        log_format = (
            '%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] - '
            '%(filename)s:%(lineno)d - %(message)s'
        )

    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format, datefmt='%Y-%m-%d %H:%M:%S'))
    console_handler.addFilter(RequestContextFilter())

    if enable_pii_redaction:
        console_handler.addFilter(PIIRedactionFilter())

    root_logger.addHandler(console_handler)

    if enable_pii_redaction:
        root_logger.info("PII redaction filter enabled for all logs")

    return root_logger


def disable_pii_redaction() -> None:
    """
    Remove every PIIRedactionFilter from the active handlers.

    Development only: identity tokens will appear in clear text.
    """
    loggers = [logging.getLogger(name) for name in logging.root.manager.loggerDict]
    loggers.append(logging.getLogger())

    for logger in loggers:
        if not isinstance(logger, logging.Logger):
            continue
        for handler in logger.handlers:
            handler.filters = [
                f for f in handler.filters
                if not isinstance(f, PIIRedactionFilter)
            ]

    logging.warning("⚠️  PII redaction has been DISABLED - do not use in production!")
