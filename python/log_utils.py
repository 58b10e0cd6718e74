"""
Shared logging utilities for the Case Deduplication Engine

This module contains the log sanitization and handler setup used by
the engine, the repositories and the API layer.

SECURITY: User-supplied criteria (names, phones, IDs) must pass through
sanitize_for_logging() before they reach a log line.
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def sanitize_for_logging(text: Any) -> str:
    """Sanitize user input for safe logging, preventing log injection

    Removes newlines, carriage returns, and other control characters
    that could be used to inject fake log entries.

    Args:
        text: User input text

    Returns:
        Sanitized text safe for logging
    """
    if text is None or text == '':
        return ''
    # Remove newlines, carriage returns, and other control characters
    sanitized = re.sub(r'[\r\n\x00-\x1f\x7f-\x9f]', ' ', str(text))
    # Collapse multiple spaces
    sanitized = re.sub(r'\s+', ' ', sanitized).strip()
    # Truncate to reasonable length
    return sanitized[:500] if len(sanitized) > 500 else sanitized


def mask_identifier(value: Optional[str], visible: int = 4) -> str:
    """Mask a government ID or phone number for log output

    Keeps only the last `visible` characters, e.g. '******234F'.
    """
    if not value:
        return ''
    value = sanitize_for_logging(value)
    if len(value) <= visible:
        return '*' * len(value)
    return '*' * (len(value) - visible) + value[-visible:]


def summarize_criteria(criteria: Dict[str, Optional[str]]) -> Dict[str, str]:
    """Build a log-safe summary of search criteria.

    Names are sanitized; identifiers are masked.
    """
    summary = {}
    for key, value in criteria.items():
        if not value:
            continue
        if key == 'name':
            summary[key] = sanitize_for_logging(value)[:50]
        else:
            summary[key] = mask_identifier(value)
    return summary


def configure_logging(
    level: str = "INFO",
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = None,
    console: bool = True
) -> None:
    """Configure root logging handlers.

    Args:
        level: Logging level name (DEBUG, INFO, ...)
        log_format: Format string for all handlers
        log_file: Optional path of a log file (parent directories are created)
        console: Also log to stderr
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter = logging.Formatter(log_format)

    if console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding='utf-8')
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    logger.debug("Logging configured: level=%s file=%s", level, log_file)
