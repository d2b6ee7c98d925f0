"""Logging utilities for dockdiver."""

import logging
import sys
from typing import Optional
from urllib.parse import urlsplit, urlunsplit


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Chatty at INFO; their failures surface through our own errors.
NOISY_LOGGERS = ('requests', 'urllib3')


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    """Log to stderr, plus ``log_file`` when given; stdout is left to the JSON summary."""
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(LOG_FORMAT)

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=log_level, handlers=handlers)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def sanitize_url(url: str) -> str:
    """Mask credentials embedded in a URL before it is logged."""
    parts = urlsplit(url)
    if not parts.password and not parts.username:
        return url
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"***:***@{host}", parts.path, parts.query, parts.fragment))
