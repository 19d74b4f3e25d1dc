"""Singleton logging configuration.

setup_logging() configures the root logger once and quiets the HTTP
stack, whose per-request INFO lines drown out acquisition events.
Idempotent (guarded by a module-level flag).
"""

import logging

LOG_FORMAT = "%(asctime)s - %(levelname)s - [%(name)s] - %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# Third-party loggers to suppress to WARNING
_SUPPRESSED_LOGGERS = (
    "httpx",
    "httpcore",
)

_configured = False


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger. Second call is a no-op."""
    global _configured  # noqa: PLW0603
    if _configured:
        return
    _configured = True

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
    )

    for name in _SUPPRESSED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
