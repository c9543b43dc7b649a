"""
Log filtering
=============

Every storefront tab polls `/widget-config/hash` every few seconds, and httpx
logs each Admin API request at INFO. Both drown out the `[TAG]` lines we
actually read. Instead of muting loggers wholesale, records are dropped by
predicate so the same logger still emits its warnings and errors.

Related files:
- storechat/main.py: calls configure_logging() before building the app
- storechat/workers/start_arq_worker.py: same for the worker process
"""

from __future__ import annotations

import logging
import sys
from typing import Callable, Iterable, Optional

Predicate = Callable[[logging.LogRecord], bool]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Paths hit by storefront polling; access log lines for them are noise
POLLING_PATHS = ("/widget-config/hash",)


class PredicateFilter(logging.Filter):
    """Drop records for which any predicate returns True."""

    def __init__(self, predicates: Iterable[Predicate]):
        super().__init__()
        self.predicates = list(predicates)

    def filter(self, record: logging.LogRecord) -> bool:
        return not any(predicate(record) for predicate in self.predicates)


def is_polling_access_log(record: logging.LogRecord) -> bool:
    if record.name != "uvicorn.access" or record.levelno > logging.INFO:
        return False
    message = record.getMessage()
    return any(path in message for path in POLLING_PATHS)


def is_httpx_request_log(record: logging.LogRecord) -> bool:
    return record.name.startswith("httpx") and record.levelno <= logging.INFO


DEFAULT_PREDICATES: tuple[Predicate, ...] = (is_polling_access_log, is_httpx_request_log)


def configure_logging(level: int = logging.INFO, predicates: Optional[Iterable[Predicate]] = None) -> PredicateFilter:
    """Configure root logging and attach the noise filter to its handlers.

    Returns the installed filter so callers can add predicates later.
    """
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    noise_filter = PredicateFilter(DEFAULT_PREDICATES if predicates is None else predicates)
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, PredicateFilter) for f in handler.filters):
            handler.addFilter(noise_filter)

    # uvicorn installs its own access handler
    for handler in logging.getLogger("uvicorn.access").handlers:
        if not any(isinstance(f, PredicateFilter) for f in handler.filters):
            handler.addFilter(noise_filter)

    return noise_filter
