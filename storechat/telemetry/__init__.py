"""
Telemetry Module
================

Observability for the StoreChat backend.

Components:
- sentry.py: Error tracking
- logging.py: Root logging setup with predicate-based noise filtering

Environment Variables:
- SENTRY_DSN: Sentry project DSN
- ENVIRONMENT: Environment name reported to Sentry

Usage:
    from storechat.telemetry import init_sentry, configure_logging

    configure_logging()
    init_sentry()
"""

from storechat.telemetry.sentry import (
    init_sentry,
    set_shop_context,
    capture_exception,
)
from storechat.telemetry.logging import (
    PredicateFilter,
    configure_logging,
)

__all__ = [
    "init_sentry",
    "set_shop_context",
    "capture_exception",
    "PredicateFilter",
    "configure_logging",
]
