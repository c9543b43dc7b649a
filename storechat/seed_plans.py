"""Seed the subscription plan catalog.

USAGE:
    python -m storechat.seed_plans

Idempotent: existing plans are updated in place by name.
"""

import logging

from storechat.database import get_sync_session
from storechat.services.plan_service import seed_plans
from storechat.telemetry import configure_logging

logger = logging.getLogger(__name__)


def main() -> None:
    configure_logging()
    with get_sync_session() as db:
        stats = seed_plans(db)
    logger.info("[SEED] Plans seeded: %d created, %d updated", stats.created, stats.updated)


if __name__ == "__main__":
    main()
