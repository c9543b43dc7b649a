#!/usr/bin/env python3
"""Start ARQ worker for ingestion jobs.

USAGE:
    python -m storechat.workers.start_arq_worker

    Or directly:
    arq storechat.workers.arq_worker.WorkerSettings
"""

import logging

from storechat.telemetry import configure_logging

logger = logging.getLogger(__name__)


def main():
    """Start the ARQ worker."""
    from arq import run_worker
    from storechat.workers.arq_worker import WorkerSettings

    configure_logging()
    logger.info("[ARQ] Starting ingestion worker...")
    run_worker(WorkerSettings)


if __name__ == "__main__":
    main()
