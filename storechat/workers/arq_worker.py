"""ARQ async worker for background ingestion.

WHAT:
    Processes catalog ingestion jobs enqueued by POST /merchant/ingest.
    Delegates all ingestion logic to DocumentIngestionService.

WHY:
    - Paging a full catalog takes far longer than a request may block
    - The IngestionJob row is the only coordination point between the API
      and the worker; the worker owns every status transition after `pending`

USAGE:
    # Start worker
    arq storechat.workers.arq_worker.WorkerSettings

    # Or use the start script
    python -m storechat.workers.start_arq_worker

REFERENCES:
    - https://arq-docs.helpmanual.io/
    - storechat/services/ingestion_service.py
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict
from uuid import UUID

from storechat.database import SessionLocal
from storechat.deps import get_settings
from storechat.models import IngestionJob, IngestionJobStatusEnum
from storechat.security import decrypt_secret
from storechat.services.ingestion_service import DocumentIngestionService
from storechat.services.shopify_client import ShopifyClient
from storechat.telemetry import capture_exception, init_sentry
from storechat.workers.arq_enqueue import QUEUE_NAME, get_redis_settings

logger = logging.getLogger(__name__)


# =============================================================================
# INGESTION JOB
# =============================================================================

async def process_ingestion_job(ctx: Dict, job_id: str) -> Dict:
    """Run one ingestion job.

    Args:
        ctx: ARQ context. Tests may supply `session_factory` and
             `shopify_client_factory` to replace the database and Shopify.
        job_id: IngestionJob UUID string

    Returns:
        Dict with success status and per-kind counts
    """
    logger.info("[ARQ] Starting ingestion job %s", job_id)

    session_factory = ctx.get("session_factory", SessionLocal)
    client_factory = ctx.get("shopify_client_factory", ShopifyClient)
    settings = get_settings()

    db = session_factory()
    try:
        job = db.query(IngestionJob).filter(IngestionJob.id == UUID(job_id)).first()
        if job is None:
            logger.warning("[ARQ] Ingestion job %s not found", job_id)
            return {"success": False, "error": "Job not found"}

        merchant = job.merchant
        try:
            access_token = decrypt_secret(merchant.access_token_enc or "", context=merchant.shop)
        except ValueError as exc:
            job.status = IngestionJobStatusEnum.failed
            job.error_message = f"Missing or unreadable access token: {exc}"
            job.completed_at = datetime.utcnow()
            db.commit()
            logger.error("[ARQ] Job %s: no usable access token for %s", job_id, merchant.shop)
            return {"success": False, "error": job.error_message}

        client = client_factory(merchant.shop, access_token, settings.SHOPIFY_API_VERSION)
        service = DocumentIngestionService(db, client, page_size=settings.INGEST_PAGE_SIZE)

        try:
            result = await service.run_job(merchant, job)
        except Exception as exc:
            capture_exception(exc, extra={"job_id": job_id, "shop": merchant.shop})
            return {"success": False, "error": job.error_message}

        return {
            "success": True,
            "products": result.products,
            "collections": result.collections,
            "pages": result.pages,
            "errors": result.errors,
        }
    finally:
        db.close()


# =============================================================================
# LIFECYCLE
# =============================================================================

async def startup(ctx: Dict) -> None:
    init_sentry()
    logger.info("[ARQ] Worker started")


async def shutdown(ctx: Dict) -> None:
    logger.info("[ARQ] Worker shutting down")


class WorkerSettings:
    """ARQ worker configuration.

    - max_jobs=10: Ingest up to 10 catalogs concurrently
    - job_timeout=1800: Large catalogs page slowly under Shopify's rate limit
    - max_tries=1: A failed job is marked failed; the merchant re-triggers it
    """

    functions = [process_ingestion_job]

    on_startup = startup
    on_shutdown = shutdown

    redis_settings = get_redis_settings()
    queue_name = QUEUE_NAME

    max_jobs = 10
    job_timeout = 1800
    max_tries = 1
    keep_result = 3600
