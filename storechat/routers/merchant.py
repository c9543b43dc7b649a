"""Merchant admin endpoints.

WHAT:
    Everything the embedded admin does for the signed-in shop: install
    bootstrap, widget settings, plan and usage, conversation history, and
    catalog ingestion.

WHY:
    Every route is scoped by the shop in the App Bridge session token
    (storechat.deps.get_current_shop); no route accepts a shop parameter.

REFERENCES:
    - storechat/services/plan_service.py
    - storechat/services/widget_config_service.py
    - storechat/services/conversation_service.py
    - storechat/workers/arq_enqueue.py
"""

import logging
import uuid
from datetime import date, datetime, time, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from sqlalchemy.orm import Session

from storechat import schemas
from storechat.database import get_db
from storechat.deps import get_current_shop, get_quota_window
from storechat.exceptions import NotFoundError, UpstreamError
from storechat.models import ConversationStatusEnum, IngestionJob, IngestionJobStatusEnum, Merchant
from storechat.services import plan_service
from storechat.services.conversation_service import ConversationService
from storechat.services.plan_quota import PlanQuotaGate, QuotaWindow
from storechat.services.widget_config_service import get_config, save_config
from storechat.telemetry import capture_exception
from storechat.workers.arq_enqueue import enqueue_ingestion_job

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/merchant", tags=["Merchant"])

Enqueuer = Callable[[uuid.UUID], Awaitable[Dict[str, Any]]]


def get_ingestion_enqueuer() -> Enqueuer:
    """Queue backend for ingestion jobs (replaced by a fake in tests)."""
    return enqueue_ingestion_job


# =============================================================================
# INSTALL
# =============================================================================

@router.post("/install", response_model=schemas.InstallResponse, summary="Bootstrap a newly installed shop")
def install(
    payload: schemas.InstallRequest,
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    plan_service.install_shop(db, shop, payload.access_token, payload.scope)
    status_response = plan_service.get_plan_status(db, shop)
    config = get_config(db, shop)
    return schemas.InstallResponse(
        shop=shop,
        plan=status_response.plan.name if status_response.plan else None,
        widget_active=config.is_active,
    )


# =============================================================================
# WIDGET SETTINGS
# =============================================================================

@router.get("/widget-config", response_model=schemas.WidgetConfigDocument, summary="Current widget settings")
def read_widget_config(
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    return get_config(db, shop, create_if_missing=True)


@router.put("/widget-config", response_model=schemas.SaveConfigResult, summary="Save widget settings")
def update_widget_config(
    payload: schemas.WidgetConfigUpdate,
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    result = save_config(db, shop, payload)
    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=result.model_dump(mode="json", by_alias=True),
        )
    return result


# =============================================================================
# PLAN & USAGE
# =============================================================================

@router.get("/plans", response_model=list[schemas.PlanOut], summary="Available plans")
def read_plans(
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    return [
        schemas.PlanOut(
            name=plan.name,
            display_name=plan.display_name,
            price=float(plan.price),
            max_conversations=plan.max_conversations,
            max_messages=plan.max_messages,
            features=list(plan.features or []),
        )
        for plan in plan_service.list_plans(db)
    ]


@router.get("/plan", response_model=schemas.PlanStatusResponse, summary="Current plan, period and usage")
def read_plan(
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
    window: QuotaWindow = Depends(get_quota_window),
):
    return plan_service.get_plan_status(db, shop, window)


@router.put("/plan", response_model=schemas.PlanStatusResponse, summary="Switch plan")
def update_plan(
    payload: schemas.PlanChangeRequest,
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
    window: QuotaWindow = Depends(get_quota_window),
):
    plan_service.change_plan(db, shop, payload.plan, now=window.now())
    return plan_service.get_plan_status(db, shop, window)


@router.get("/usage", response_model=schemas.UsageStats, summary="Usage in the current month")
def read_usage(
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
    window: QuotaWindow = Depends(get_quota_window),
):
    return PlanQuotaGate(db, window).get_usage_stats(shop)


# =============================================================================
# CONVERSATION HISTORY
# =============================================================================

@router.get("/conversations", response_model=schemas.ConversationListResponse, summary="Conversation history")
def list_conversations(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    search: Optional[str] = Query(default=None, description="Matches email, name or session id"),
    conversation_status: Optional[ConversationStatusEnum] = Query(default=None, alias="status"),
    date_from: Optional[date] = Query(default=None, alias="dateFrom"),
    date_to: Optional[date] = Query(default=None, alias="dateTo", description="Inclusive"),
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    return ConversationService(db).list_conversations(
        shop,
        page=page,
        limit=limit,
        search=search,
        status=conversation_status,
        date_from=datetime.combine(date_from, time.min) if date_from else None,
        date_to=datetime.combine(date_to + timedelta(days=1), time.min) if date_to else None,
    )


@router.get("/conversations/{conversation_id}", response_model=schemas.ConversationDetail, summary="One conversation")
def read_conversation(
    conversation_id: str,
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    return ConversationService(db).get_conversation(shop, conversation_id)


@router.patch("/conversations/{conversation_id}", response_model=schemas.ConversationOut, summary="Change status")
def update_conversation_status(
    conversation_id: str,
    payload: schemas.ConversationStatusUpdate,
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    conversation = ConversationService(db).update_status(shop, conversation_id, payload.status)
    return schemas.ConversationOut.model_validate(conversation)


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete")
def delete_conversation(
    conversation_id: str,
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    ConversationService(db).delete_conversation(shop, conversation_id)


# =============================================================================
# INGESTION
# =============================================================================

def _job_response(job: IngestionJob) -> schemas.IngestionJobResponse:
    return schemas.IngestionJobResponse.model_validate(job)


@router.post(
    "/ingest",
    response_model=schemas.IngestionEnqueueResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Start catalog ingestion",
)
async def start_ingestion(
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
    enqueue: Enqueuer = Depends(get_ingestion_enqueuer),
):
    merchant = db.query(Merchant).filter(Merchant.shop == shop).first()
    if merchant is None:
        raise NotFoundError("Merchant not found")

    job = IngestionJob(merchant_id=merchant.id, status=IngestionJobStatusEnum.pending)
    db.add(job)
    db.commit()
    db.refresh(job)

    try:
        await enqueue(job.id)
    except (RedisError, OSError) as exc:
        job.status = IngestionJobStatusEnum.failed
        job.error_message = "Could not enqueue ingestion job"
        job.completed_at = datetime.utcnow()
        db.commit()
        logger.error("[INGEST] Enqueue failed for %s: %s", shop, exc)
        capture_exception(exc, extra={"shop": shop, "job_id": str(job.id)})
        raise UpstreamError("Ingestion queue unavailable", status_code=status.HTTP_503_SERVICE_UNAVAILABLE) from exc

    logger.info("[INGEST] Queued job %s for %s", job.id, shop)
    return schemas.IngestionEnqueueResponse(job_id=job.id, status=job.status)


@router.get("/ingest/{job_id}", response_model=schemas.IngestionJobResponse, summary="Ingestion job status")
def read_ingestion_job(
    job_id: str,
    shop: str = Depends(get_current_shop),
    db: Session = Depends(get_db),
):
    try:
        job_uuid = uuid.UUID(job_id)
    except ValueError:
        raise NotFoundError("Job not found")

    job = (
        db.query(IngestionJob)
        .join(Merchant, IngestionJob.merchant_id == Merchant.id)
        .filter(IngestionJob.id == job_uuid, Merchant.shop == shop)
        .first()
    )
    if job is None:
        raise NotFoundError("Job not found")
    return _job_response(job)
