"""Storefront chat endpoint.

WHAT:
    POST /chat stores the customer's message and returns the assistant reply.

WHY:
    The widget always needs something to show, so failures still carry a
    `reply` the widget can render in the chat bubble.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from storechat import schemas
from storechat.database import get_db
from storechat.deps import Settings, get_quota_window, get_settings
from storechat.exceptions import QuotaExceededError, StoreChatError
from storechat.routers.widget_config import resolve_request_shop
from storechat.services.chat_responder import APOLOGY_REPLY, QUOTA_REPLY, ChatResponder
from storechat.services.plan_quota import QuotaWindow
from storechat.telemetry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Storefront"])


@router.post("/chat", response_model=schemas.ChatResponse, summary="Send a chat message")
def chat(
    request: Request,
    payload: schemas.ChatRequest,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    window: QuotaWindow = Depends(get_quota_window),
):
    shop = resolve_request_shop(request, settings, body_shop=payload.shop)

    try:
        result = ChatResponder(db, window).respond(shop, payload)
    except QuotaExceededError as exc:
        body = exc.to_body()
        body["reply"] = QUOTA_REPLY
        return JSONResponse(status_code=exc.status_code, content=body)
    except Exception as exc:
        db.rollback()
        logger.exception("[CHAT] Failed to respond for %s", shop)
        if not isinstance(exc, StoreChatError):
            capture_exception(exc, extra={"shop": shop})
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to process message", "reply": APOLOGY_REPLY},
        )

    return schemas.ChatResponse(
        reply=result.reply,
        conversation_id=result.conversation.id,
        session_id=payload.session_id,
    )
