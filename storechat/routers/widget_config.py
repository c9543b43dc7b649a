"""Storefront widget configuration and conversation endpoints.

WHAT:
    - GET  /widget-config        configuration document for the widget
    - GET  /widget-config/hash   content hash polled by open storefront tabs
    - POST /widget-config        multiplexed conversation actions

WHY:
    The widget runs on any `*.myshopify.com` storefront without credentials,
    so these routes are public, CORS `*` (see StorefrontCORSMiddleware in
    storechat/main.py), and identify the tenant from the request itself.

REFERENCES:
    - storechat/services/widget_config_service.py
    - storechat/services/conversation_service.py
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storechat import schemas
from storechat.database import get_db
from storechat.deps import Settings, get_quota_window, get_settings
from storechat.exceptions import StoreChatError, ValidationError
from storechat.services.conversation_service import ConversationService
from storechat.services.embed_service import config_hash
from storechat.services.plan_quota import QuotaWindow
from storechat.services.widget_config_service import get_config, resolve_shop
from storechat.telemetry import capture_exception

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Storefront"])

NO_STORE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

ACTION_CREATE_CONVERSATION = "create_conversation"
ACTION_SAVE_MESSAGE = "save_message"
ACTION_GET_CONVERSATION = "get_conversation"


def resolve_request_shop(
    request: Request,
    settings: Settings,
    query_shop: Optional[str] = None,
    body_shop: Optional[str] = None,
) -> str:
    return resolve_shop(
        query_shop=query_shop,
        body_shop=body_shop,
        header_shop=request.headers.get("x-shopify-shop-domain"),
        referer=request.headers.get("referer"),
        origin=request.headers.get("origin"),
        suffix=settings.TENANT_DOMAIN_SUFFIX,
    )


def load_storefront_config(db: Session, shop: str) -> schemas.WidgetConfigDocument:
    """Stored config, or the inactive default when the read fails."""
    try:
        return get_config(db, shop)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("[WIDGET_CONFIG] Read failed for %s, serving defaults: %s", shop, exc)
        capture_exception(exc, extra={"shop": shop})
        return schemas.WidgetConfigDocument(shop=shop)


@router.get(
    "/widget-config",
    response_model=schemas.WidgetConfigDocument,
    summary="Widget configuration for a storefront",
)
def read_widget_config(
    request: Request,
    response: Response,
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    """Always 200 once the shop resolves: un-configured shops get inactive defaults."""
    resolved = resolve_request_shop(request, settings, query_shop=shop)
    response.headers.update(NO_STORE_HEADERS)
    return load_storefront_config(db, resolved)


@router.get(
    "/widget-config/hash",
    response_model=schemas.ConfigHashResponse,
    summary="Content hash of the widget configuration",
)
def read_widget_config_hash(
    request: Request,
    response: Response,
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    resolved = resolve_request_shop(request, settings, query_shop=shop)
    response.headers.update(NO_STORE_HEADERS)
    document = load_storefront_config(db, resolved)
    return schemas.ConfigHashResponse(shop=resolved, hash=config_hash(document))


@router.post(
    "/widget-config",
    summary="Conversation actions from the storefront widget",
    description="""
    Multiplexed on `action`:
    - `create_conversation` (sessionId, customerEmail?, customerName?)
    - `save_message` (conversationId, role, message)
    - `get_conversation` (conversationId)

    Quota rejections return 403 with `limit`, `used` and `plan`.
    """,
)
def widget_conversation_action(
    request: Request,
    payload: schemas.ConversationActionRequest,
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
    window: QuotaWindow = Depends(get_quota_window),
):
    resolved = resolve_request_shop(request, settings, query_shop=shop, body_shop=payload.shop)
    service = ConversationService(db, window)

    try:
        if payload.action == ACTION_CREATE_CONVERSATION:
            conversation, created = service.create_conversation(
                resolved,
                payload.session_id,
                customer_email=payload.customer_email,
                customer_name=payload.customer_name,
            )
            return schemas.CreateConversationResponse(conversation_id=conversation.id, created=created)

        if payload.action == ACTION_SAVE_MESSAGE:
            message = service.save_message(resolved, payload.conversation_id, payload.role, payload.message)
            return schemas.SaveMessageResponse(message_id=message.id)

        if payload.action == ACTION_GET_CONVERSATION:
            detail = service.get_conversation(resolved, payload.conversation_id)
            return schemas.ConversationDetailResponse(conversation=detail)

        raise ValidationError("Invalid action")

    except StoreChatError:
        raise
    except Exception as exc:
        db.rollback()
        logger.exception("[WIDGET_CONFIG] Action %r failed for %s", payload.action, resolved)
        capture_exception(exc, extra={"shop": resolved, "action": payload.action})
        raise StoreChatError("Internal server error") from exc
