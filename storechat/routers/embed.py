"""Storefront embed script endpoint.

WHAT:
    GET /embed-script?shop= returns the widget JavaScript with the shop's
    configuration inlined.

WHY:
    The script tag URL never changes, so browsers and CDNs must not cache it;
    freshness comes from the inlined settings hash instead.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from storechat.database import get_db
from storechat.deps import Settings, get_settings
from storechat.routers.widget_config import NO_STORE_HEADERS, load_storefront_config, resolve_request_shop
from storechat.services.embed_service import config_hash, render_embed_script

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Storefront"])


@router.get(
    "/embed-script",
    response_class=Response,
    summary="Widget embed script",
    responses={200: {"content": {"application/javascript": {}}}},
)
def embed_script(
    request: Request,
    shop: Optional[str] = Query(default=None, description="Shop domain"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    resolved = resolve_request_shop(request, settings, query_shop=shop)
    document = load_storefront_config(db, resolved)

    script = render_embed_script(
        document,
        resolved,
        app_url=settings.APP_BASE_URL,
        poll_interval_ms=settings.EMBED_POLL_INTERVAL_MS,
    )

    headers = dict(NO_STORE_HEADERS)
    headers["ETag"] = f'"{config_hash(document)}"'
    return Response(content=script, media_type="application/javascript", headers=headers)
