"""Widget configuration service.

WHAT:
    Resolves which shop a storefront request belongs to, reads the widget
    configuration for it, and validates and persists admin edits.

WHY:
    The storefront must always get a renderable document, even for shops that
    never opened the settings page, while admin saves must be complete and
    validated before they reach the embed layer.

DESIGN:
    - Reads never return nulls: empty columns fall back to the defaults
      declared on `WidgetConfigDocument`.
    - An un-configured shop gets an inactive default on the storefront
      (nothing is written) and an active default row on first admin read.
    - Saves are full upserts. An invalid color is silently replaced by the
      default; an invalid position rejects the whole save. The asymmetry is
      intentional: a wrong color still renders, a wrong position does not.
    - Every save bumps `revision`, which feeds the embed content hash.

REFERENCES:
    - storechat/routers/widget_config.py (storefront read)
    - storechat/routers/merchant.py (admin read/save)
    - storechat/services/embed_service.py (hash of the saved document)
"""

import logging
import re
from typing import Optional
from urllib.parse import urlparse

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storechat.exceptions import DatastoreError, MissingShopError
from storechat.models import WidgetConfig
from storechat.schemas import DEFAULT_WIDGET_COLOR, SaveConfigResult, WidgetConfigDocument, WidgetConfigUpdate

logger = logging.getLogger(__name__)

COLOR_PATTERN = re.compile(r"^#[0-9A-F]{6}$", re.IGNORECASE)
VALID_POSITIONS = ("left", "right")
INVALID_POSITION_ERROR = "Invalid position value"

# Columns written on every save (everything except identity and bookkeeping)
CONFIG_FIELDS = tuple(WidgetConfigUpdate.model_fields.keys())


# =============================================================================
# SHOP RESOLUTION
# =============================================================================

def _normalize_shop(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip().lower()
    if "://" in value:
        value = (urlparse(value).hostname or "").lower()
    return value or None


def _host_of(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    try:
        return (urlparse(url).hostname or "").lower() or None
    except ValueError:
        return None


def resolve_shop(
    query_shop: Optional[str] = None,
    body_shop: Optional[str] = None,
    header_shop: Optional[str] = None,
    referer: Optional[str] = None,
    origin: Optional[str] = None,
    suffix: str = ".myshopify.com",
) -> str:
    """Pick the tenant for a storefront request.

    Order: explicit `shop` (query, then body), `X-Shopify-Shop-Domain`
    header, then the Referer/Origin host when it is a tenant domain.

    Raises:
        MissingShopError: nothing resolved
    """
    for candidate in (query_shop, body_shop, header_shop):
        shop = _normalize_shop(candidate)
        if shop:
            return shop

    for url in (referer, origin):
        host = _host_of(url)
        if host and host.endswith(suffix):
            return host

    raise MissingShopError()


# =============================================================================
# READ
# =============================================================================

def document_from_row(row: WidgetConfig) -> WidgetConfigDocument:
    """Build a complete document from a stored row, filling empty columns."""
    defaults = WidgetConfigDocument()
    values = {"shop": row.shop, "revision": row.revision or 0, "is_active": bool(row.is_active)}

    for field in CONFIG_FIELDS:
        if field == "is_active":
            continue
        value = getattr(row, field)
        if value is None or (isinstance(value, str) and not value.strip()):
            value = getattr(defaults, field)
        values[field] = value

    if values["position"] not in VALID_POSITIONS:
        values["position"] = defaults.position
    if not COLOR_PATTERN.match(values["color"]):
        values["color"] = DEFAULT_WIDGET_COLOR

    return WidgetConfigDocument(**values)


def create_default_config(shop: str) -> WidgetConfig:
    """Unsaved row holding the active defaults for `shop`."""
    defaults = WidgetConfigDocument(is_active=True)
    row = WidgetConfig(shop=shop, revision=1)
    for field in CONFIG_FIELDS:
        setattr(row, field, getattr(defaults, field))
    return row


def get_config(db: Session, shop: str, *, create_if_missing: bool = False) -> WidgetConfigDocument:
    """Return the widget document for `shop`.

    Args:
        create_if_missing: Admin reads persist an active default row; storefront
            reads leave the database untouched and get an inactive default.
    """
    row = db.query(WidgetConfig).filter(WidgetConfig.shop == shop).first()
    if row is not None:
        return document_from_row(row)

    if not create_if_missing:
        return WidgetConfigDocument(shop=shop)

    row = create_default_config(shop)
    db.add(row)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("[WIDGET_CONFIG] Failed to create default config for %s: %s", shop, exc)
        raise DatastoreError("Failed to create widget configuration") from exc

    db.refresh(row)
    logger.info("[WIDGET_CONFIG] Created default config for %s", shop)
    return document_from_row(row)


# =============================================================================
# WRITE
# =============================================================================

def save_config(db: Session, shop: str, fields: WidgetConfigUpdate) -> SaveConfigResult:
    """Validate and upsert a full widget configuration.

    Returns `success=False` with errors when the position is invalid; nothing
    is written in that case.
    """
    defaults = WidgetConfigDocument(is_active=True)
    data = fields.model_dump()

    for key, value in data.items():
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            data[key] = getattr(defaults, key)
        else:
            data[key] = value

    if not COLOR_PATTERN.match(data["color"]):
        logger.info("[WIDGET_CONFIG] Replacing invalid color %r for %s", data["color"], shop)
        data["color"] = DEFAULT_WIDGET_COLOR

    if data["position"] not in VALID_POSITIONS:
        logger.info("[WIDGET_CONFIG] Rejecting save for %s: position=%r", shop, data["position"])
        return SaveConfigResult(success=False, errors=[INVALID_POSITION_ERROR])

    row = db.query(WidgetConfig).filter(WidgetConfig.shop == shop).first()
    if row is None:
        row = WidgetConfig(shop=shop, revision=0)
        db.add(row)

    for key in CONFIG_FIELDS:
        setattr(row, key, data[key])
    row.revision = (row.revision or 0) + 1

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("[WIDGET_CONFIG] Save failed for %s: %s", shop, exc)
        raise DatastoreError("Failed to save widget configuration") from exc

    db.refresh(row)
    logger.info("[WIDGET_CONFIG] Saved config for %s (revision=%d)", shop, row.revision)
    return SaveConfigResult(success=True, config=document_from_row(row))
