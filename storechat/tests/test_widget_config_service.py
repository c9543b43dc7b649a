"""Widget configuration tests

WHAT: Shop resolution, default documents, save validation and the storefront
      GET routes
WHY: The storefront must always receive a renderable document; admin saves
     must never persist a position the widget cannot render
REFERENCES:
    - storechat/services/widget_config_service.py
    - storechat/routers/widget_config.py
"""

import pytest

from storechat.exceptions import MissingShopError
from storechat.models import WidgetConfig
from storechat.schemas import DEFAULT_WIDGET_COLOR, WidgetConfigDocument, WidgetConfigUpdate
from storechat.services.embed_service import config_hash
from storechat.services.widget_config_service import (
    INVALID_POSITION_ERROR,
    document_from_row,
    get_config,
    resolve_shop,
    save_config,
)
from storechat.tests.conftest import SHOP


# ============================================================================
# Shop resolution
# ============================================================================

def test_resolve_shop_prefers_query_then_body_then_header():
    assert resolve_shop(query_shop="a.myshopify.com", body_shop="b.myshopify.com") == "a.myshopify.com"
    assert resolve_shop(body_shop="B.myshopify.com ", header_shop="c.myshopify.com") == "b.myshopify.com"
    assert resolve_shop(header_shop="c.myshopify.com", referer="https://d.myshopify.com/") == "c.myshopify.com"


def test_resolve_shop_from_referer_then_origin():
    assert resolve_shop(referer="https://acme.myshopify.com/products/hat", origin="https://x.myshopify.com") == SHOP
    assert resolve_shop(referer="https://www.acme.com/", origin="https://acme.myshopify.com") == SHOP


def test_resolve_shop_ignores_non_tenant_hosts():
    with pytest.raises(MissingShopError) as exc_info:
        resolve_shop(referer="https://www.acme.com/cart", origin="https://evil.example")

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Missing shop parameter"


def test_resolve_shop_strips_scheme_from_explicit_shop():
    assert resolve_shop(query_shop="https://acme.myshopify.com") == SHOP


# ============================================================================
# Reads
# ============================================================================

def test_storefront_read_of_unconfigured_shop_is_inactive_and_writes_nothing(test_db_session):
    document = get_config(test_db_session, SHOP)

    assert document.is_active is False
    assert document.title == "Support Chat"
    assert document.color == DEFAULT_WIDGET_COLOR
    assert document.position == "right"
    assert document.revision == 0
    assert test_db_session.query(WidgetConfig).count() == 0


def test_admin_read_creates_active_default(test_db_session):
    document = get_config(test_db_session, SHOP, create_if_missing=True)

    assert document.is_active is True
    assert document.revision == 1
    assert test_db_session.query(WidgetConfig).filter(WidgetConfig.shop == SHOP).count() == 1


def test_empty_columns_fall_back_to_defaults(test_db_session):
    row = WidgetConfig(shop=SHOP, revision=4, title="  ", color="not-a-color", position="top", greeting=None)
    test_db_session.add(row)
    test_db_session.commit()

    document = document_from_row(row)

    defaults = WidgetConfigDocument()
    assert document.title == defaults.title
    assert document.greeting == defaults.greeting
    assert document.color == DEFAULT_WIDGET_COLOR
    assert document.position == "right"
    assert document.revision == 4


# ============================================================================
# Saves
# ============================================================================

def test_save_is_full_upsert_with_defaults_for_blank_fields(test_db_session):
    result = save_config(test_db_session, SHOP, WidgetConfigUpdate(title="Ask us", color="#112233", greeting=""))

    assert result.success is True
    assert result.config.title == "Ask us"
    assert result.config.color == "#112233"
    assert result.config.greeting == WidgetConfigDocument().greeting
    assert result.config.is_active is True

    result = save_config(test_db_session, SHOP, WidgetConfigUpdate(position="left"))

    # Omitted fields reset to defaults rather than keeping the previous value
    assert result.config.title == "Support Chat"
    assert result.config.position == "left"
    assert result.config.revision == 2


def test_invalid_color_is_replaced_with_default(test_db_session):
    result = save_config(test_db_session, SHOP, WidgetConfigUpdate(color="red"))

    assert result.success is True
    assert result.config.color == DEFAULT_WIDGET_COLOR


def test_invalid_position_rejects_save(test_db_session):
    save_config(test_db_session, SHOP, WidgetConfigUpdate(title="Original"))

    result = save_config(test_db_session, SHOP, WidgetConfigUpdate(title="Changed", position="center"))

    assert result.success is False
    assert result.errors == [INVALID_POSITION_ERROR]
    assert result.config is None
    row = test_db_session.query(WidgetConfig).filter(WidgetConfig.shop == SHOP).one()
    assert row.title == "Original"
    assert row.revision == 1


def test_resave_of_identical_values_changes_hash(test_db_session):
    first = save_config(test_db_session, SHOP, WidgetConfigUpdate(title="Same")).config
    second = save_config(test_db_session, SHOP, WidgetConfigUpdate(title="Same")).config

    assert second.revision == first.revision + 1
    assert config_hash(first) != config_hash(second)


# ============================================================================
# Storefront routes
# ============================================================================

def test_get_widget_config_route_uses_camel_case_and_no_store(client, test_db_session):
    save_config(test_db_session, SHOP, WidgetConfigUpdate(title="Hello", agent_name="Robin"))

    response = client.get("/widget-config", params={"shop": SHOP})

    assert response.status_code == 200
    body = response.json()
    assert body["title"] == "Hello"
    assert body["agentName"] == "Robin"
    assert body["isActive"] is True
    assert "no-store" in response.headers["cache-control"]
    assert response.headers["access-control-allow-origin"] == "*"


def test_get_widget_config_resolves_shop_from_referer(client):
    response = client.get("/widget-config", headers={"Referer": "https://acme.myshopify.com/collections/all"})

    assert response.status_code == 200
    assert response.json()["shop"] == SHOP
    assert response.json()["isActive"] is False


def test_get_widget_config_without_shop_is_400(client):
    response = client.get("/widget-config")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Missing shop parameter"}


def test_hash_route_tracks_saves(client, test_db_session):
    before = client.get("/widget-config/hash", params={"shop": SHOP}).json()["hash"]
    save_config(test_db_session, SHOP, WidgetConfigUpdate(title="New"))
    after = client.get("/widget-config/hash", params={"shop": SHOP}).json()["hash"]

    assert len(before) == 32
    assert before != after
