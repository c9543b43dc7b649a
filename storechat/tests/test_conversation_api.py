"""Storefront conversation action tests

WHAT: POST /widget-config actions (create_conversation, save_message,
      get_conversation) end to end, including quota rejections
WHY: This is the widget's write path; it must be tenant-scoped and stop
     exactly at the plan limit
REFERENCES:
    - storechat/routers/widget_config.py
    - storechat/services/conversation_service.py
"""

import uuid
from datetime import datetime

import pytest

from storechat.exceptions import ValidationError
from storechat.models import Conversation, Message, MessageRoleEnum
from storechat.services.conversation_service import ConversationService, normalize_role
from storechat.tests.conftest import OTHER_SHOP, SHOP


def _action(client, action, shop=SHOP, **fields):
    return client.post("/widget-config", params={"shop": shop}, json={"action": action, **fields})


def _create(client, session_id="sess-1", shop=SHOP, **fields):
    return _action(client, "create_conversation", shop=shop, sessionId=session_id, **fields)


def _save(client, conversation_id, message="Hi there", role="user", shop=SHOP):
    return _action(
        client,
        "save_message",
        shop=shop,
        conversationId=str(conversation_id),
        role=role,
        message=message,
    )


# ============================================================================
# create_conversation
# ============================================================================

def test_create_conversation_is_find_or_create(client, test_db_session):
    first = _create(client, customerEmail="kim@example.com")
    second = _create(client)

    assert first.status_code == 200
    assert first.json()["success"] is True
    assert first.json()["created"] is True
    assert second.json()["created"] is False
    assert second.json()["conversationId"] == first.json()["conversationId"]

    conversation = test_db_session.query(Conversation).one()
    assert conversation.shop == SHOP
    assert conversation.customer_email == "kim@example.com"


def test_create_conversation_requires_session_id(client):
    response = _action(client, "create_conversation")

    assert response.status_code == 400
    assert response.json() == {"success": False, "error": "Missing required fields"}


def test_reusing_a_conversation_does_not_consume_quota(client, test_db_session, assign_plan, make_conversation):
    assign_plan(SHOP, "free")
    make_conversation(session_id="sess-1")
    for _ in range(99):
        make_conversation()

    response = _create(client, session_id="sess-1")
    assert response.status_code == 200
    assert response.json()["created"] is False

    rejected = _create(client, session_id="sess-new")
    assert rejected.status_code == 403
    assert rejected.json() == {
        "success": False,
        "error": "Conversation limit reached",
        "limit": 100,
        "used": 100,
        "plan": "Free",
    }


def test_shop_resolved_from_header_when_query_missing(client, test_db_session):
    response = client.post(
        "/widget-config",
        json={"action": "create_conversation", "sessionId": "sess-h"},
        headers={"X-Shopify-Shop-Domain": OTHER_SHOP},
    )

    assert response.status_code == 200
    assert test_db_session.query(Conversation).one().shop == OTHER_SHOP


def test_invalid_action(client):
    response = _action(client, "drop_tables")

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid action"


# ============================================================================
# save_message / get_conversation
# ============================================================================

def test_save_and_read_back_messages_in_order(client, test_db_session):
    conversation_id = _create(client).json()["conversationId"]

    assert _save(client, conversation_id, "Do you ship to Canada?", role="customer").status_code == 200
    assert _save(client, conversation_id, "Yes we do.", role="bot").status_code == 200
    assert _save(client, conversation_id, "Great, thanks").status_code == 200

    response = _action(client, "get_conversation", conversationId=conversation_id)

    assert response.status_code == 200
    detail = response.json()["conversation"]
    assert detail["messageCount"] == 3
    assert [m["content"] for m in detail["messages"]] == ["Do you ship to Canada?", "Yes we do.", "Great, thanks"]
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant", "user"]


@pytest.mark.parametrize("missing", ["conversationId", "role", "message"])
def test_save_message_requires_all_fields(client, missing):
    conversation_id = _create(client).json()["conversationId"]
    fields = {"conversationId": conversation_id, "role": "user", "message": "hello"}
    fields.pop(missing)

    response = _action(client, "save_message", **fields)

    assert response.status_code == 400
    assert response.json()["error"] == "Missing required fields"


def test_conversations_are_scoped_to_their_shop(client, test_db_session):
    conversation_id = _create(client, shop=OTHER_SHOP).json()["conversationId"]

    save = _save(client, conversation_id, shop=SHOP)
    read = _action(client, "get_conversation", conversationId=conversation_id)

    assert save.status_code == 404
    assert save.json()["error"] == "Conversation not found"
    assert read.status_code == 404
    assert test_db_session.query(Message).count() == 0


def test_unknown_conversation_id_is_404(client):
    response = _save(client, uuid.uuid4())

    assert response.status_code == 404


# ============================================================================
# End to end usage
# ============================================================================

def test_usage_after_one_conversation_and_three_messages(client, assign_plan, auth_headers):
    assign_plan(SHOP, "free")
    conversation_id = _create(client).json()["conversationId"]
    for text in ("one", "two", "three"):
        assert _save(client, conversation_id, text).status_code == 200

    usage = client.get("/merchant/usage", headers=auth_headers)

    assert usage.status_code == 200
    assert usage.json() == {"conversations": 1, "messages": 3}


def test_message_after_limit_is_rejected(client, test_db_session, assign_plan, make_conversation):
    assign_plan(SHOP, "free")
    conversation = make_conversation(session_id="sess-1", messages=999)

    last_allowed = _save(client, conversation.id, "message 1000")
    rejected = _save(client, conversation.id, "message 1001")

    assert last_allowed.status_code == 200
    assert rejected.status_code == 403
    assert rejected.json() == {
        "success": False,
        "error": "Message limit reached",
        "limit": 1000,
        "used": 1000,
        "plan": "Free",
    }
    assert test_db_session.query(Message).count() == 1000


# ============================================================================
# Service helpers
# ============================================================================

def test_normalize_role_aliases():
    assert normalize_role("customer") is MessageRoleEnum.user
    assert normalize_role("Bot") is MessageRoleEnum.assistant
    with pytest.raises(ValidationError):
        normalize_role("system")


def test_closed_conversation_is_not_reused(test_db_session, make_conversation, quota_window):
    from storechat.models import ConversationStatusEnum

    closed = make_conversation(session_id="sess-1", status=ConversationStatusEnum.closed)
    service = ConversationService(test_db_session, quota_window)

    conversation, created = service.create_conversation(SHOP, "sess-1")

    assert created is True
    assert conversation.id != closed.id


def test_messages_with_equal_timestamps_keep_insertion_order(test_db_session, make_conversation, quota_window):
    conversation = make_conversation(session_id="sess-1")
    service = ConversationService(test_db_session, quota_window)
    for text in ("first", "second", "third"):
        service.add_message(conversation, MessageRoleEnum.user, text)

    same_instant = datetime(2026, 3, 1, 12, 0)
    test_db_session.query(Message).update({Message.created_at: same_instant})
    test_db_session.commit()

    detail = service.get_conversation(SHOP, str(conversation.id))

    assert [message.content for message in detail.messages] == ["first", "second", "third"]
    stored = test_db_session.query(Message).order_by(Message.sequence).all()
    assert [message.sequence for message in stored] == [1, 2, 3]
