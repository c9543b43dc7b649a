"""Conversation and message persistence.

WHAT:
    Creates storefront conversations, appends messages, and serves the
    conversation history used by both the widget and the merchant admin.

WHY:
    Every write is gated by the plan quota and scoped to the requesting shop,
    so one tenant can never read or write another tenant's conversations by
    guessing an id.

DESIGN:
    - create_conversation is find-or-create on (shop, session_id) among active
      conversations. Reusing an existing conversation does not consume quota.
    - The message gate is keyed by the conversation's own shop.
    - Inbound roles `customer`/`bot` are accepted as aliases of
      `user`/`assistant`.

REFERENCES:
    - storechat/services/plan_quota.py
    - storechat/routers/widget_config.py (storefront actions)
    - storechat/routers/merchant.py (admin history)
"""

import logging
import math
import uuid
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storechat.exceptions import DatastoreError, NotFoundError, QuotaExceededError, ValidationError
from storechat.models import Conversation, ConversationStatusEnum, Message, MessageRoleEnum
from storechat.schemas import (
    ConversationDetail,
    ConversationListResponse,
    ConversationOut,
    MessageMetadata,
    MessageOut,
    QuotaDecision,
)
from storechat.services.plan_quota import PlanQuotaGate, QuotaWindow

logger = logging.getLogger(__name__)

MISSING_FIELDS_ERROR = "Missing required fields"
NOT_FOUND_ERROR = "Conversation not found"
MAX_PAGE_SIZE = 100

ROLE_ALIASES = {
    "user": MessageRoleEnum.user,
    "customer": MessageRoleEnum.user,
    "assistant": MessageRoleEnum.assistant,
    "bot": MessageRoleEnum.assistant,
}


def normalize_role(role: Optional[str]) -> MessageRoleEnum:
    key = (role or "").strip().lower()
    if key not in ROLE_ALIASES:
        raise ValidationError(f"Invalid role: {role}")
    return ROLE_ALIASES[key]


def quota_error(decision: QuotaDecision) -> QuotaExceededError:
    return QuotaExceededError(decision.reason, decision.limit, decision.used, decision.plan_name)


class ConversationService:
    """Shop-scoped conversation operations.

    Usage:
        service = ConversationService(db, QuotaWindow())
        conversation, created = service.create_conversation(shop, session_id)
    """

    def __init__(self, db: Session, window: Optional[QuotaWindow] = None):
        self.db = db
        self.gate = PlanQuotaGate(db, window)

    # -------------------------------------------------------------------------
    # Storefront writes
    # -------------------------------------------------------------------------

    def create_conversation(
        self,
        shop: str,
        session_id: Optional[str],
        customer_email: Optional[str] = None,
        customer_name: Optional[str] = None,
    ) -> Tuple[Conversation, bool]:
        """Return the active conversation for the session, creating it if allowed.

        Raises:
            ValidationError: session_id missing
            QuotaExceededError: a new conversation would exceed the plan
        """
        if not session_id:
            raise ValidationError(MISSING_FIELDS_ERROR)

        existing = (
            self.db.query(Conversation)
            .filter(
                Conversation.shop == shop,
                Conversation.session_id == session_id,
                Conversation.status == ConversationStatusEnum.active,
            )
            .order_by(Conversation.created_at.desc())
            .first()
        )
        if existing is not None:
            return existing, False

        decision = self.gate.can_create_conversation(shop)
        if not decision.allowed:
            logger.info("[CONVERSATION] Quota reject for %s: %s (%s/%s)", shop, decision.reason, decision.used, decision.limit)
            raise quota_error(decision)

        conversation = Conversation(
            shop=shop,
            session_id=session_id,
            customer_email=customer_email,
            customer_name=customer_name,
            status=ConversationStatusEnum.active,
        )
        self.db.add(conversation)
        self._commit("create conversation")
        self.db.refresh(conversation)
        logger.info("[CONVERSATION] Created %s for %s", conversation.id, shop)
        return conversation, True

    def save_message(
        self,
        shop: str,
        conversation_id: Optional[str],
        role: Optional[str],
        content: Optional[str],
    ) -> Message:
        """Append a message to one of the shop's conversations.

        Raises:
            ValidationError: missing field or unknown role
            NotFoundError: conversation missing or owned by another shop
            QuotaExceededError: message quota reached
        """
        if not conversation_id or not role or not content:
            raise ValidationError(MISSING_FIELDS_ERROR)

        message_role = normalize_role(role)
        conversation = self.get_owned_conversation(shop, conversation_id)

        decision = self.gate.can_send_message(conversation.shop)
        if not decision.allowed:
            logger.info("[CONVERSATION] Message quota reject for %s (%s/%s)", conversation.shop, decision.used, decision.limit)
            raise quota_error(decision)

        return self.add_message(conversation, message_role, content)

    def add_message(
        self,
        conversation: Conversation,
        role: MessageRoleEnum,
        content: str,
        metadata: Optional[MessageMetadata] = None,
    ) -> Message:
        """Insert a message without a quota check. Callers gate first."""
        last_sequence = (
            self.db.query(func.coalesce(func.max(Message.sequence), 0))
            .filter(Message.conversation_id == conversation.id)
            .scalar()
        )
        message = Message(
            conversation_id=conversation.id,
            sequence=last_sequence + 1,
            role=role,
            content=content,
            message_metadata=metadata.model_dump() if metadata else None,
        )
        self.db.add(message)
        conversation.updated_at = datetime.utcnow()
        self._commit("save message")
        self.db.refresh(message)
        return message

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_owned_conversation(self, shop: str, conversation_id: str) -> Conversation:
        try:
            conversation_uuid = uuid.UUID(str(conversation_id))
        except ValueError:
            raise NotFoundError(NOT_FOUND_ERROR)

        conversation = (
            self.db.query(Conversation)
            .filter(Conversation.id == conversation_uuid, Conversation.shop == shop)
            .first()
        )
        if conversation is None:
            raise NotFoundError(NOT_FOUND_ERROR)
        return conversation

    def get_conversation(self, shop: str, conversation_id: Optional[str]) -> ConversationDetail:
        """Conversation with its messages in chronological order."""
        if not conversation_id:
            raise ValidationError(MISSING_FIELDS_ERROR)

        conversation = self.get_owned_conversation(shop, conversation_id)
        messages = (
            self.db.query(Message)
            .filter(Message.conversation_id == conversation.id)
            .order_by(Message.created_at.asc(), Message.sequence.asc())
            .all()
        )
        summary = ConversationOut.model_validate(conversation)
        return ConversationDetail(
            **summary.model_dump(exclude={"message_count"}),
            message_count=len(messages),
            messages=[MessageOut.model_validate(message) for message in messages],
        )

    def list_conversations(
        self,
        shop: str,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        status: Optional[ConversationStatusEnum] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> ConversationListResponse:
        """Paginated history, newest first.

        `date_to` is exclusive; the router passes the day after the
        requested end date so the whole end day is included.
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        query = self.db.query(Conversation).filter(Conversation.shop == shop)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Conversation.customer_email.ilike(pattern),
                Conversation.customer_name.ilike(pattern),
                Conversation.session_id.ilike(pattern),
            ))
        if status:
            query = query.filter(Conversation.status == status)
        if date_from:
            query = query.filter(Conversation.created_at >= date_from)
        if date_to:
            query = query.filter(Conversation.created_at < date_to)

        total = query.count()
        conversations = (
            query.order_by(Conversation.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

        counts = self._message_counts([c.id for c in conversations])
        items = []
        for conversation in conversations:
            item = ConversationOut.model_validate(conversation)
            item.message_count = counts.get(conversation.id, 0)
            items.append(item)

        return ConversationListResponse(
            conversations=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )

    # -------------------------------------------------------------------------
    # Admin writes
    # -------------------------------------------------------------------------

    def update_status(self, shop: str, conversation_id: str, status: ConversationStatusEnum) -> Conversation:
        conversation = self.get_owned_conversation(shop, conversation_id)
        conversation.status = status
        self._commit("update conversation status")
        self.db.refresh(conversation)
        logger.info("[CONVERSATION] %s status -> %s", conversation.id, status.value)
        return conversation

    def delete_conversation(self, shop: str, conversation_id: str) -> None:
        conversation = self.get_owned_conversation(shop, conversation_id)
        self.db.delete(conversation)
        self._commit("delete conversation")
        logger.info("[CONVERSATION] Deleted %s for %s", conversation_id, shop)

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _message_counts(self, conversation_ids: List[uuid.UUID]) -> Dict[uuid.UUID, int]:
        if not conversation_ids:
            return {}
        rows = (
            self.db.query(Message.conversation_id, func.count(Message.id))
            .filter(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
            .all()
        )
        return {conversation_id: count for conversation_id, count in rows}

    def _commit(self, operation: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("[CONVERSATION] Failed to %s: %s", operation, exc)
            raise DatastoreError(f"Failed to {operation}") from exc
