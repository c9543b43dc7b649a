"""SQLAlchemy ORM models and enums.

Every row that belongs to a merchant is partitioned by `shop`, the store's
`*.myshopify.com` domain. Usage quotas are derived by counting conversation
and message rows inside the current billing window, so there are no running
counters to keep in sync.
"""

import uuid
from datetime import datetime
import enum

from sqlalchemy import Column, String, DateTime, Enum, Integer, ForeignKey, Numeric, JSON, Text, Boolean, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, declarative_base


# Single Base used by the entire application
Base = declarative_base()


# Enums ---------------------------------------------------------

class ConversationStatusEnum(str, enum.Enum):
    active = "active"
    closed = "closed"
    archived = "archived"


class MessageRoleEnum(str, enum.Enum):
    user = "user"
    assistant = "assistant"


class DocumentSourceEnum(str, enum.Enum):
    product = "product"
    collection = "collection"
    page = "page"


class IngestionJobStatusEnum(str, enum.Enum):
    pending = "pending"      # Enqueued, worker has not picked it up yet
    running = "running"
    completed = "completed"
    failed = "failed"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


# Tenant models --------------------------------------------------

class Merchant(Base):
    """A Shopify store that installed the app.

    WHAT: One row per shop domain, holding the encrypted Admin API token
    WHY: Ingestion needs the token to read the catalog; the row is never
         hard-deleted so documents and jobs keep their owner after uninstall.
    """
    __tablename__ = "merchants"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, unique=True, index=True)

    # Fernet ciphertext (see storechat.security.encrypt_secret)
    access_token_enc = Column(Text, nullable=True)
    scope = Column(String, nullable=True)

    installed_at = Column(DateTime, default=datetime.utcnow)
    uninstalled_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    documents = relationship("Document", back_populates="merchant", cascade="all, delete-orphan")
    ingestion_jobs = relationship("IngestionJob", back_populates="merchant", cascade="all, delete-orphan")

    def __str__(self):
        return self.shop


class Plan(Base):
    """Subscription tier with monthly quotas.

    A limit of -1 means unlimited.
    """
    __tablename__ = "plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False, unique=True)  # free, starter, professional, enterprise
    display_name = Column(String, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    max_conversations = Column(Integer, nullable=False, default=100)
    max_messages = Column(Integer, nullable=False, default=1000)
    features = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    shop_plans = relationship("ShopPlan", back_populates="plan")

    def __str__(self):
        return self.display_name


class ShopPlan(Base):
    """Assignment of a plan to a shop for the current billing period."""
    __tablename__ = "shop_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, unique=True, index=True)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("plans.id"), nullable=False)

    current_period_start = Column(DateTime, nullable=False, default=datetime.utcnow)
    current_period_end = Column(DateTime, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    plan = relationship("Plan", back_populates="shop_plans")


class WidgetConfig(Base):
    """Per-shop chat widget settings.

    WHAT: Appearance, persona and style fields rendered by the storefront widget
    WHY: `revision` is bumped on every save so the embed content hash changes
         even when a merchant re-saves identical values.
    """
    __tablename__ = "widget_configs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, unique=True, index=True)
    revision = Column(Integer, nullable=False, default=1)

    # Appearance
    title = Column(String, nullable=True)
    color = Column(String, nullable=True)
    greeting = Column(Text, nullable=True)
    position = Column(String, nullable=True)  # left, right
    is_active = Column(Boolean, nullable=False, default=True)

    # Persona
    agent_name = Column(String, nullable=True)
    agent_role = Column(String, nullable=True)
    response_length = Column(String, nullable=True)
    language = Column(String, nullable=True)
    tone = Column(String, nullable=True)
    avatar = Column(String, nullable=True)

    # Style
    color_scheme = Column(String, nullable=True)
    start_color = Column(String, nullable=True)
    end_color = Column(String, nullable=True)
    chat_bg_color = Column(String, nullable=True)
    font_family = Column(String, nullable=True)
    font_color = Column(String, nullable=True)
    open_by_default = Column(String, nullable=True)
    is_pulsing = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Conversation(Base):
    """A storefront chat session.

    Counted toward the conversation quota by `created_at`.
    """
    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_shop_created", "shop", "created_at"),
        Index("ix_conversations_shop_session", "shop", "session_id"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    shop = Column(String, nullable=False, index=True)
    session_id = Column(String, nullable=False)
    customer_email = Column(String, nullable=True)
    customer_name = Column(String, nullable=True)
    status = Column(
        Enum(ConversationStatusEnum, name="conversationstatusenum", values_callable=_enum_values),
        nullable=False,
        default=ConversationStatusEnum.active,
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="[Message.created_at, Message.sequence]",
    )


class Message(Base):
    """Append-only chat message.

    Counted toward the message quota by its own `created_at`, joined to the
    owning conversation's shop.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id = Column(UUID(as_uuid=True), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    role = Column(
        Enum(MessageRoleEnum, name="messageroleenum", values_callable=_enum_values),
        nullable=False,
    )
    content = Column(Text, nullable=False)
    # Serialized storechat.schemas.MessageMetadata
    message_metadata = Column(JSON, nullable=True)
    # Position within the conversation; breaks created_at ties
    sequence = Column(Integer, nullable=False, default=0, server_default="0")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")


class Document(Base):
    """Searchable text derived from a Shopify product, collection or page.

    WHAT: Flattened catalog content used for keyword retrieval in chat replies
    WHY: Upserted by (merchant, source, source_id) so re-running ingestion
         refreshes content instead of duplicating it.
    """
    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("merchant_id", "source", "source_id", name="uq_document_source"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False, index=True)
    source = Column(
        Enum(DocumentSourceEnum, name="documentsourceenum", values_callable=_enum_values),
        nullable=False,
    )
    source_id = Column(String, nullable=False)  # gid://shopify/Product/xxx
    title = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    doc_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    merchant = relationship("Merchant", back_populates="documents")


class IngestionJob(Base):
    """Background catalog ingestion run.

    Counters and the error list are initialised at creation so a job that
    fails early still reports consistent values.
    """
    __tablename__ = "ingestion_jobs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    merchant_id = Column(UUID(as_uuid=True), ForeignKey("merchants.id"), nullable=False, index=True)
    job_type = Column(String, nullable=False, default="full")
    status = Column(
        Enum(IngestionJobStatusEnum, name="ingestionjobstatusenum", values_callable=_enum_values),
        nullable=False,
        default=IngestionJobStatusEnum.pending,
    )

    progress = Column(Integer, nullable=False, default=0)
    total = Column(Integer, nullable=False, default=0)
    products = Column(Integer, nullable=False, default=0)
    collections = Column(Integer, nullable=False, default=0)
    pages = Column(Integer, nullable=False, default=0)
    errors = Column(JSON, nullable=False, default=list)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    merchant = relationship("Merchant", back_populates="ingestion_jobs")
