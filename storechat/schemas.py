"""Pydantic schemas for request/response payloads.

Storefront and admin payloads use camelCase keys on the wire (the widget and
the embedded admin are JavaScript clients); Python code uses snake_case
attribute names. `CamelModel` handles the translation in both directions.
"""

from datetime import datetime
from typing import Optional, List, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import ConversationStatusEnum, IngestionJobStatusEnum, MessageRoleEnum


DEFAULT_WIDGET_COLOR = "#e63946"
DEFAULT_AVATAR_URL = "https://cdn.shopify.com/s/files/1/0780/7745/0100/files/default-avatar.png"


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# =============================================================================
# WIDGET CONFIGURATION
# =============================================================================

class WidgetConfigDocument(CamelModel):
    """Complete widget configuration as served to the storefront and admin.

    Every field is non-null; defaults apply wherever the stored row is empty.
    """

    shop: Optional[str] = Field(default=None, description="Shop domain the config belongs to")
    revision: int = Field(default=0, description="Save counter, 0 when never saved")

    title: str = Field(default="Support Chat", description="Header text of the chat panel")
    color: str = Field(default=DEFAULT_WIDGET_COLOR, description="Primary color as #RRGGBB")
    greeting: str = Field(default="👋 Welcome! How can we help you?", description="First bot message")
    position: Literal["left", "right"] = Field(default="right", description="Launcher corner")
    is_active: bool = Field(default=False, description="Whether the widget renders on the storefront")

    agent_name: str = "Assistant"
    agent_role: str = "Customer Support"
    response_length: str = "medium"
    language: str = "en"
    tone: str = "friendly"
    avatar: str = DEFAULT_AVATAR_URL

    color_scheme: str = "0"
    start_color: str = "#000000CF"
    end_color: str = "#000000"
    chat_bg_color: str = "#FFFFFF"
    font_family: str = "inter, sans-serif"
    font_color: str = "#000000CF"
    open_by_default: str = "1"
    is_pulsing: bool = False

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        json_schema_extra={
            "example": {
                "shop": "acme.myshopify.com",
                "revision": 3,
                "title": "Support Chat",
                "color": "#e63946",
                "position": "right",
                "isActive": True,
            }
        },
    )


class WidgetConfigUpdate(CamelModel):
    """Admin form submission. Missing fields fall back to defaults on save."""

    title: Optional[str] = None
    color: Optional[str] = None
    greeting: Optional[str] = None
    position: Optional[str] = None
    is_active: Optional[bool] = None

    agent_name: Optional[str] = None
    agent_role: Optional[str] = None
    response_length: Optional[str] = None
    language: Optional[str] = None
    tone: Optional[str] = None
    avatar: Optional[str] = None

    color_scheme: Optional[str] = None
    start_color: Optional[str] = None
    end_color: Optional[str] = None
    chat_bg_color: Optional[str] = None
    font_family: Optional[str] = None
    font_color: Optional[str] = None
    open_by_default: Optional[str] = None
    is_pulsing: Optional[bool] = None


class SaveConfigResult(CamelModel):
    success: bool
    errors: List[str] = Field(default_factory=list)
    config: Optional[WidgetConfigDocument] = None


class ConfigHashResponse(CamelModel):
    shop: str
    hash: str


# =============================================================================
# PLANS & QUOTAS
# =============================================================================

class QuotaDecision(CamelModel):
    """Outcome of a quota check. `limit`/`used` are set when a plan was evaluated."""

    allowed: bool
    reason: str
    limit: Optional[int] = None
    used: Optional[int] = None
    plan_name: Optional[str] = None


class UsageStats(CamelModel):
    conversations: int = 0
    messages: int = 0


class UpgradeSuggestion(CamelModel):
    type: Literal["conversations", "messages"]
    message: str
    current: int
    limit: int
    percentage: int


class PlanOut(CamelModel):
    name: str
    display_name: str
    price: float
    max_conversations: int
    max_messages: int
    features: List[str] = Field(default_factory=list)


class PlanStatusResponse(CamelModel):
    plan: Optional[PlanOut] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    usage: UsageStats
    suggestions: List[UpgradeSuggestion] = Field(default_factory=list)


class PlanChangeRequest(CamelModel):
    plan: str = Field(description="Plan name: free, starter, professional or enterprise")


# =============================================================================
# CONVERSATIONS
# =============================================================================

class MessageMetadata(CamelModel):
    """Structured metadata stored alongside assistant messages."""

    model: Optional[str] = None
    context_docs: int = 0
    document_ids: List[str] = Field(default_factory=list)


class ConversationActionRequest(CamelModel):
    """Multiplexed storefront POST body. `action` selects the operation."""

    action: Optional[str] = None
    shop: Optional[str] = None

    session_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None

    conversation_id: Optional[str] = None
    role: Optional[str] = None
    message: Optional[str] = None


class CreateConversationResponse(CamelModel):
    success: bool = True
    conversation_id: UUID
    created: bool


class SaveMessageResponse(CamelModel):
    success: bool = True
    message_id: UUID


class MessageOut(CamelModel):
    id: UUID
    role: MessageRoleEnum
    content: str
    metadata: Optional[MessageMetadata] = Field(default=None, validation_alias="message_metadata")
    created_at: datetime


class ConversationOut(CamelModel):
    id: UUID
    shop: str
    session_id: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    status: ConversationStatusEnum
    created_at: datetime
    updated_at: Optional[datetime] = None
    message_count: int = 0


class ConversationDetail(ConversationOut):
    messages: List[MessageOut] = Field(default_factory=list)


class ConversationDetailResponse(CamelModel):
    success: bool = True
    conversation: ConversationDetail


class ConversationListResponse(CamelModel):
    conversations: List[ConversationOut]
    total: int
    page: int
    limit: int
    total_pages: int


class ConversationStatusUpdate(CamelModel):
    status: ConversationStatusEnum


class ChatRequest(CamelModel):
    shop: Optional[str] = None
    session_id: str = Field(min_length=1, description="Storefront visitor session identifier")
    message: str = Field(min_length=1, description="Customer message text")
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None


class ChatResponse(CamelModel):
    reply: str
    conversation_id: UUID
    session_id: str


# =============================================================================
# INSTALL & INGESTION
# =============================================================================

class InstallRequest(CamelModel):
    access_token: str = Field(min_length=1, description="Offline Admin API access token")
    scope: Optional[str] = None


class InstallResponse(CamelModel):
    shop: str
    plan: Optional[str] = None
    widget_active: bool


class IngestionJobResponse(CamelModel):
    id: UUID
    status: IngestionJobStatusEnum
    progress: int
    total: int
    products: int
    collections: int
    pages: int
    errors: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class IngestionEnqueueResponse(CamelModel):
    job_id: UUID
    status: IngestionJobStatusEnum


# =============================================================================
# MISC
# =============================================================================

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status")

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok"
            }
        }
    }
