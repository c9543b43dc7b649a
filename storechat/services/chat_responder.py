"""Keyword chat responder.

WHAT:
    Answers a storefront chat message: stores the customer's message, picks
    related catalog documents by keyword overlap, and stores a canned reply.

WHY:
    Merchants get a working widget on day one without a language model. The
    reply table and retrieval are deliberately simple and deterministic.

DESIGN:
    - The message quota is checked once for two messages (customer + reply),
      so a rejected request never leaves an unanswered customer message.
    - Retrieval scores the merchant's most recently updated documents by how
      many distinct query words (3+ chars) they contain.
    - Replies come from an ordered keyword table; the first keyword that
      starts any word of the message wins.

REFERENCES:
    - storechat/services/conversation_service.py
    - storechat/services/ingestion_service.py (produces the documents)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from storechat.models import Conversation, Document, Merchant, MessageRoleEnum
from storechat.schemas import ChatRequest, MessageMetadata
from storechat.services.conversation_service import ConversationService, quota_error
from storechat.services.plan_quota import QuotaWindow

logger = logging.getLogger(__name__)

RESPONDER_MODEL = "keyword-v1"
CANDIDATE_DOCUMENTS = 20
MAX_CONTEXT_DOCUMENTS = 3
MIN_QUERY_WORD_LENGTH = 3

APOLOGY_REPLY = "I'm sorry, I'm having trouble processing your request right now. Please try again later."
QUOTA_REPLY = "I'm sorry, this store's chat assistant is unavailable right now. Please try again later."

# Checked in order
KEYWORD_REPLIES: List[Tuple[str, str]] = [
    ("hello", "Hello! Welcome to our store! How can I help you today?"),
    ("hi", "Hi there! I'm here to assist you with any questions about our products or services."),
    ("product", "I'd be happy to help you find the perfect product! Could you tell me what you're looking for?"),
    ("price", "I can help you with pricing information. Which product are you interested in?"),
    ("order", "I can help you with your order. Do you have an order number or need help placing a new order?"),
    ("shipping", "Our shipping information: We offer free shipping on orders over $50. Standard delivery takes 3-5 business days."),
    ("return", "Our return policy: You can return items within 30 days of purchase. Please contact us for a return authorization."),
    ("size", "I can help you with sizing information. What type of product are you looking at?"),
    ("color", "We have various colors available. Which product are you interested in?"),
    ("help", "I'm here to help! What would you like to know about our products or services?"),
    ("thank", "You're welcome! Is there anything else I can help you with?"),
    ("bye", "Thank you for visiting! Have a great day!"),
]
DEFAULT_REPLY = (
    "That's a great question! I'm here to help you with information about our products and services. "
    "Could you be more specific about what you're looking for?"
)

_WORD_RE = re.compile(r"[a-z0-9']+")


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


def _keyword_matches(keyword: str, words: List[str]) -> bool:
    # Short keywords must be whole words ("hi" must not match "shipping")
    if len(keyword) < MIN_QUERY_WORD_LENGTH:
        return keyword in words
    return any(word.startswith(keyword) for word in words)


def canned_reply(message: str) -> str:
    words = _words(message)
    for keyword, reply in KEYWORD_REPLIES:
        if _keyword_matches(keyword, words):
            return reply
    return DEFAULT_REPLY


def rank_documents(query: str, documents: List[Document], limit: int = MAX_CONTEXT_DOCUMENTS) -> List[Document]:
    """Order documents by distinct query-word hits, dropping those with none.

    Ties keep the incoming (most recently updated first) order.
    """
    terms = {word for word in _words(query) if len(word) >= MIN_QUERY_WORD_LENGTH}
    if not terms:
        return []

    scored = []
    for index, document in enumerate(documents):
        haystack = f"{document.title}\n{document.content}".lower()
        score = sum(1 for term in terms if term in haystack)
        if score > 0:
            scored.append((-score, index, document))

    scored.sort(key=lambda item: (item[0], item[1]))
    return [document for _, _, document in scored[:limit]]


@dataclass
class ChatResult:
    reply: str
    conversation: Conversation
    documents: List[Document] = field(default_factory=list)


class ChatResponder:
    """Handles one POST /chat request for a shop."""

    def __init__(self, db: Session, window: Optional[QuotaWindow] = None):
        self.db = db
        self.conversations = ConversationService(db, window)

    def respond(self, shop: str, request: ChatRequest) -> ChatResult:
        """Store the exchange and return the reply.

        Raises:
            QuotaExceededError: conversation or message quota reached
            DatastoreError: a write failed
        """
        # Checked before anything is written so a reject leaves no empty conversation
        decision = self.conversations.gate.can_send_message(shop, count=2)
        if not decision.allowed:
            logger.info("[CHAT] Message quota reject for %s (%s/%s)", shop, decision.used, decision.limit)
            raise quota_error(decision)

        conversation, _ = self.conversations.create_conversation(
            shop,
            request.session_id,
            customer_email=request.customer_email,
            customer_name=request.customer_name,
        )

        self.conversations.add_message(conversation, MessageRoleEnum.user, request.message)

        documents = self.find_documents(shop, request.message)
        reply = canned_reply(request.message)
        if documents:
            titles = ", ".join(document.title for document in documents)
            reply = f"{reply} You might find these helpful: {titles}."

        metadata = MessageMetadata(
            model=RESPONDER_MODEL,
            context_docs=len(documents),
            document_ids=[str(document.id) for document in documents],
        )
        self.conversations.add_message(conversation, MessageRoleEnum.assistant, reply, metadata)

        logger.info("[CHAT] Replied in %s for %s (context_docs=%d)", conversation.id, shop, len(documents))
        return ChatResult(reply=reply, conversation=conversation, documents=documents)

    def find_documents(self, shop: str, query: str) -> List[Document]:
        merchant = self.db.query(Merchant).filter(Merchant.shop == shop).first()
        if merchant is None:
            return []

        candidates = (
            self.db.query(Document)
            .filter(Document.merchant_id == merchant.id)
            .order_by(Document.updated_at.desc())
            .limit(CANDIDATE_DOCUMENTS)
            .all()
        )
        return rank_documents(query, candidates)
