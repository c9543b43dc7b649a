"""Plan quota gate.

WHAT:
    Decides whether a shop may open another conversation or store more
    messages in the current billing window, and reports usage against the
    plan's limits.

WHY:
    Every storefront write goes through this gate before touching the
    database. Usage is derived by counting rows inside the window, so there is
    no counter to drift and nothing to reset at month end.

DESIGN:
    - Window: [first instant of the current UTC calendar month, now).
      Rows stamped at or after "now" are outside it.
      The clock is injectable so tests can pin the window.
    - No plan row means no restrictions (fail open).
    - A limit of -1 means unlimited.
    - Closed interval: a request for `count` items is rejected when
      `used + count > limit`, so with count=1 the request after `used == limit`
      is the first one refused.
    - Database errors while checking fail open too. They are logged and sent
      to Sentry, and the request proceeds.
    - The gate is a pure read. Check-then-act is not atomic, so concurrent
      requests can overshoot a limit by at most the number of racers.

REFERENCES:
    - storechat/services/conversation_service.py (primary consumer)
    - storechat/services/plan_service.py (plan catalog and assignment)
"""

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from storechat.models import Conversation, Message, ShopPlan
from storechat.schemas import QuotaDecision, UpgradeSuggestion, UsageStats
from storechat.telemetry import capture_exception

logger = logging.getLogger(__name__)

UNLIMITED = -1
UPGRADE_THRESHOLD_PERCENT = 80

REASON_NO_PLAN = "No plan restrictions"
REASON_UNLIMITED = "Unlimited plan"
REASON_WITHIN_LIMITS = "Within limits"
REASON_ERROR = "Error checking limits"
REASON_CONVERSATION_LIMIT = "Conversation limit reached"
REASON_MESSAGE_LIMIT = "Message limit reached"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class QuotaWindow:
    """Current billing window as naive UTC datetimes.

    Args:
        clock: Callable returning "now" (naive UTC). Defaults to the wall clock.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow

    def now(self) -> datetime:
        return self._clock()

    def bounds(self) -> Tuple[datetime, datetime]:
        now = self.now()
        start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return start, now

    @property
    def start(self) -> datetime:
        return self.bounds()[0]


class PlanQuotaGate:
    """Quota checks for one shop-scoped request.

    Usage:
        gate = PlanQuotaGate(db, QuotaWindow())
        decision = gate.can_create_conversation("acme.myshopify.com")
        if not decision.allowed:
            ...
    """

    def __init__(self, db: Session, window: Optional[QuotaWindow] = None):
        self.db = db
        self.window = window or QuotaWindow()

    # -------------------------------------------------------------------------
    # Decisions
    # -------------------------------------------------------------------------

    def can_create_conversation(self, shop: str) -> QuotaDecision:
        try:
            shop_plan = self._get_shop_plan(shop)
            if shop_plan is None:
                return QuotaDecision(allowed=True, reason=REASON_NO_PLAN)

            plan = shop_plan.plan
            used = None
            if plan.max_conversations != UNLIMITED:
                used = self._count_conversations(shop)
            return self._decide(plan.max_conversations, used, 1, plan.display_name, REASON_CONVERSATION_LIMIT)
        except SQLAlchemyError as exc:
            return self._fail_open(exc, shop, "conversation")

    def can_send_message(self, shop: str, count: int = 1) -> QuotaDecision:
        """Check whether `count` more messages fit in the window.

        The chat endpoint asks for two at once (customer message plus reply)
        so a conversation never ends up with an unanswered message.
        """
        try:
            shop_plan = self._get_shop_plan(shop)
            if shop_plan is None:
                return QuotaDecision(allowed=True, reason=REASON_NO_PLAN)

            plan = shop_plan.plan
            used = None
            if plan.max_messages != UNLIMITED:
                used = self._count_messages(shop)
            return self._decide(plan.max_messages, used, count, plan.display_name, REASON_MESSAGE_LIMIT)
        except SQLAlchemyError as exc:
            return self._fail_open(exc, shop, "message")

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_usage_stats(self, shop: str) -> UsageStats:
        try:
            return UsageStats(
                conversations=self._count_conversations(shop),
                messages=self._count_messages(shop),
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("[QUOTA] Failed to load usage for %s: %s", shop, exc)
            capture_exception(exc, extra={"shop": shop, "operation": "usage_stats"})
            return UsageStats()

    def has_feature(self, shop: str, feature: str) -> bool:
        try:
            shop_plan = self._get_shop_plan(shop)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("[QUOTA] Feature check failed for %s: %s", shop, exc)
            capture_exception(exc, extra={"shop": shop, "feature": feature})
            return True

        if shop_plan is None:
            return True
        return feature in (shop_plan.plan.features or [])

    def get_upgrade_suggestions(self, shop: str) -> List[UpgradeSuggestion]:
        """Suggest an upgrade for every finite limit at or above 80% usage."""
        try:
            shop_plan = self._get_shop_plan(shop)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("[QUOTA] Upgrade suggestion lookup failed for %s: %s", shop, exc)
            capture_exception(exc, extra={"shop": shop, "operation": "upgrade_suggestions"})
            return []

        if shop_plan is None:
            return []

        plan = shop_plan.plan
        usage = self.get_usage_stats(shop)
        suggestions = []
        for kind, used, limit in (
            ("conversations", usage.conversations, plan.max_conversations),
            ("messages", usage.messages, plan.max_messages),
        ):
            if limit == UNLIMITED or limit <= 0:
                continue
            percentage = int(used * 100 / limit)
            if percentage >= UPGRADE_THRESHOLD_PERCENT:
                noun = "conversation" if kind == "conversations" else "message"
                suggestions.append(UpgradeSuggestion(
                    type=kind,
                    message=f"You've used {percentage}% of your monthly {noun} limit. Consider upgrading your plan.",
                    current=used,
                    limit=limit,
                    percentage=percentage,
                ))
        return suggestions

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _get_shop_plan(self, shop: str) -> Optional[ShopPlan]:
        return (
            self.db.query(ShopPlan)
            .options(joinedload(ShopPlan.plan))
            .filter(ShopPlan.shop == shop)
            .first()
        )

    def _count_conversations(self, shop: str) -> int:
        start, end = self.window.bounds()
        return (
            self.db.query(func.count(Conversation.id))
            .filter(
                Conversation.shop == shop,
                Conversation.created_at >= start,
                Conversation.created_at < end,
            )
            .scalar()
        ) or 0

    def _count_messages(self, shop: str) -> int:
        # Keyed by the message's own timestamp so long-running conversations
        # from last month still count this month's messages.
        start, end = self.window.bounds()
        return (
            self.db.query(func.count(Message.id))
            .join(Conversation, Message.conversation_id == Conversation.id)
            .filter(
                Conversation.shop == shop,
                Message.created_at >= start,
                Message.created_at < end,
            )
            .scalar()
        ) or 0

    @staticmethod
    def _decide(limit: int, used: Optional[int], count: int, plan_name: str, reject_reason: str) -> QuotaDecision:
        if limit == UNLIMITED:
            return QuotaDecision(allowed=True, reason=REASON_UNLIMITED, limit=limit, plan_name=plan_name)

        if used + count > limit:
            return QuotaDecision(allowed=False, reason=reject_reason, limit=limit, used=used, plan_name=plan_name)

        return QuotaDecision(allowed=True, reason=REASON_WITHIN_LIMITS, limit=limit, used=used, plan_name=plan_name)

    def _fail_open(self, exc: SQLAlchemyError, shop: str, kind: str) -> QuotaDecision:
        self.db.rollback()
        logger.error("[QUOTA] %s limit check failed for %s, allowing: %s", kind.capitalize(), shop, exc)
        capture_exception(exc, extra={"shop": shop, "check": kind})
        return QuotaDecision(allowed=True, reason=REASON_ERROR)
