"""Plan catalog, shop installation and plan assignment.

WHAT:
    - Seeds the four subscription tiers (idempotent upsert by name)
    - Bootstraps a newly installed shop: merchant row, free plan, default widget
    - Switches a shop to another plan and rolls billing periods forward

WHY:
    The quota gate only reads; everything that writes `Plan`, `ShopPlan` or
    `Merchant` lives here so install, billing and the seed script share one
    code path.

REFERENCES:
    - storechat/services/plan_quota.py (reads what this module writes)
    - storechat/seed_plans.py (CLI entry point for seed_plans)
    - storechat/routers/merchant.py (install and plan routes)
"""

import calendar
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storechat.exceptions import DatastoreError, NotFoundError
from storechat.models import Merchant, Plan, ShopPlan, WidgetConfig
from storechat.schemas import PlanOut, PlanStatusResponse
from storechat.security import encrypt_secret
from storechat.services.plan_quota import PlanQuotaGate, QuotaWindow
from storechat.services.widget_config_service import create_default_config

logger = logging.getLogger(__name__)

FREE_PLAN = "free"
UPGRADE_PATH = ["free", "starter", "professional", "enterprise"]


PLAN_CATALOG: List[Dict[str, Any]] = [
    {
        "name": "free",
        "display_name": "Free",
        "price": 0,
        "max_conversations": 100,
        "max_messages": 1000,
        "features": [
            "Up to 100 conversations/month",
            "Up to 1,000 messages/month",
            "Basic chat widget",
            "Standard support",
            "Basic customization",
        ],
    },
    {
        "name": "starter",
        "display_name": "Starter",
        "price": 29,
        "max_conversations": 500,
        "max_messages": 5000,
        "features": [
            "Up to 500 conversations/month",
            "Up to 5,000 messages/month",
            "Advanced chat widget",
            "Priority support",
            "Full customization",
            "Analytics dashboard",
            "Email notifications",
        ],
    },
    {
        "name": "professional",
        "display_name": "Professional",
        "price": 79,
        "max_conversations": 2000,
        "max_messages": 20000,
        "features": [
            "Up to 2,000 conversations/month",
            "Up to 20,000 messages/month",
            "Premium chat widget",
            "24/7 support",
            "Advanced customization",
            "Advanced analytics",
            "Custom branding",
            "API access",
            "Webhook integrations",
        ],
    },
    {
        "name": "enterprise",
        "display_name": "Enterprise",
        "price": 199,
        "max_conversations": -1,
        "max_messages": -1,
        "features": [
            "Unlimited conversations",
            "Unlimited messages",
            "Enterprise chat widget",
            "Dedicated support",
            "White-label solution",
            "Advanced analytics",
            "Custom integrations",
            "SLA guarantee",
            "On-premise deployment",
        ],
    },
]


@dataclass
class SeedStats:
    created: int = 0
    updated: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def add_months(value: datetime, months: int) -> datetime:
    """Shift a datetime by whole months, clamping the day (Jan 31 + 1 -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


# =============================================================================
# CATALOG
# =============================================================================

def seed_plans(db: Session) -> SeedStats:
    """Upsert every catalog plan by name. Safe to run repeatedly."""
    stats = SeedStats()
    for plan_data in PLAN_CATALOG:
        plan = db.query(Plan).filter(Plan.name == plan_data["name"]).first()
        if plan is None:
            plan = Plan(name=plan_data["name"])
            db.add(plan)
            stats.created += 1
        else:
            stats.updated += 1

        plan.display_name = plan_data["display_name"]
        plan.price = plan_data["price"]
        plan.max_conversations = plan_data["max_conversations"]
        plan.max_messages = plan_data["max_messages"]
        plan.features = list(plan_data["features"])
        plan.is_active = True

    db.commit()
    logger.info("[PLANS] Seeded plans (created=%d, updated=%d)", stats.created, stats.updated)
    return stats


def list_plans(db: Session) -> List[Plan]:
    plans = db.query(Plan).filter(Plan.is_active.is_(True)).all()
    order = {name: index for index, name in enumerate(UPGRADE_PATH)}
    return sorted(plans, key=lambda plan: order.get(plan.name, len(order)))


# =============================================================================
# INSTALL
# =============================================================================

def install_shop(
    db: Session,
    shop: str,
    access_token: str,
    scope: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Merchant:
    """Bootstrap a shop after OAuth completes.

    WHAT:
        1. Upsert the merchant and store the encrypted access token
        2. Assign the free plan for one month if the shop has no plan yet
        3. Create an active default widget config if none exists

    WHY:
        Re-installs must not reset a paid plan or a customised widget, so
        steps 2 and 3 only fill gaps.
    """
    now = now or _utcnow()
    try:
        merchant = db.query(Merchant).filter(Merchant.shop == shop).first()
        if merchant is None:
            merchant = Merchant(shop=shop, installed_at=now)
            db.add(merchant)
            logger.info("[INSTALL] New merchant %s", shop)
        else:
            logger.info("[INSTALL] Re-install for %s", shop)

        merchant.access_token_enc = encrypt_secret(access_token, context=shop)
        merchant.scope = scope
        merchant.uninstalled_at = None

        if db.query(ShopPlan).filter(ShopPlan.shop == shop).first() is None:
            free_plan = db.query(Plan).filter(Plan.name == FREE_PLAN).first()
            if free_plan is not None:
                db.add(ShopPlan(
                    shop=shop,
                    plan_id=free_plan.id,
                    current_period_start=now,
                    current_period_end=add_months(now, 1),
                ))
                logger.info("[INSTALL] Assigned free plan to %s", shop)
            else:
                logger.warning("[INSTALL] Free plan missing, run seed_plans; %s has no quota", shop)

        if db.query(WidgetConfig).filter(WidgetConfig.shop == shop).first() is None:
            db.add(create_default_config(shop))
            logger.info("[INSTALL] Created default widget config for %s", shop)

        db.commit()
        db.refresh(merchant)
        return merchant
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("[INSTALL] Failed for %s: %s", shop, exc)
        raise DatastoreError("Failed to install shop") from exc


# =============================================================================
# PLAN ASSIGNMENT
# =============================================================================

def change_plan(db: Session, shop: str, plan_name: str, now: Optional[datetime] = None) -> ShopPlan:
    """Move a shop to `plan_name` and restart its billing period."""
    now = now or _utcnow()
    plan = db.query(Plan).filter(Plan.name == plan_name, Plan.is_active.is_(True)).first()
    if plan is None:
        raise NotFoundError(f"Plan not found: {plan_name}")

    shop_plan = db.query(ShopPlan).filter(ShopPlan.shop == shop).first()
    if shop_plan is None:
        shop_plan = ShopPlan(shop=shop)
        db.add(shop_plan)

    shop_plan.plan_id = plan.id
    shop_plan.current_period_start = now
    shop_plan.current_period_end = add_months(now, 1)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise DatastoreError("Failed to change plan") from exc

    db.refresh(shop_plan)
    logger.info("[PLANS] %s switched to %s", shop, plan.name)
    return shop_plan


def roll_period(shop_plan: ShopPlan, now: datetime) -> bool:
    """Advance the billing period by whole months until `now` falls inside it.

    Returns True if the period moved.
    """
    moved = False
    while shop_plan.current_period_end <= now:
        shop_plan.current_period_start = shop_plan.current_period_end
        shop_plan.current_period_end = add_months(shop_plan.current_period_end, 1)
        moved = True
    return moved


def get_plan_status(db: Session, shop: str, window: Optional[QuotaWindow] = None) -> PlanStatusResponse:
    """Plan, current period, usage and upgrade suggestions for the admin."""
    window = window or QuotaWindow()
    gate = PlanQuotaGate(db, window)
    usage = gate.get_usage_stats(shop)

    shop_plan = db.query(ShopPlan).filter(ShopPlan.shop == shop).first()
    if shop_plan is None:
        return PlanStatusResponse(usage=usage)

    if roll_period(shop_plan, window.now()):
        db.commit()
        db.refresh(shop_plan)
        logger.info("[PLANS] Rolled billing period for %s to %s", shop, shop_plan.current_period_start)

    plan = shop_plan.plan
    return PlanStatusResponse(
        plan=PlanOut(
            name=plan.name,
            display_name=plan.display_name,
            price=float(plan.price),
            max_conversations=plan.max_conversations,
            max_messages=plan.max_messages,
            features=list(plan.features or []),
        ),
        current_period_start=shop_plan.current_period_start,
        current_period_end=shop_plan.current_period_end,
        usage=usage,
        suggestions=gate.get_upgrade_suggestions(shop),
    )
