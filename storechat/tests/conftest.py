"""Pytest configuration for StoreChat tests

WHAT: Shared fixtures for service, router and worker tests
WHY: One in-memory database per test, a pinned quota window, and signed
     App Bridge session tokens for the merchant routes
REFERENCES:
    - storechat/main.py: FastAPI application
    - storechat/database.py: Database configuration
    - storechat/deps.py: Dependency injection
"""

import os
import time
import uuid
from datetime import datetime
from typing import Callable, Generator, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Set test environment before any storechat import
# Must be URL-safe base64-encoded 32-byte string (storechat.security validates at import time)
os.environ.setdefault("TOKEN_ENCRYPTION_KEY", "MDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDAwMDA=")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SHOPIFY_API_KEY", "test-api-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-api-secret")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379")
os.environ.setdefault("APP_BASE_URL", "https://app.storechat.test")


SHOP = "acme.myshopify.com"
OTHER_SHOP = "globex.myshopify.com"


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture
def test_db_engine():
    """In-memory SQLite shared across threads (TestClient runs handlers in a pool)."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from storechat.database import Base
    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(test_db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)


@pytest.fixture
def test_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def seeded_plans(test_db_session):
    from storechat.services.plan_service import seed_plans

    seed_plans(test_db_session)
    return test_db_session


@pytest.fixture
def now() -> datetime:
    """Wall-clock now at fixture setup, for plan periods."""
    return datetime.utcnow()


@pytest.fixture
def quota_window():
    """Window on the live clock; rows inserted during a test land before its end."""
    from storechat.services.plan_quota import QuotaWindow

    return QuotaWindow(clock=datetime.utcnow)


@pytest.fixture
def assign_plan(seeded_plans, now) -> Callable:
    """Put a shop on a catalog plan: assign_plan(SHOP, "free")."""
    from storechat.services.plan_service import change_plan

    def _assign(shop: str = SHOP, plan_name: str = "free"):
        return change_plan(seeded_plans, shop, plan_name, now=now)

    return _assign


@pytest.fixture
def make_conversation(test_db_session) -> Callable:
    """Insert a conversation (and optionally messages) with explicit timestamps."""
    from storechat.models import Conversation, ConversationStatusEnum, Message, MessageRoleEnum

    def _make(
        shop: str = SHOP,
        session_id: Optional[str] = None,
        created_at: Optional[datetime] = None,
        messages: int = 0,
        message_created_at: Optional[datetime] = None,
        status: ConversationStatusEnum = ConversationStatusEnum.active,
        **fields,
    ):
        created_at = created_at or datetime.utcnow()
        conversation = Conversation(
            shop=shop,
            session_id=session_id or f"sess-{uuid.uuid4().hex[:8]}",
            status=status,
            created_at=created_at,
            **fields,
        )
        test_db_session.add(conversation)
        test_db_session.flush()
        test_db_session.add_all([
            Message(
                conversation_id=conversation.id,
                role=MessageRoleEnum.user if index % 2 == 0 else MessageRoleEnum.assistant,
                content=f"message {index}",
                created_at=message_created_at or created_at,
            )
            for index in range(messages)
        ])
        test_db_session.commit()
        test_db_session.refresh(conversation)
        return conversation

    return _make


@pytest.fixture
def merchant(test_db_session):
    """Installed merchant with an encrypted access token."""
    from storechat.models import Merchant
    from storechat.security import encrypt_secret

    row = Merchant(shop=SHOP, access_token_enc=encrypt_secret("shpat_test", context=SHOP), scope="read_products")
    test_db_session.add(row)
    test_db_session.commit()
    test_db_session.refresh(row)
    return row


# ============================================================================
# Application & Client Fixtures
# ============================================================================

@pytest.fixture
def app(test_db_session, quota_window):
    """FastAPI test application bound to the test session and pinned window."""
    from storechat.main import create_app
    from storechat.database import get_db
    from storechat.deps import get_quota_window

    test_app = create_app()

    def override_get_db():
        yield test_db_session

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_quota_window] = lambda: quota_window

    return test_app


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)


# ============================================================================
# Authentication Fixtures
# ============================================================================

@pytest.fixture
def session_token() -> Callable[..., str]:
    """Build an App Bridge session token: session_token(shop=..., secret=..., expires_in=...)."""
    from jose import jwt

    def _token(
        shop: str = SHOP,
        secret: Optional[str] = None,
        audience: Optional[str] = None,
        expires_in: int = 60,
    ) -> str:
        issued = int(time.time())
        payload = {
            "iss": f"https://{shop}/admin",
            "dest": f"https://{shop}",
            "aud": audience or os.environ["SHOPIFY_API_KEY"],
            "sub": "42",
            "exp": issued + expires_in,
            "nbf": issued - 1,
            "iat": issued - 1,
            "jti": uuid.uuid4().hex,
            "sid": uuid.uuid4().hex,
        }
        return jwt.encode(payload, secret or os.environ["SHOPIFY_API_SECRET"], algorithm="HS256")

    return _token


@pytest.fixture
def auth_headers(session_token):
    return {
        "Authorization": f"Bearer {session_token()}",
        "Content-Type": "application/json",
    }
