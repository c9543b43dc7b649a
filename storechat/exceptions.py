"""Domain exceptions.

WHAT:
    One exception type per failure class the API can report. Each carries the
    HTTP status it maps to, and `storechat.main` renders them all as
    `{"success": false, "error": ...}`.

WHY:
    Services stay free of FastAPI imports and the workers can raise the same
    types. Routers never build error bodies by hand.
"""

from typing import Any, Dict, Optional


class StoreChatError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_body(self) -> Dict[str, Any]:
        return {"success": False, "error": self.message}


class ValidationError(StoreChatError):
    status_code = 400


class MissingShopError(ValidationError):
    def __init__(self, message: str = "Missing shop parameter"):
        super().__init__(message)


class AuthenticationError(StoreChatError):
    status_code = 401


class NotFoundError(StoreChatError):
    status_code = 404


class QuotaExceededError(StoreChatError):
    """Plan limit reached. The body carries the limit, usage and plan name."""

    status_code = 403

    def __init__(self, reason: str, limit: Optional[int], used: Optional[int], plan: Optional[str]):
        super().__init__(reason)
        self.limit = limit
        self.used = used
        self.plan = plan

    def to_body(self) -> Dict[str, Any]:
        body = super().to_body()
        body.update({"limit": self.limit, "used": self.used, "plan": self.plan})
        return body


class UpstreamError(StoreChatError):
    """Failure talking to an external system (Shopify, Redis)."""

    status_code = 502


class DatastoreError(StoreChatError):
    status_code = 500
