"""FastAPI application entrypoint.

Configures logging, Sentry, CORS, error handling and routers, and exposes a
healthcheck endpoint.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

from .deps import get_settings
from .exceptions import StoreChatError
from .routers import chat as chat_router
from .routers import embed as embed_router
from .routers import merchant as merchant_router
from .routers import widget_config as widget_config_router
from .telemetry import capture_exception, configure_logging, init_sentry
from .workers.arq_enqueue import reset_arq_pool
from . import schemas

# Import models so Alembic can discover metadata
from . import models  # noqa: F401

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

# Public storefront paths: called from any shop's domain without credentials
STOREFRONT_PATHS = ("/widget-config", "/widget-config/hash", "/embed-script", "/chat")


class StorefrontCORSMiddleware(BaseHTTPMiddleware):
    """Wildcard CORS for the storefront endpoints.

    The widget runs on arbitrary `*.myshopify.com` and custom domains and
    sends no credentials, so `*` is safe here. Admin routes keep the
    allow-list configured on CORSMiddleware.
    """

    cors_headers = {
        "Access-Control-Allow-Origin": "*",
        "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type, X-Shopify-Shop-Domain",
        "Access-Control-Max-Age": "86400",
    }

    async def dispatch(self, request, call_next):
        if request.url.path not in STOREFRONT_PATHS:
            return await call_next(request)

        if request.method == "OPTIONS":
            return StarletteResponse(status_code=200, headers=self.cors_headers)

        response = await call_next(request)
        for key, value in self.cors_headers.items():
            response.headers[key] = value
        return response


async def storechat_error_handler(request: Request, exc: StoreChatError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_body())


async def datastore_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("[API] Database error on %s %s: %s", request.method, request.url.path, exc)
    capture_exception(exc, extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


def create_app() -> FastAPI:
    init_sentry()

    app = FastAPI(
        title="StoreChat API",
        description="""
        Backend for the StoreChat Shopify app.

        Storefront endpoints (public, CORS `*`):
        - Widget configuration and its content hash
        - Conversation actions and chat replies, gated by plan quotas
        - The embed script

        Merchant endpoints (App Bridge session token):
        - Install bootstrap, widget settings, plan and usage
        - Conversation history
        - Catalog ingestion jobs
        """,
        version="1.0.0",
    )

    settings = get_settings()
    allowed_origins = settings.cors_origins
    logger.info("[CORS] Allowed origins: %s", allowed_origins)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added after CORSMiddleware so it runs first
    app.add_middleware(StorefrontCORSMiddleware)

    app.add_exception_handler(StoreChatError, storechat_error_handler)
    app.add_exception_handler(SQLAlchemyError, datastore_error_handler)

    app.include_router(widget_config_router.router)
    app.include_router(embed_router.router)
    app.include_router(chat_router.router)
    app.include_router(merchant_router.router)

    @app.get(
        "/health",
        response_model=schemas.HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    def health():
        return schemas.HealthResponse(status="ok")

    @app.on_event("shutdown")
    async def close_queue_pool():
        await reset_arq_pool()

    return app


app = create_app()
