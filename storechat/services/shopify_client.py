"""Shopify GraphQL Admin API client.

WHAT:
    Wrapper for the Shopify Admin GraphQL API with:
    - Authentication handling
    - Request pacing (2 requests/second)
    - Retries with backoff driven by `UpstreamConnection`
    - Cursor-based pagination for products, collections and pages

WHY:
    Catalog ingestion is the only Shopify consumer; it needs typed errors it
    can record per content kind instead of raw httpx exceptions.

REFERENCES:
    - Shopify GraphQL Admin API: https://shopify.dev/docs/api/admin-graphql
    - Rate limits: https://shopify.dev/docs/api/usage/rate-limits
    - Pagination: https://shopify.dev/docs/api/usage/pagination-graphql
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import httpx

from storechat.exceptions import UpstreamError
from storechat.services.upstream_state import UpstreamConnection

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "2024-10"
REQUEST_TIMEOUT = 30.0
MAX_PAGE_SIZE = 250

# Shopify allows 2 requests/second for regular apps
RATE_LIMIT_DELAY = 0.5


class ShopifyAPIError(UpstreamError):
    """Shopify request failed after retries, or returned GraphQL errors."""

    def __init__(self, message: str, upstream_status: Optional[int] = None, errors: Optional[List] = None):
        super().__init__(message)
        self.upstream_status = upstream_status
        self.errors = errors or []


PRODUCTS_QUERY = """
query GetProducts($cursor: String, $limit: Int!) {
    products(first: $limit, after: $cursor) {
        edges {
            node {
                id
                title
                handle
                description
                vendor
                tags
                variants(first: 1) {
                    edges {
                        node {
                            price
                        }
                    }
                }
            }
        }
        pageInfo {
            hasNextPage
            endCursor
        }
    }
}
"""

COLLECTIONS_QUERY = """
query GetCollections($cursor: String, $limit: Int!) {
    collections(first: $limit, after: $cursor) {
        edges {
            node {
                id
                title
                handle
                description
            }
        }
        pageInfo {
            hasNextPage
            endCursor
        }
    }
}
"""

PAGES_QUERY = """
query GetPages($cursor: String, $limit: Int!) {
    pages(first: $limit, after: $cursor) {
        edges {
            node {
                id
                title
                handle
                body
            }
        }
        pageInfo {
            hasNextPage
            endCursor
        }
    }
}
"""


class ShopifyClient:
    """GraphQL client for the Shopify Admin API.

    Usage:
        client = ShopifyClient(shop_domain="mystore.myshopify.com", access_token="shpat_xxx")
        products, cursor = await client.get_products()
        while cursor:
            more, cursor = await client.get_products(cursor=cursor)

    Tests pass `transport=httpx.MockTransport(...)` plus a fake clock and sleep.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: str = DEFAULT_API_VERSION,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.shop_domain = shop_domain
        self.access_token = access_token
        self.api_version = api_version
        self.base_url = f"https://{shop_domain}/admin/api/{api_version}/graphql.json"

        self._transport = transport
        self._clock = clock
        self._sleep = sleep
        self._last_request_time: Optional[float] = None
        self.connection = UpstreamConnection(name=f"shopify:{shop_domain}", clock=clock)

        logger.info("[SHOPIFY_CLIENT] Initialized for %s (API version: %s)", shop_domain, api_version)

    async def _rate_limit(self) -> None:
        """Keep at least RATE_LIMIT_DELAY between consecutive requests."""
        if self._last_request_time is not None:
            elapsed = self._clock() - self._last_request_time
            if elapsed < RATE_LIMIT_DELAY:
                await self._sleep(RATE_LIMIT_DELAY - elapsed)
        self._last_request_time = self._clock()

    async def execute(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
        retries: int = 3,
    ) -> Dict[str, Any]:
        """Execute a GraphQL query against the Admin API.

        Retries transient failures (HTTP errors, network errors, 429s and
        throttling) up to `retries` attempts in total.

        Raises:
            ShopifyAPIError: GraphQL errors, or failure after all retries
        """
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }

        payload: Dict[str, Any] = {"query": query}
        if variables:
            payload["variables"] = variables

        last_error: Optional[str] = None
        last_status: Optional[int] = None

        for attempt in range(retries):
            wait = self.connection.wait_time()
            if wait > 0:
                await self._sleep(wait)
            await self._rate_limit()
            self.connection.begin()

            try:
                async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT, transport=self._transport) as client:
                    response = await client.post(self.base_url, json=payload, headers=headers)

                if response.status_code == 429:
                    retry_after = float(response.headers.get("Retry-After", 2))
                    last_status = 429
                    last_error = "rate limited"
                    self.connection.fail(delay=retry_after)
                    logger.warning(
                        "[SHOPIFY_CLIENT] Rate limited, waiting %ss (attempt %d/%d)", retry_after, attempt + 1, retries
                    )
                    continue

                response.raise_for_status()
                data = response.json()

            except httpx.HTTPStatusError as e:
                last_status = e.response.status_code
                last_error = f"HTTP {last_status}"
                self.connection.fail()
                logger.warning("[SHOPIFY_CLIENT] HTTP error %s (attempt %d/%d)", last_status, attempt + 1, retries)
                continue

            except httpx.RequestError as e:
                last_error = str(e) or e.__class__.__name__
                self.connection.fail()
                logger.warning("[SHOPIFY_CLIENT] Request error: %s (attempt %d/%d)", e, attempt + 1, retries)
                continue

            except ValueError:
                last_error = "invalid JSON response"
                self.connection.fail()
                logger.warning("[SHOPIFY_CLIENT] Invalid JSON response (attempt %d/%d)", attempt + 1, retries)
                continue

            if "errors" in data:
                errors = data["errors"] or []
                error_messages = [e.get("message", str(e)) if isinstance(e, dict) else str(e) for e in errors]

                if any("throttled" in msg.lower() for msg in error_messages):
                    last_error = "throttled"
                    self.connection.fail(delay=2.0)
                    logger.warning("[SHOPIFY_CLIENT] Throttled (attempt %d/%d)", attempt + 1, retries)
                    continue

                self.connection.succeed()
                logger.error("[SHOPIFY_CLIENT] GraphQL errors: %s", error_messages)
                raise ShopifyAPIError(f"GraphQL errors: {', '.join(error_messages)}", errors=errors)

            self.connection.succeed()
            return data.get("data") or {}

        raise ShopifyAPIError(f"Failed after {retries} attempts: {last_error}", upstream_status=last_status)

    async def _get_page(
        self,
        query: str,
        root: str,
        cursor: Optional[str],
        limit: int,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        data = await self.execute(query, {"cursor": cursor, "limit": limit})
        connection = data.get(root) or {}
        nodes = [edge.get("node", {}) for edge in connection.get("edges", [])]
        page_info = connection.get("pageInfo") or {}
        next_cursor = page_info.get("endCursor") if page_info.get("hasNextPage") else None
        return nodes, next_cursor

    # =========================================================================
    # CATALOG QUERIES
    # =========================================================================

    async def get_products(
        self,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Fetch one page of products.

        Returns:
            Tuple of (products, next_cursor or None if last page). Each product
            has id, title, handle, description, vendor, tags and price.
        """
        nodes, next_cursor = await self._get_page(PRODUCTS_QUERY, "products", cursor, limit)
        products = []
        for node in nodes:
            variants = (node.get("variants") or {}).get("edges", [])
            first_variant = variants[0]["node"] if variants else {}
            products.append({
                "id": node.get("id"),
                "title": node.get("title") or "",
                "handle": node.get("handle") or "",
                "description": node.get("description") or "",
                "vendor": node.get("vendor") or "",
                "tags": list(node.get("tags") or []),
                "price": first_variant.get("price"),
            })
        return products, next_cursor

    async def get_collections(
        self,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        nodes, next_cursor = await self._get_page(COLLECTIONS_QUERY, "collections", cursor, limit)
        collections = [
            {
                "id": node.get("id"),
                "title": node.get("title") or "",
                "handle": node.get("handle") or "",
                "description": node.get("description") or "",
            }
            for node in nodes
        ]
        return collections, next_cursor

    async def get_pages(
        self,
        cursor: Optional[str] = None,
        limit: int = 50,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        """Fetch one page of online store pages. `body` is HTML."""
        nodes, next_cursor = await self._get_page(PAGES_QUERY, "pages", cursor, limit)
        pages = [
            {
                "id": node.get("id"),
                "title": node.get("title") or "",
                "handle": node.get("handle") or "",
                "body": node.get("body") or "",
            }
            for node in nodes
        ]
        return pages, next_cursor
