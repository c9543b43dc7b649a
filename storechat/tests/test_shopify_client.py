"""Shopify client tests

WHAT: Pagination parsing, retry/backoff timing and error classification
WHY: Backoff runs on a fake clock so the retry policy is asserted exactly,
     without real sleeps
REFERENCES:
    - storechat/services/shopify_client.py
    - storechat/services/upstream_state.py
"""

import json

import httpx
import pytest

from storechat.services.shopify_client import ShopifyAPIError, ShopifyClient


class FakeTime:
    """Clock and sleep pair; sleeping advances the clock."""

    def __init__(self):
        self.now = 1000.0
        self.sleeps = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _products_payload(has_next=True):
    return {
        "data": {
            "products": {
                "edges": [
                    {
                        "node": {
                            "id": "gid://shopify/Product/1",
                            "title": "Wool Hat",
                            "handle": "wool-hat",
                            "description": "Warm",
                            "vendor": "Acme",
                            "tags": ["winter"],
                            "variants": {"edges": [{"node": {"price": "25.00"}}]},
                        }
                    }
                ],
                "pageInfo": {"hasNextPage": has_next, "endCursor": "cursor-1"},
            }
        }
    }


def _client(handler, fake_time):
    return ShopifyClient(
        "acme.myshopify.com",
        "shpat_test",
        transport=httpx.MockTransport(handler),
        clock=fake_time.clock,
        sleep=fake_time.sleep,
    )


@pytest.mark.asyncio
async def test_get_products_parses_page_and_sends_credentials():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_products_payload())

    products, cursor = await _client(handler, FakeTime()).get_products(limit=10)

    assert cursor == "cursor-1"
    assert products == [{
        "id": "gid://shopify/Product/1",
        "title": "Wool Hat",
        "handle": "wool-hat",
        "description": "Warm",
        "vendor": "Acme",
        "tags": ["winter"],
        "price": "25.00",
    }]
    request = seen[0]
    assert str(request.url) == "https://acme.myshopify.com/admin/api/2024-10/graphql.json"
    assert request.headers["X-Shopify-Access-Token"] == "shpat_test"
    assert json.loads(request.content)["variables"] == {"cursor": None, "limit": 10}


@pytest.mark.asyncio
async def test_last_page_has_no_cursor():
    def handler(request):
        return httpx.Response(200, json=_products_payload(has_next=False))

    _, cursor = await _client(handler, FakeTime()).get_products()

    assert cursor is None


@pytest.mark.asyncio
async def test_retry_after_header_sets_the_wait():
    responses = [
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.Response(200, json=_products_payload()),
    ]
    fake_time = FakeTime()

    products, _ = await _client(lambda request: responses.pop(0), fake_time).get_products()

    assert len(products) == 1
    assert fake_time.sleeps == [3.0]


@pytest.mark.asyncio
async def test_server_errors_back_off_exponentially_then_raise():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(500, json={"errors": "internal"})

    fake_time = FakeTime()
    client = _client(handler, fake_time)

    with pytest.raises(ShopifyAPIError) as exc_info:
        await client.execute("{ shop { name } }")

    assert len(calls) == 3
    assert fake_time.sleeps == [1.0, 2.0]
    assert exc_info.value.upstream_status == 500
    assert exc_info.value.message == "Failed after 3 attempts: HTTP 500"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_network_errors_are_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"data": {"shop": {"name": "Acme"}}})

    data = await _client(handler, FakeTime()).execute("{ shop { name } }")

    assert data == {"shop": {"name": "Acme"}}
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_throttled_graphql_response_is_retried():
    responses = [
        httpx.Response(200, json={"errors": [{"message": "Throttled"}]}),
        httpx.Response(200, json={"data": {"shop": {"name": "Acme"}}}),
    ]
    fake_time = FakeTime()

    data = await _client(lambda request: responses.pop(0), fake_time).execute("{ shop { name } }")

    assert data == {"shop": {"name": "Acme"}}
    assert fake_time.sleeps == [2.0]


@pytest.mark.asyncio
async def test_graphql_errors_raise_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"errors": [{"message": "Access denied for products field."}]})

    with pytest.raises(ShopifyAPIError) as exc_info:
        await _client(handler, FakeTime()).get_products()

    assert len(calls) == 1
    assert exc_info.value.message == "GraphQL errors: Access denied for products field."
    assert exc_info.value.errors == [{"message": "Access denied for products field."}]


@pytest.mark.asyncio
async def test_consecutive_requests_are_spaced():
    def handler(request):
        return httpx.Response(200, json={"data": {}})

    fake_time = FakeTime()
    client = _client(handler, fake_time)

    await client.execute("{ a }")
    await client.execute("{ b }")

    assert fake_time.sleeps == [0.5]
