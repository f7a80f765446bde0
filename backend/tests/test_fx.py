"""Tests for foreign-currency conversion."""
from decimal import Decimal
from unittest.mock import MagicMock

import httpx

from app.services.fx import ExchangeRateApiSource, convert, convert_amount


def _client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


def test_same_currency_is_identity_and_never_calls_source():
    source = MagicMock()
    result = convert_amount(Decimal("12.50"), "usd", "USD", source=source)
    assert result.amount == Decimal("12.50")
    assert result.rate == Decimal("1")
    assert not result.degraded
    source.get_rates.assert_not_called()


def test_converts_with_rate_from_api():
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(request.url.path)
        return httpx.Response(200, json={"base": "EUR", "rates": {"USD": 1.1, "GBP": 0.85}})

    source = ExchangeRateApiSource(base_url="https://rates.test/v4/latest", client=_client(handler))
    result = convert_amount(Decimal("100"), "eur", "USD", source=source)

    assert requested == ["/v4/latest/EUR"]
    assert result.amount == Decimal("110.0000")
    assert result.rate == Decimal("1.1")
    assert not result.degraded


def test_http_failure_returns_original_amount():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"error": "unavailable"})

    source = ExchangeRateApiSource(base_url="https://rates.test", client=_client(handler))
    result = convert_amount(Decimal("42"), "EUR", "USD", source=source)
    assert result.amount == Decimal("42")
    assert result.degraded


def test_network_error_returns_original_amount():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    source = ExchangeRateApiSource(base_url="https://rates.test", client=_client(handler))
    assert convert(Decimal("42"), "EUR", "USD", source=source) == Decimal("42")


def test_missing_target_currency_returns_original_amount():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"rates": {"GBP": 0.85}})

    source = ExchangeRateApiSource(base_url="https://rates.test", client=_client(handler))
    result = convert_amount(Decimal("42"), "EUR", "USD", source=source)
    assert result.amount == Decimal("42")
    assert result.degraded


def test_malformed_payload_returns_original_amount():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"not json")

    source = ExchangeRateApiSource(base_url="https://rates.test", client=_client(handler))
    assert convert(Decimal("7"), "EUR", "USD", source=source) == Decimal("7")
