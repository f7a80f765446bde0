"""Currency conversion for expenses submitted in a foreign currency.

Rates come from an external lookup keyed by the source currency. The
lookup is treated as unreliable: any failure degrades to the original
amount (1:1) and is logged, never raised into the approval workflow.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from app.core.config import settings

logger = logging.getLogger(__name__)

QUANT = Decimal("0.0001")


class RateSource(Protocol):
    def get_rates(self, base_currency: str) -> dict[str, Decimal]:
        """Return {target_currency: rate} for one unit of base_currency. May raise."""
        ...


class ExchangeRateApiSource:
    """exchangerate-api.com style endpoint: GET {base_url}/{BASE} -> {"rates": {...}}."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.Client | None = None,
    ):
        self.base_url = (base_url or settings.EXCHANGE_RATE_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.EXCHANGE_RATE_TIMEOUT_SECONDS
        self._client = client

    def get_rates(self, base_currency: str) -> dict[str, Decimal]:
        url = f"{self.base_url}/{base_currency.upper()}"
        if self._client is not None:
            response = self._client.get(url, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(url)
        response.raise_for_status()
        payload = response.json()
        rates = payload.get("rates") or {}
        return {code.upper(): Decimal(str(rate)) for code, rate in rates.items()}


@dataclass(frozen=True)
class ConversionResult:
    amount: Decimal
    rate: Decimal
    degraded: bool = False  # True when the lookup failed and 1:1 was used


def lookup_rate(
    from_currency: str, to_currency: str, source: RateSource | None = None
) -> Decimal | None:
    """Fetch the from->to rate, or None when the source is unusable."""
    source = source or ExchangeRateApiSource()
    try:
        rates = source.get_rates(from_currency)
    except (httpx.HTTPError, ValueError, InvalidOperation, TypeError, AttributeError) as exc:
        logger.warning("Rate lookup failed for %s->%s: %s", from_currency, to_currency, exc)
        return None

    rate = rates.get(to_currency.upper())
    if rate is None:
        logger.warning("Rate source has no %s rate for base %s", to_currency, from_currency)
    return rate


def convert_amount(
    amount: Decimal,
    from_currency: str,
    to_currency: str,
    source: RateSource | None = None,
) -> ConversionResult:
    """Convert ``amount`` and report the rate used.

    Same currency is the identity and never calls the source.
    """
    amount = Decimal(str(amount))
    if from_currency.upper() == to_currency.upper():
        return ConversionResult(amount=amount, rate=Decimal("1"))

    rate = lookup_rate(from_currency, to_currency, source)
    if rate is None:
        return ConversionResult(amount=amount, rate=Decimal("1"), degraded=True)
    return ConversionResult(amount=(amount * rate).quantize(QUANT), rate=rate)


def convert(
    amount: Decimal,
    from_currency: str,
    to_currency: str,
    source: RateSource | None = None,
) -> Decimal:
    """Convert ``amount``; returns it unchanged when no rate is available."""
    return convert_amount(amount, from_currency, to_currency, source).amount
