"""Reference price lookup used for the "current price" overlay.

A single stateless GET against a metal price API. Failures never reach the
chart pipeline: they are logged and the overlay is simply not drawn.
"""

from __future__ import annotations

import logging
import math
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_PRICE_URL = "https://api.metalpriceapi.com/v1/latest"
DEFAULT_BASE = "XAU"
DEFAULT_CURRENCY = "USD"
DEFAULT_TIMEOUT = 10.0


class PriceLookupError(Exception):
    """Raised when the reference price cannot be retrieved or understood."""

    pass


def _extract_rate(payload: Any, currency: str) -> float:
    if not isinstance(payload, dict):
        raise PriceLookupError(f"Unexpected price payload type: {type(payload)}")
    rates = payload.get("rates")
    if not isinstance(rates, dict) or currency not in rates:
        raise PriceLookupError(f"Price payload has no rate for {currency!r}")
    try:
        value = float(rates[currency])
    except (TypeError, ValueError) as e:
        raise PriceLookupError(f"Non-numeric rate for {currency!r}: {e}") from e
    if not math.isfinite(value) or value <= 0:
        raise PriceLookupError(f"Unusable rate for {currency!r}: {value}")
    return value


def fetch_reference_price(
    api_key: str,
    url: str = DEFAULT_PRICE_URL,
    base: str = DEFAULT_BASE,
    currency: str = DEFAULT_CURRENCY,
    timeout: float = DEFAULT_TIMEOUT,
) -> float:
    """
    Fetch one price (units of ``currency`` per unit of ``base``).

    Raises:
        PriceLookupError: on transport errors, HTTP errors, invalid JSON or a
            missing/unusable rate.
    """
    params = {"api_key": api_key, "base": base, "currencies": currency}
    try:
        r = requests.get(url, params=params, timeout=timeout)
        r.raise_for_status()
        payload = r.json()
    except requests.RequestException as e:
        raise PriceLookupError(f"Price request failed: {e}") from e
    except ValueError as e:
        raise PriceLookupError(f"Price response is not JSON: {e}") from e
    return _extract_rate(payload, currency)


def lookup_reference_price(
    api_key: Optional[str] = None,
    url: str = DEFAULT_PRICE_URL,
    base: str = DEFAULT_BASE,
    currency: str = DEFAULT_CURRENCY,
    timeout: float = DEFAULT_TIMEOUT,
) -> Optional[float]:
    """
    Best-effort wrapper around fetch_reference_price().

    Returns None (and logs) instead of raising. Without an API key no request
    is made.
    """
    if not api_key:
        logger.info("No price API key configured; reference price overlay disabled")
        return None
    try:
        price = fetch_reference_price(
            api_key, url=url, base=base, currency=currency, timeout=timeout
        )
    except PriceLookupError as e:
        logger.warning("Error fetching reference price: %s", e)
        return None
    logger.info("Fetched reference price %.2f %s/%s", price, currency, base)
    return price


@dataclass
class PriceQuote:
    """Holder filled in by the background lookup; value stays None on failure."""

    value: Optional[float] = None
    done: threading.Event = field(default_factory=threading.Event)


def start_price_lookup(
    api_key: Optional[str] = None,
    url: Optional[str] = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> PriceQuote:
    """
    Start the reference price lookup in a daemon thread and return immediately.

    Defaults for api_key/url come from COST_CURVE_PRICE_API_KEY and
    COST_CURVE_PRICE_URL. The returned PriceQuote.done event is set once the
    attempt has finished, successfully or not.
    """
    quote = PriceQuote()
    key = api_key if api_key is not None else os.getenv("COST_CURVE_PRICE_API_KEY")
    target = url or os.getenv("COST_CURVE_PRICE_URL", DEFAULT_PRICE_URL)

    def _worker() -> None:
        try:
            quote.value = lookup_reference_price(key, url=target, timeout=timeout)
        finally:
            quote.done.set()

    thread = threading.Thread(target=_worker, daemon=True)
    thread.start()
    return quote
