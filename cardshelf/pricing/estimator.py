"""
Cardshelf - Marketplace Price Estimator

Robust point estimate from a set of cleaned marketplace listings:

1. Primary currency = currency of the first listing that has one.
   Listings in another currency are dropped; blank-currency listings are
   kept as compatible.
2. Q1/Q3 by linear-interpolation percentile; keep prices inside
   [Q1 - 1.5*IQR, Q3 + 1.5*IQR].
3. Estimate = mean of the kept prices, or the median of all prices when
   nothing survives the trim.
4. Non-positive or empty -> no estimate (None), never zero.

Pure functions: no I/O, no external state.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal, ROUND_HALF_UP

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)

_TWO_DP = Decimal("0.01")
_ZERO = Decimal("0")
_IQR_FENCE = Decimal("1.5")


class MarketplaceListing(BaseModel):
    """One marketplace listing, alive only for a single identification cycle."""
    title: str
    price: Decimal
    currency: str = ""
    url: str
    image_url: str | None = None


class PriceEstimate(BaseModel):
    """estimated_price None means "unknown", which is not the same as zero."""
    estimated_price: Decimal | None = None
    currency: str | None = None
    listings_used: int = 0


def percentile(sorted_values: Sequence[Decimal], p: Decimal | int) -> Decimal:
    """
    Linear-interpolation percentile of an ascending sequence.

    index = p/100 * (n-1); interpolate between the floor and ceil values.
    Returns 0 for an empty sequence.
    """
    if not sorted_values:
        return _ZERO
    index = Decimal(p) / Decimal(100) * (len(sorted_values) - 1)
    lo = int(index)
    hi = min(lo + 1, len(sorted_values) - 1)
    weight = index - lo
    if weight == 0 or lo == hi:
        return sorted_values[lo]
    return sorted_values[lo] * (1 - weight) + sorted_values[hi] * weight


def iqr_filtered_mean(prices: Iterable[Decimal]) -> Decimal:
    """
    Mean of the prices inside the 1.5 * IQR fences.

    Returns 0 when the input or the trimmed set is empty.
    """
    ordered = sorted(prices)
    if not ordered:
        return _ZERO
    q1 = percentile(ordered, 25)
    q3 = percentile(ordered, 75)
    iqr = q3 - q1
    lower = q1 - _IQR_FENCE * iqr
    upper = q3 + _IQR_FENCE * iqr
    kept = [price for price in ordered if lower <= price <= upper]
    if not kept:
        return _ZERO
    return sum(kept, _ZERO) / len(kept)


def primary_currency(listings: Sequence[MarketplaceListing]) -> str:
    """Currency of the first listing that has one ("" when none do)."""
    for listing in listings:
        if listing.currency:
            return listing.currency
    return ""


def estimate_price(listings: Sequence[MarketplaceListing]) -> PriceEstimate:
    """
    Robust price estimate over cleaned marketplace listings.

    Args:
        listings: Listings already filtered to positive prices with a
            title and URL.

    Returns:
        PriceEstimate; estimated_price is None when there is nothing usable
        or the estimate is not positive. listings_used counts the
        currency-compatible prices fed into the trim, not the survivors.
    """
    currency = primary_currency(listings)
    prices = [
        listing.price
        for listing in listings
        if not listing.currency or not currency or listing.currency == currency
    ]
    prices = [price for price in prices if price.is_finite()]

    if not prices:
        logger.debug("price_estimate_no_prices", listing_count=len(listings), source="estimator")
        return PriceEstimate()

    estimate = iqr_filtered_mean(prices)
    if estimate <= _ZERO:
        estimate = percentile(sorted(prices), 50)

    if estimate <= _ZERO:
        logger.debug("price_estimate_non_positive", estimate=str(estimate), source="estimator")
        return PriceEstimate(currency=currency or None, listings_used=len(prices))

    rounded = estimate.quantize(_TWO_DP, rounding=ROUND_HALF_UP)
    logger.info(
        "price_estimate_calculated",
        estimated_price=str(rounded),
        currency=currency or None,
        listings_used=len(prices),
        source="estimator",
    )
    return PriceEstimate(
        estimated_price=rounded,
        currency=currency or None,
        listings_used=len(prices),
    )
