"""
Cardshelf - eBay Browse API Client

Marketplace search for the identification flow: looks up active listings
similar to an identified card and feeds them to the price estimator.

Authentication: OAuth2 Client Credentials flow. Tokens are cached per scope
in an injected TokenCache until shortly before expiry.

Every public method returns an empty result on failure; a marketplace
outage must never break identification.
"""

from __future__ import annotations

import base64
import re
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import structlog

from cardshelf.config import settings
from cardshelf.pipeline.token_cache import TokenCache
from cardshelf.pricing.estimator import MarketplaceListing, PriceEstimate, estimate_price

logger = structlog.get_logger(__name__)

# ---------------------------------------------------------------------------
# Marketplace configuration
# ---------------------------------------------------------------------------
MARKETPLACE_IDS: dict[str, str] = {
    "US": "EBAY_US",
    "CA": "EBAY_CA",
    "GB": "EBAY_GB",
    "DE": "EBAY_DE",
    "FR": "EBAY_FR",
    "AU": "EBAY_AU",
}

_IMAGE_SIZE_RE = re.compile(r"/s-l(\d+)(?:\.|/)", re.IGNORECASE)
_IMAGE_SIZE_TOKEN_RE = re.compile(r"/s-l\d+(?=\.|/)", re.IGNORECASE)


def marketplace_id_for(country: str | None) -> str:
    """Unknown or missing country codes fall back to the default marketplace."""
    code = (country or "").strip().upper()
    if code not in MARKETPLACE_IDS:
        code = settings.EBAY_DEFAULT_COUNTRY
    return MARKETPLACE_IDS[code]


# ---------------------------------------------------------------------------
# Item summary decoding
# ---------------------------------------------------------------------------


def _money_value(money: Any) -> Decimal | None:
    if not isinstance(money, Mapping):
        return None
    value = money.get("value")
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _money_currency(money: Any) -> str:
    if isinstance(money, Mapping) and isinstance(money.get("currency"), str):
        return money["currency"]
    return ""


def image_size(url: str) -> int | None:
    """Size token of an eBay image URL (".../s-l500.jpg" -> 500)."""
    match = _IMAGE_SIZE_RE.search(url)
    return int(match.group(1)) if match else None


def upgrade_image_url(url: str, min_size: int) -> str:
    size = image_size(url)
    if size is None or size >= min_size:
        return url
    return _IMAGE_SIZE_TOKEN_RE.sub(f"/s-l{min_size}", url, count=1)


def pick_best_image_url(
    item: Mapping[str, Any],
    min_size: int = settings.EBAY_IMAGE_MIN_SIZE,
) -> str | None:
    """Largest candidate among image.imageUrl, imageUrl and thumbnailImages."""
    candidates: list[Any] = []
    image = item.get("image")
    if isinstance(image, Mapping):
        candidates.append(image.get("imageUrl"))
    candidates.append(item.get("imageUrl"))
    thumbnails = item.get("thumbnailImages")
    if isinstance(thumbnails, list):
        candidates.extend(t.get("imageUrl") for t in thumbnails if isinstance(t, Mapping))

    urls = [
        upgrade_image_url(url, min_size)
        for url in candidates
        if isinstance(url, str) and url.strip()
    ]
    if not urls:
        return None
    # Stable sort keeps the first candidate among equal sizes.
    urls.sort(key=lambda url: image_size(url) or -1, reverse=True)
    return urls[0]


def decode_item_summary(item: Any) -> MarketplaceListing | None:
    """
    Decode one Browse API item summary.

    Returns None for anything without a title, a URL and a positive price.
    """
    if not isinstance(item, Mapping):
        return None
    title = item.get("title")
    url = item.get("itemWebUrl")
    price = _money_value(item.get("price"))
    if not isinstance(title, str) or not title or not isinstance(url, str) or not url:
        return None
    if price is None or price <= 0:
        return None
    return MarketplaceListing(
        title=title,
        price=price,
        currency=_money_currency(item.get("price")),
        url=url,
        image_url=pick_best_image_url(item),
    )


def build_marketplace_query(
    *,
    year: int | None = None,
    manufacturer: str | None = None,
    set_name: str | None = None,
    player: str | None = None,
    card_number: str | None = None,
    autograph: bool | None = None,
    grading_company: str | None = None,
    grade: str | None = None,
) -> str:
    """Free-text search query from identified card fields, capped in length."""
    parts = [
        str(year) if year is not None else None,
        manufacturer,
        set_name,
        player,
        f"#{card_number}" if card_number else None,
        "auto" if autograph else None,
        grading_company,
        grade,
    ]
    query = " ".join(p.strip() for p in parts if isinstance(p, str) and p.strip())
    return query[: settings.EBAY_QUERY_MAX_LENGTH]


# ---------------------------------------------------------------------------
# API Client
# ---------------------------------------------------------------------------


class EbayClient:
    """
    eBay Browse API client for active listing price discovery.

    Usage:
        async with EbayClient(token_cache) as client:
            estimate, listings = await client.estimate_for_query("1986 Fleer Jordan", "US")
    """

    def __init__(self, token_cache: TokenCache | None = None) -> None:
        if token_cache is None:
            token_cache = TokenCache(timedelta(seconds=settings.EBAY_TOKEN_SAFETY_MARGIN_SECONDS))
        self._token_cache = token_cache
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "EbayClient":
        self._client = httpx.AsyncClient(timeout=15.0)
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()

    async def _get_access_token(self, scope: str = settings.EBAY_OAUTH_SCOPE) -> str:
        """
        OAuth2 Client Credentials flow using EBAY_CLIENT_ID + EBAY_CLIENT_SECRET.

        Serves the cached token for `scope` while it is still valid. Returns
        an empty string if credentials are missing or the request fails.
        """
        if not settings.EBAY_CLIENT_ID or not settings.EBAY_CLIENT_SECRET:
            return ""

        cached = self._token_cache.get(scope)
        if cached:
            return cached

        if not self._client:
            return ""

        credentials = f"{settings.EBAY_CLIENT_ID}:{settings.EBAY_CLIENT_SECRET}"
        encoded = base64.b64encode(credentials.encode()).decode()

        try:
            response = await self._client.post(
                settings.EBAY_OAUTH_URL,
                headers={
                    "Authorization": f"Basic {encoded}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials", "scope": scope},
            )
            response.raise_for_status()
            data = response.json()

            token = str(data.get("access_token", ""))
            expires_in = int(data.get("expires_in", 7200))
            if token:
                self._token_cache.put(scope, token, expires_in)

            logger.info("ebay_token_refreshed", expires_in=expires_in, source="ebay")
            return token

        except (httpx.HTTPError, ValueError, TypeError) as e:
            logger.error("ebay_token_fetch_failed", error=str(e), source="ebay")
            return ""

    async def search_listings(
        self,
        query: str,
        country: str | None = None,
    ) -> list[MarketplaceListing]:
        """
        Search active listings for a free-text query.

        GET /buy/browse/v1/item_summary/search?q={query}&limit={limit}
        with the X-EBAY-C-MARKETPLACE-ID header for `country`.

        Returns cleaned listings (title, url, positive price), at most
        EBAY_LISTINGS_CONSIDERED of them. Returns [] on any error.
        """
        query = query.strip()
        if not self._client or len(query) < 2:
            return []

        token = await self._get_access_token()
        if not token:
            logger.warning("ebay_search_skipped_no_token", query=query, source="ebay")
            return []

        marketplace_id = marketplace_id_for(country)
        try:
            response = await self._client.get(
                f"{settings.EBAY_BROWSE_URL}/item_summary/search",
                headers={
                    "Authorization": f"Bearer {token}",
                    "X-EBAY-C-MARKETPLACE-ID": marketplace_id,
                },
                params={"q": query, "limit": str(settings.EBAY_SEARCH_LIMIT)},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("ebay_search_failed", query=query, error=str(e), source="ebay")
            return []

        summaries = data.get("itemSummaries") if isinstance(data, Mapping) else None
        if not isinstance(summaries, list):
            summaries = []

        listings = [
            listing
            for listing in (
                decode_item_summary(item)
                for item in summaries[: settings.EBAY_LISTINGS_CONSIDERED]
            )
            if listing is not None
        ]
        logger.info(
            "ebay_search_complete",
            query=query,
            marketplace_id=marketplace_id,
            raw_count=len(summaries),
            result_count=len(listings),
            source="ebay",
        )
        return listings

    async def estimate_for_query(
        self,
        query: str,
        country: str | None = None,
    ) -> tuple[PriceEstimate, list[MarketplaceListing]]:
        """
        Estimated price for a query plus the listings worth showing.

        Returns (PriceEstimate(), []) when nothing usable comes back.
        """
        listings = await self.search_listings(query, country)
        if not listings:
            return PriceEstimate(), []
        return estimate_price(listings), listings[: settings.EBAY_LISTINGS_SHOWN]
