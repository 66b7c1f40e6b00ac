"""
Cardshelf - Listing Query Parameters

Parses untrusted, stringly-typed query parameters into a validated
CardListingFilter + Pagination, and serializes a state back into a minimal
canonical parameter map for shareable URLs.

Parsing never raises. Malformed or out-of-range values degrade to the
field default, so an adversarial query string yields the default view.

Encoding rules:
- Flags (graded, rookie, autograph, serial_numbered) are on only for "1".
- forSale is inverted: absent means on, only "0" turns it off.
- Serialization omits every field that equals its default.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any, NamedTuple
from urllib.parse import urlencode

import structlog
from pydantic import BaseModel, ConfigDict

from cardshelf.config import SortOrder, settings

logger = structlog.get_logger(__name__)

RawParams = Mapping[str, "str | Sequence[str] | None"]

# Canonical default sort per entry point.
GALLERY_DEFAULT_SORT = SortOrder.NEWEST
SEARCH_DEFAULT_SORT = SortOrder.PRICE_DESC

# Filter/pagination field -> query parameter key
PARAM_KEYS: dict[str, str] = {
    "query": "q",
    "for_sale_only": "forSale",
    "graded_only": "graded",
    "price_min": "price_min",
    "price_max": "price_max",
    "year_min": "year_min",
    "year_max": "year_max",
    "grading_company": "grading_company",
    "grade_min": "grade_min",
    "grade_max": "grade_max",
    "rookie": "rookie",
    "autograph": "autograph",
    "serial_numbered": "serial_numbered",
    "sort": "sort",
    "page": "page",
    "page_size": "pageSize",
}

_FLAG_FIELDS = ("graded_only", "rookie", "autograph", "serial_numbered")
_DECIMAL_FIELDS = ("price_min", "price_max", "grade_min", "grade_max")
_INT_FIELDS = ("year_min", "year_max")


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class CardListingFilter(BaseModel):
    """Validated, immutable listing filter."""

    model_config = ConfigDict(frozen=True)

    query: str | None = None
    for_sale_only: bool = True
    graded_only: bool = False
    price_min: Decimal | None = None      # major units; compared in cents
    price_max: Decimal | None = None
    year_min: int | None = None
    year_max: int | None = None
    grading_company: str | None = None    # known company or "Others"
    grade_min: Decimal | None = None
    grade_max: Decimal | None = None
    rookie: bool = False
    autograph: bool = False
    serial_numbered: bool = False
    sort: SortOrder = GALLERY_DEFAULT_SORT


class Pagination(BaseModel):
    """Page request. page >= 1, page_size in [1, LISTING_MAX_PAGE_SIZE]."""

    model_config = ConfigDict(frozen=True)

    page: int = 1
    page_size: int = settings.LISTING_DEFAULT_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class NormalizedParams(NamedTuple):
    filter: CardListingFilter
    pagination: Pagination


# ---------------------------------------------------------------------------
# Per-field parsers
# ---------------------------------------------------------------------------


def first_value(value: Any) -> str | None:
    """A repeated query key yields a list; the first occurrence wins."""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return first_value(value[0]) if value else None
    return None


def parse_flag(value: str | None) -> bool:
    return value == "1"


def parse_for_sale(value: str | None) -> bool:
    """Default on; only the literal "0" turns it off."""
    return value is None or value != "0"


def parse_optional_decimal(value: str | None) -> Decimal | None:
    """Non-negative finite decimal, else None."""
    if not value:
        return None
    try:
        number = Decimal(value)
    except InvalidOperation:
        return None
    if not number.is_finite() or number < 0:
        return None
    return number


def parse_optional_int(value: str | None) -> int | None:
    """Non-negative integer, else None."""
    if not value:
        return None
    try:
        number = int(value)
    except ValueError:
        return None
    return number if number >= 0 else None


def parse_positive_int(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        number = int(value)
    except ValueError:
        return fallback
    return number if number >= 1 else fallback


def parse_optional_text(value: str | None) -> str | None:
    text = (value or "").strip()
    return text or None


def parse_sort(value: str | None, default: SortOrder = GALLERY_DEFAULT_SORT) -> SortOrder:
    """Allow-list parse; anything unknown falls back to the entry point default."""
    try:
        return SortOrder(value)
    except ValueError:
        return default


def parse_grading_company(value: str | None) -> str | None:
    """
    Match against the known companies (case-insensitive) or the "Others"
    sentinel, returning the canonical spelling. Unknown names are dropped.
    """
    text = parse_optional_text(value)
    if text is None:
        return None
    for company in (*settings.KNOWN_GRADING_COMPANIES, settings.OTHER_GRADING_COMPANY):
        if company.lower() == text.lower():
            return company
    return None


def parse_page_size(value: str | None) -> int:
    """Below 1 or garbage -> default; above the ceiling -> capped."""
    size = parse_positive_int(value, settings.LISTING_DEFAULT_PAGE_SIZE)
    return min(size, settings.LISTING_MAX_PAGE_SIZE)


# ---------------------------------------------------------------------------
# Normalize
# ---------------------------------------------------------------------------


def normalize_params(
    raw: RawParams | None,
    default_sort: SortOrder = GALLERY_DEFAULT_SORT,
) -> NormalizedParams:
    """
    Convert raw query parameters into a fully-defaulted filter + pagination.

    Never raises.

    Args:
        raw: Mapping of query key to a string, a list of strings, or None.
        default_sort: Sort used when `sort` is absent or not allow-listed.

    Returns:
        NormalizedParams(filter, pagination).
    """
    raw = raw or {}

    def get(field: str) -> str | None:
        return first_value(raw.get(PARAM_KEYS[field]))

    listing_filter = CardListingFilter(
        query=parse_optional_text(get("query")),
        for_sale_only=parse_for_sale(get("for_sale_only")),
        graded_only=parse_flag(get("graded_only")),
        price_min=parse_optional_decimal(get("price_min")),
        price_max=parse_optional_decimal(get("price_max")),
        year_min=parse_optional_int(get("year_min")),
        year_max=parse_optional_int(get("year_max")),
        grading_company=parse_grading_company(get("grading_company")),
        grade_min=parse_optional_decimal(get("grade_min")),
        grade_max=parse_optional_decimal(get("grade_max")),
        rookie=parse_flag(get("rookie")),
        autograph=parse_flag(get("autograph")),
        serial_numbered=parse_flag(get("serial_numbered")),
        sort=parse_sort(get("sort"), default_sort),
    )
    pagination = Pagination(
        page=parse_positive_int(get("page"), 1),
        page_size=parse_page_size(get("page_size")),
    )

    logger.debug(
        "listing_params_normalized",
        sort=listing_filter.sort.value,
        page=pagination.page,
        page_size=pagination.page_size,
        source="params",
    )
    return NormalizedParams(filter=listing_filter, pagination=pagination)


# ---------------------------------------------------------------------------
# Serialize
# ---------------------------------------------------------------------------


def _encode(field: str, value: Any, default_sort: SortOrder) -> str | None:
    """Encoded parameter value, or None when the value is the default."""
    if field == "query":
        return parse_optional_text(value)
    if field == "for_sale_only":
        return None if value is None or value else "0"
    if field in _FLAG_FIELDS:
        return "1" if value else None
    if field in _DECIMAL_FIELDS:
        return None if value is None else str(Decimal(str(value)))
    if field in _INT_FIELDS:
        return None if value is None else str(int(value))
    if field == "grading_company":
        return parse_optional_text(value)
    if field == "sort":
        sort = parse_sort(value.value if isinstance(value, SortOrder) else value, default_sort)
        return None if sort == default_sort else sort.value
    if field == "page":
        return str(value) if value and value > 1 else None
    if field == "page_size":
        if not value or value == settings.LISTING_DEFAULT_PAGE_SIZE:
            return None
        return str(min(int(value), settings.LISTING_MAX_PAGE_SIZE))
    raise KeyError(f"unknown listing parameter field: {field}")


def build_params(
    current: RawParams | None,
    changes: Mapping[str, Any],
    default_sort: SortOrder = GALLERY_DEFAULT_SORT,
) -> dict[str, str]:
    """
    Apply field changes on top of the current parameters.

    A field absent from `changes` keeps its current raw value; a field set to
    its default (or None) is removed so URLs stay short and canonical.

    Args:
        current: Current raw query parameters (unknown keys are preserved).
        changes: CardListingFilter / Pagination field names to new values.
        default_sort: The entry point's default sort (omitted when chosen).

    Returns:
        New parameter map of key -> single string value.
    """
    params: dict[str, str] = {}
    for key, value in (current or {}).items():
        text = first_value(value)
        if text is not None:
            params[key] = text

    for field, value in changes.items():
        key = PARAM_KEYS[field]
        encoded = _encode(field, value, default_sort)
        if encoded is None:
            params.pop(key, None)
        else:
            params[key] = encoded
    return params


def params_for(
    listing_filter: CardListingFilter,
    pagination: Pagination,
    default_sort: SortOrder = GALLERY_DEFAULT_SORT,
) -> dict[str, str]:
    """Canonical parameter map for a complete normalized state."""
    changes = {**listing_filter.model_dump(), **pagination.model_dump()}
    return build_params(None, changes, default_sort)


def to_query_string(params: Mapping[str, str]) -> str:
    return urlencode(params)
