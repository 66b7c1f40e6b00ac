"""
Cardshelf - Listing Engine

Builds and runs the filtered, sorted, paginated card query for the public
gallery or one owner's collection, then attaches owner profile fragments.

Visibility:
- public scope -> only is_private = false
- user scope   -> only the owner's cards; private ones too only when the
                  viewer is the owner

Grade range has two physical strategies. The numeric grade_number column is
preferred; when the store reports it missing, the query is retried with an
explicit set of grade strings ("8.5", "9", "9.5", "10").

Read path policy: any store failure yields an empty page, never an exception,
and the session is rolled back before returning. A failed owner lookup alone
keeps the cards and leaves their owner unset.
"""

from __future__ import annotations

from datetime import datetime
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from cardshelf.config import ScopeType, SortOrder, settings
from cardshelf.listings.params import CardListingFilter, Pagination
from cardshelf.models.card import Card
from cardshelf.models.profile import Profile
from cardshelf.utils.money import cents_to_dollars, dollars_to_cents

logger = structlog.get_logger(__name__)

_HALF = Decimal("0.5")
_GRADE_NUMBER_COLUMN = "grade_number"
_OWNER_ID_PREFIX_LENGTH = 8

# grade_number is deliberately not selected so the fallback query runs
# against schemas that predate the column.
_SUMMARY_COLUMNS = (
    Card.id,
    Card.user_id,
    Card.is_private,
    Card.title,
    Card.year,
    Card.player,
    Card.brand,
    Card.set_name,
    Card.card_number,
    Card.image_urls,
    Card.is_graded,
    Card.grading_company,
    Card.grade,
    Card.rookie,
    Card.autograph,
    Card.serial_numbered,
    Card.print_run,
    Card.for_sale,
    Card.price_cents,
    Card.currency,
    Card.created_at,
)


class GradeRangeMode(str, Enum):
    NONE = "none"
    NUMBER = "number"
    TEXT = "text"


# ---------------------------------------------------------------------------
# Result models
# ---------------------------------------------------------------------------


class CardScope(BaseModel):
    """Visibility boundary: the public gallery or one user's collection."""

    model_config = ConfigDict(frozen=True)

    type: ScopeType
    user_id: str | None = None

    @classmethod
    def public(cls) -> "CardScope":
        return cls(type=ScopeType.PUBLIC)

    @classmethod
    def user(cls, user_id: str) -> "CardScope":
        return cls(type=ScopeType.USER, user_id=user_id)


class OwnerProfile(BaseModel):
    id: str
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None


class CardSummary(BaseModel):
    """Read projection of a card plus its owner's public profile."""

    id: int
    user_id: str
    is_private: bool
    title: str
    year: int | None = None
    player: str | None = None
    brand: str | None = None
    set_name: str | None = None
    card_number: str | None = None
    image_urls: list[str] = Field(default_factory=list)
    is_graded: bool = False
    grading_company: str | None = None
    grade: str | None = None
    rookie: bool = False
    autograph: bool = False
    serial_numbered: bool = False
    print_run: int | None = None
    for_sale: bool = False
    price_cents: int | None = None
    currency: str = settings.DEFAULT_CURRENCY
    created_at: datetime | None = None
    owner: OwnerProfile | None = None

    @property
    def owner_label(self) -> str:
        return owner_label(self)


class CardListingPage(BaseModel):
    """Page envelope."""

    items: list[CardSummary] = Field(default_factory=list)
    page: int
    page_size: int
    total: int
    has_prev: bool
    has_next: bool


def owner_label(card: CardSummary) -> str:
    """Display name, then username, then a truncated owner identity."""
    if card.owner is not None:
        if card.owner.display_name:
            return card.owner.display_name
        if card.owner.username:
            return card.owner.username
    return card.user_id[:_OWNER_ID_PREFIX_LENGTH]


# ---------------------------------------------------------------------------
# Query building
# ---------------------------------------------------------------------------


def escape_like(value: str) -> str:
    """Escape LIKE wildcards (and the escape character itself)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def format_grade(value: Decimal) -> str:
    """Grade label as stored: "9", "9.5", "10"."""
    if value == value.to_integral_value():
        return str(int(value))
    return str(value.normalize())


def grade_values_for_range(
    grade_min: Decimal | None,
    grade_max: Decimal | None,
) -> list[str]:
    """
    Enumerate the discrete grade labels in [grade_min, grade_max], stepping
    by 0.5 from ceil(min*2)/2 to floor(max*2)/2 inclusive.

    Bounds are clamped to the grade scale first, so an open-ended or huge
    bound never enumerates past GRADE_SCALE_MAX. An inverted range, or one
    lying wholly outside the scale, yields an empty list (which matches
    nothing).
    """
    low = settings.GRADE_SCALE_MIN if grade_min is None else Decimal(grade_min)
    high = settings.GRADE_SCALE_MAX if grade_max is None else Decimal(grade_max)
    if high < low:
        return []
    low = max(low, settings.GRADE_SCALE_MIN)
    high = min(high, settings.GRADE_SCALE_MAX)
    if high < low:
        return []

    start = (low * 2).to_integral_value(rounding=ROUND_CEILING) / 2
    end = (high * 2).to_integral_value(rounding=ROUND_FLOOR) / 2
    values: list[str] = []
    current = start
    while current <= end:
        values.append(format_grade(current))
        current += _HALF
    return values


def price_bound_cents(amount: Decimal) -> int:
    """Price filter bound in cents, capped at the largest storable price."""
    if amount >= cents_to_dollars(settings.PRICE_CENTS_MAX):
        return settings.PRICE_CENTS_MAX
    return dollars_to_cents(amount)


def _scope_conditions(scope: CardScope, viewer_id: str | None) -> list[Any]:
    if scope.type == ScopeType.PUBLIC:
        return [Card.is_private.is_(False)]
    conditions: list[Any] = [Card.user_id == scope.user_id]
    if not viewer_id or viewer_id != scope.user_id:
        conditions.append(Card.is_private.is_(False))
    return conditions


def _filter_conditions(
    listing_filter: CardListingFilter,
    grade_mode: GradeRangeMode,
) -> list[Any]:
    f = listing_filter
    conditions: list[Any] = []

    if f.for_sale_only:
        conditions.append(Card.for_sale.is_(True))
        if f.price_min is not None:
            conditions.append(Card.price_cents >= price_bound_cents(f.price_min))
        if f.price_max is not None:
            conditions.append(Card.price_cents <= price_bound_cents(f.price_max))

    if f.year_min is not None:
        conditions.append(Card.year >= f.year_min)
    if f.year_max is not None:
        conditions.append(Card.year <= f.year_max)

    if f.graded_only:
        conditions.append(Card.is_graded.is_(True))

        if f.grading_company == settings.OTHER_GRADING_COMPANY:
            conditions.append(Card.grading_company.is_not(None))
            conditions.append(Card.grading_company.not_in(settings.KNOWN_GRADING_COMPANIES))
        elif f.grading_company:
            conditions.append(Card.grading_company == f.grading_company)

        if grade_mode == GradeRangeMode.NUMBER:
            if f.grade_min is not None:
                conditions.append(Card.grade_number >= f.grade_min)
            if f.grade_max is not None:
                conditions.append(Card.grade_number <= f.grade_max)
        elif grade_mode == GradeRangeMode.TEXT:
            conditions.append(Card.grade.in_(grade_values_for_range(f.grade_min, f.grade_max)))

    if f.rookie:
        conditions.append(Card.rookie.is_(True))
    if f.autograph:
        conditions.append(Card.autograph.is_(True))
    if f.serial_numbered:
        conditions.append(Card.serial_numbered.is_(True))

    if f.query:
        pattern = f"%{escape_like(f.query)}%"
        conditions.append(
            or_(
                Card.title.ilike(pattern, escape="\\"),
                Card.player.ilike(pattern, escape="\\"),
                Card.brand.ilike(pattern, escape="\\"),
                Card.set_name.ilike(pattern, escape="\\"),
                Card.card_number.ilike(pattern, escape="\\"),
            )
        )

    return conditions


def _order_by(sort: SortOrder) -> list[Any]:
    """Sort clauses; every order ends in (created_at desc, id desc) so it is total."""
    tie_break = [Card.created_at.desc(), Card.id.desc()]
    if sort == SortOrder.OLDEST:
        return [Card.created_at.asc(), Card.id.asc()]
    if sort == SortOrder.YEAR_DESC:
        return [Card.year.desc().nullslast(), *tie_break]
    if sort == SortOrder.YEAR_ASC:
        return [Card.year.asc().nullslast(), *tie_break]
    if sort == SortOrder.PRICE_DESC:
        return [Card.price_cents.desc().nullslast(), *tie_break]
    if sort == SortOrder.PRICE_ASC:
        return [Card.price_cents.asc().nullslast(), *tie_break]
    return tie_break


def build_listing_query(
    scope: CardScope,
    viewer_id: str | None,
    listing_filter: CardListingFilter,
    grade_mode: GradeRangeMode = GradeRangeMode.NONE,
) -> Select:
    """Filtered, sorted statement without pagination."""
    conditions = [
        *_scope_conditions(scope, viewer_id),
        *_filter_conditions(listing_filter, grade_mode),
    ]
    return (
        select(*_SUMMARY_COLUMNS)
        .where(and_(*conditions))
        .order_by(*_order_by(listing_filter.sort))
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


def _is_missing_grade_number(error: DBAPIError) -> bool:
    # Only the driver message; the wrapped statement always names the column.
    return _GRADE_NUMBER_COLUMN in str(error.orig).lower()


async def _fetch(
    session: AsyncSession,
    stmt: Select,
    pagination: Pagination,
) -> tuple[list[dict[str, Any]], int]:
    count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
    total = (await session.execute(count_stmt)).scalar_one()
    page_stmt = stmt.offset(pagination.offset).limit(pagination.page_size)
    rows = (await session.execute(page_stmt)).mappings().all()
    return [dict(row) for row in rows], int(total or 0)


async def _attach_owners(
    session: AsyncSession,
    rows: list[dict[str, Any]],
) -> list[CardSummary]:
    """
    One batched profile lookup for the distinct owners on the page.

    A failed lookup leaves every owner as None; the cards are still returned.
    """
    owner_ids = sorted({str(row["user_id"]) for row in rows})
    profiles: dict[str, OwnerProfile] = {}
    if owner_ids:
        try:
            result = await session.execute(
                select(
                    Profile.id, Profile.username, Profile.display_name, Profile.avatar_url
                ).where(Profile.id.in_(owner_ids))
            )
            for profile in result.mappings().all():
                profiles[str(profile["id"])] = OwnerProfile(**profile)
        except SQLAlchemyError as e:
            logger.warning(
                "listing_owner_lookup_failed",
                owners=len(owner_ids),
                error=str(e),
                source="listings",
            )
            profiles = {}
            await _rollback_quietly(session)

    return [
        CardSummary(**row, owner=profiles.get(str(row["user_id"])))
        for row in rows
    ]


async def _rollback_quietly(session: AsyncSession) -> None:
    """Roll back an aborted transaction so the caller gets a usable session."""
    try:
        await session.rollback()
    except SQLAlchemyError as e:
        logger.warning("listing_rollback_failed", error=str(e), source="listings")


def _empty_page(pagination: Pagination) -> CardListingPage:
    return CardListingPage(
        items=[],
        page=pagination.page,
        page_size=pagination.page_size,
        total=0,
        has_prev=pagination.page > 1,
        has_next=False,
    )


async def get_listing_page(
    session: AsyncSession,
    scope: CardScope,
    viewer_id: str | None,
    listing_filter: CardListingFilter,
    pagination: Pagination,
) -> CardListingPage:
    """
    Fetch one page of cards visible to `viewer_id` within `scope`.

    Args:
        session: Async DB session (the card + profile store).
        scope: CardScope.public() or CardScope.user(owner_id).
        viewer_id: Identity of the requesting user, None when anonymous.
        listing_filter: Normalized filter (see listings.params).
        pagination: Normalized pagination.

    Returns:
        CardListingPage. Empty (total=0) if the store query fails.
    """
    page = max(1, pagination.page)
    page_size = max(1, min(settings.LISTING_MAX_PAGE_SIZE, pagination.page_size))
    pagination = Pagination(page=page, page_size=page_size)

    wants_grade_range = listing_filter.graded_only and (
        listing_filter.grade_min is not None or listing_filter.grade_max is not None
    )
    grade_mode = GradeRangeMode.NUMBER if wants_grade_range else GradeRangeMode.NONE

    try:
        try:
            stmt = build_listing_query(scope, viewer_id, listing_filter, grade_mode)
            rows, total = await _fetch(session, stmt, pagination)
        except DBAPIError as e:
            if not (wants_grade_range and _is_missing_grade_number(e)):
                raise
            logger.warning(
                "listing_grade_number_unavailable",
                error=str(e.orig),
                fallback=GradeRangeMode.TEXT.value,
                source="listings",
            )
            await session.rollback()
            stmt = build_listing_query(scope, viewer_id, listing_filter, GradeRangeMode.TEXT)
            rows, total = await _fetch(session, stmt, pagination)

        items = await _attach_owners(session, rows)

    except Exception as e:
        logger.error(
            "listing_query_failed",
            scope=scope.type.value,
            error=str(e),
            error_type=type(e).__name__,
            source="listings",
        )
        await _rollback_quietly(session)
        return _empty_page(pagination)

    has_next = pagination.offset + len(items) < total
    logger.info(
        "listing_page_fetched",
        scope=scope.type.value,
        page=pagination.page,
        page_size=pagination.page_size,
        item_count=len(items),
        total=total,
        source="listings",
    )
    return CardListingPage(
        items=items,
        page=pagination.page,
        page_size=pagination.page_size,
        total=total,
        has_prev=pagination.page > 1,
        has_next=has_next,
    )
