"""Tests for the listing engine against an in-memory card store."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from cardshelf.config import SortOrder
from cardshelf.listings import engine as engine_module
from cardshelf.listings.engine import (
    CardScope,
    CardSummary,
    OwnerProfile,
    escape_like,
    get_listing_page,
    grade_values_for_range,
    owner_label,
    price_bound_cents,
)
from cardshelf.listings.params import CardListingFilter, Pagination, normalize_params

OWNER = "owner-aaaa-1111"
OTHER_OWNER = "owner-bbbb-2222"

ALL_CARDS = CardListingFilter(for_sale_only=False)
SAME_INSTANT = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


async def _page(session, listing_filter=ALL_CARDS, scope=None, viewer_id=None, page=1, page_size=24):
    return await get_listing_page(
        session,
        scope or CardScope.public(),
        viewer_id,
        listing_filter,
        Pagination(page=page, page_size=page_size),
    )


def _titles(page) -> list[str]:
    return [item.title for item in page.items]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


class TestGradeValuesForRange:
    def test_half_steps_inclusive(self) -> None:
        assert grade_values_for_range(Decimal("8.5"), Decimal("10")) == ["8.5", "9", "9.5", "10"]

    def test_bounds_round_inward(self) -> None:
        assert grade_values_for_range(Decimal("8.3"), Decimal("9.2")) == ["8.5", "9"]

    def test_open_bounds_use_full_scale(self) -> None:
        values = grade_values_for_range(None, None)
        assert values[0] == "0" and values[-1] == "10"
        assert len(values) == 21

    def test_inverted_range_is_empty(self) -> None:
        assert grade_values_for_range(Decimal("9"), Decimal("8")) == []

    def test_huge_upper_bound_stops_at_scale_max(self) -> None:
        values = grade_values_for_range(None, Decimal("1e6"))
        assert values == grade_values_for_range(None, None)
        assert len(values) == 21 and values[-1] == "10"

    def test_huge_upper_bound_with_lower_bound(self) -> None:
        assert grade_values_for_range(Decimal("0"), Decimal("1e9"))[-1] == "10"
        assert grade_values_for_range(Decimal("9.5"), Decimal("1e9")) == ["9.5", "10"]

    def test_range_above_scale_is_empty(self) -> None:
        assert grade_values_for_range(Decimal("11"), Decimal("12")) == []
        assert grade_values_for_range(Decimal("1e6"), None) == []


class TestEscapeLike:
    def test_wildcards_escaped(self) -> None:
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"

    def test_plain_text_unchanged(self) -> None:
        assert escape_like("Jordan") == "Jordan"


class TestPriceBoundCents:
    def test_ordinary_amount_converted(self) -> None:
        assert price_bound_cents(Decimal("25.00")) == 2500

    @pytest.mark.parametrize("amount", ["1e17", "1e30", "1e999999"])
    def test_huge_amount_capped(self, amount) -> None:
        with patch.object(engine_module.settings, "PRICE_CENTS_MAX", 2_147_483_647):
            assert price_bound_cents(Decimal(amount)) == 2_147_483_647


class TestOwnerLabel:
    def _card(self, owner: OwnerProfile | None) -> CardSummary:
        return CardSummary(
            id=1, user_id="abcdef0123456789", is_private=False, title="T", owner=owner,
        )

    def test_display_name_first(self) -> None:
        owner = OwnerProfile(id="x", username="mj23", display_name="Mike")
        assert owner_label(self._card(owner)) == "Mike"

    def test_username_second(self) -> None:
        assert owner_label(self._card(OwnerProfile(id="x", username="mj23"))) == "mj23"

    def test_truncated_identity_last(self) -> None:
        assert self._card(None).owner_label == "abcdef01"


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------


class TestVisibility:
    @pytest.mark.asyncio
    async def test_public_scope_hides_private_cards(self, mock_db_session, add_card) -> None:
        await add_card(title="Public")
        await add_card(title="Secret", is_private=True)

        page = await _page(mock_db_session)
        assert _titles(page) == ["Public"]
        assert all(not item.is_private for item in page.items)

    @pytest.mark.asyncio
    async def test_owner_sees_own_private_cards(self, mock_db_session, add_card) -> None:
        await add_card(title="Public")
        await add_card(title="Secret", is_private=True)
        await add_card(title="Someone else", user_id=OTHER_OWNER)

        page = await _page(mock_db_session, scope=CardScope.user(OWNER), viewer_id=OWNER)
        assert sorted(_titles(page)) == ["Public", "Secret"]

    @pytest.mark.asyncio
    async def test_other_viewer_sees_only_public_cards_of_owner(self, mock_db_session, add_card) -> None:
        await add_card(title="Public")
        await add_card(title="Secret", is_private=True)

        for viewer in (OTHER_OWNER, None):
            page = await _page(mock_db_session, scope=CardScope.user(OWNER), viewer_id=viewer)
            assert _titles(page) == ["Public"]


# ---------------------------------------------------------------------------
# Pagination
# ---------------------------------------------------------------------------


class TestPagination:
    @pytest.mark.asyncio
    async def test_page_envelope(self, mock_db_session, add_card) -> None:
        for _ in range(5):
            await add_card()

        first = await _page(mock_db_session, page=1, page_size=2)
        last = await _page(mock_db_session, page=3, page_size=2)
        beyond = await _page(mock_db_session, page=4, page_size=2)

        assert (len(first.items), first.total, first.has_prev, first.has_next) == (2, 5, False, True)
        assert (len(last.items), last.has_prev, last.has_next) == (1, True, False)
        assert (beyond.items, beyond.total, beyond.has_prev, beyond.has_next) == ([], 5, True, False)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page_number,page_size,total", [
        (1, 10, 25),
        (2, 10, 25),
        (3, 10, 25),
        (4, 10, 25),
        (1, 24, 0),
        (2, 24, 0),
        (2, 5, 10),
        (3, 5, 10),
        (1, 60, 3),
    ])
    async def test_item_count_and_flags(
        self, mock_db_session, add_card, page_number, page_size, total,
    ) -> None:
        for _ in range(total):
            await add_card()

        page = await _page(mock_db_session, page=page_number, page_size=page_size)

        offset = (page_number - 1) * page_size
        expected = min(page_size, max(0, total - offset))
        assert len(page.items) == expected
        assert page.total == total
        assert page.has_prev is (page_number > 1)
        assert page.has_next is (offset + expected < total)

    @pytest.mark.asyncio
    async def test_pages_are_disjoint_and_cover_everything(self, mock_db_session, add_card) -> None:
        for _ in range(7):
            await add_card()

        seen: list[int] = []
        for page_number in (1, 2, 3):
            page = await _page(mock_db_session, page=page_number, page_size=3)
            seen.extend(item.id for item in page.items)

        assert len(seen) == len(set(seen)) == 7

    @pytest.mark.asyncio
    async def test_page_size_is_clamped(self, mock_db_session, add_card) -> None:
        await add_card()
        page = await get_listing_page(
            mock_db_session, CardScope.public(), None, ALL_CARDS,
            Pagination.model_construct(page=0, page_size=500),
        )
        assert (page.page, page.page_size) == (1, 60)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


class TestFilters:
    @pytest.mark.asyncio
    async def test_for_sale_only_by_default(self, mock_db_session, add_card) -> None:
        await add_card(title="Selling")
        await add_card(title="Keeping", for_sale=False, price_cents=None)

        assert _titles(await _page(mock_db_session, CardListingFilter())) == ["Selling"]
        assert sorted(_titles(await _page(mock_db_session))) == ["Keeping", "Selling"]

    @pytest.mark.asyncio
    async def test_price_range_in_cents(self, mock_db_session, add_card) -> None:
        await add_card(title="Cheap", price_cents=999)
        await add_card(title="Mid", price_cents=1000)
        await add_card(title="Dear", price_cents=2501)

        f = CardListingFilter(price_min=Decimal("10"), price_max=Decimal("25.00"))
        assert _titles(await _page(mock_db_session, f)) == ["Mid"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price_max", ["1e17", "1e30", "1e999999"])
    async def test_huge_price_max_keeps_matching_cards(self, mock_db_session, add_card, price_max) -> None:
        await add_card(title="Cheap", price_cents=500)
        await add_card(title="Dear", price_cents=2_000_000_000)

        params = normalize_params({"price_max": price_max})
        page = await _page(mock_db_session, params.filter)

        assert page.total == 2
        assert sorted(_titles(page)) == ["Cheap", "Dear"]

    @pytest.mark.asyncio
    async def test_huge_price_min_matches_nothing(self, mock_db_session, add_card) -> None:
        await add_card(title="Dear", price_cents=2_000_000_000)

        params = normalize_params({"price_min": "1e30"})
        page = await _page(mock_db_session, params.filter)

        assert (page.items, page.total) == ([], 0)

    @pytest.mark.asyncio
    async def test_price_range_ignored_when_for_sale_off(self, mock_db_session, add_card) -> None:
        await add_card(title="Cheap", price_cents=100)
        f = CardListingFilter(for_sale_only=False, price_min=Decimal("50"))
        assert _titles(await _page(mock_db_session, f)) == ["Cheap"]

    @pytest.mark.asyncio
    async def test_year_range(self, mock_db_session, add_card) -> None:
        await add_card(title="Old", year=1986)
        await add_card(title="New", year=2023)
        await add_card(title="Unknown", year=None)

        f = CardListingFilter(for_sale_only=False, year_min=1980, year_max=1990)
        assert _titles(await _page(mock_db_session, f)) == ["Old"]

    @pytest.mark.asyncio
    async def test_attribute_flags(self, mock_db_session, add_card) -> None:
        await add_card(title="RC Auto", rookie=True, autograph=True)
        await add_card(title="RC", rookie=True)
        await add_card(title="Numbered", serial_numbered=True, print_run=99)

        rookies = CardListingFilter(for_sale_only=False, rookie=True)
        autos = CardListingFilter(for_sale_only=False, rookie=True, autograph=True)
        numbered = CardListingFilter(for_sale_only=False, serial_numbered=True)

        assert sorted(_titles(await _page(mock_db_session, rookies))) == ["RC", "RC Auto"]
        assert _titles(await _page(mock_db_session, autos)) == ["RC Auto"]
        assert _titles(await _page(mock_db_session, numbered)) == ["Numbered"]

    @pytest.mark.asyncio
    async def test_text_query_matches_any_field_case_insensitively(self, mock_db_session, add_card) -> None:
        await add_card(title="Base", player="Michael Jordan")
        await add_card(title="Insert", set_name="Fleer JORDAN Tribute")
        await add_card(title="Other", player="Larry Bird")

        f = CardListingFilter(for_sale_only=False, query="jordan")
        assert sorted(_titles(await _page(mock_db_session, f))) == ["Base", "Insert"]

    @pytest.mark.asyncio
    async def test_text_query_wildcards_are_literal(self, mock_db_session, add_card) -> None:
        await add_card(title="50% off")
        await add_card(title="500 club")

        assert _titles(await _page(mock_db_session, CardListingFilter(for_sale_only=False, query="50%"))) == ["50% off"]
        assert _titles(await _page(mock_db_session, CardListingFilter(for_sale_only=False, query="_"))) == []

    @pytest.mark.asyncio
    async def test_graded_only(self, mock_db_session, add_card) -> None:
        await add_card(title="Raw")
        await add_card(title="Slab", is_graded=True, grading_company="PSA", grade="9")

        f = CardListingFilter(for_sale_only=False, graded_only=True)
        assert _titles(await _page(mock_db_session, f)) == ["Slab"]

    @pytest.mark.asyncio
    async def test_grading_company_and_others(self, mock_db_session, add_card) -> None:
        await add_card(title="PSA", is_graded=True, grading_company="PSA", grade="10")
        await add_card(title="BGS", is_graded=True, grading_company="BGS", grade="9.5")
        await add_card(title="KSA", is_graded=True, grading_company="KSA", grade="9")
        await add_card(title="No company", is_graded=True, grading_company=None, grade="8")

        psa = CardListingFilter(for_sale_only=False, graded_only=True, grading_company="PSA")
        others = CardListingFilter(for_sale_only=False, graded_only=True, grading_company="Others")

        assert _titles(await _page(mock_db_session, psa)) == ["PSA"]
        assert _titles(await _page(mock_db_session, others)) == ["KSA"]

    @pytest.mark.asyncio
    async def test_grading_company_requires_graded_only(self, mock_db_session, add_card) -> None:
        await add_card(title="Raw")
        await add_card(title="PSA", is_graded=True, grading_company="PSA", grade="10")

        f = CardListingFilter(for_sale_only=False, grading_company="PSA")
        assert len((await _page(mock_db_session, f)).items) == 2


# ---------------------------------------------------------------------------
# Grade range (numeric column and discrete fallback)
# ---------------------------------------------------------------------------


async def _add_graded_set(add_card) -> None:
    for grade in ("7", "8.5", "9", "9.5", "10", "OTHER"):
        numeric = None if grade == "OTHER" else Decimal(grade)
        await add_card(
            title=f"Grade {grade}",
            is_graded=True,
            grading_company="PSA",
            grade=grade,
            grade_number=numeric,
        )


class TestGradeRange:
    @pytest.mark.asyncio
    async def test_numeric_grade_range(self, mock_db_session, add_card) -> None:
        await _add_graded_set(add_card)

        f = CardListingFilter(
            for_sale_only=False, graded_only=True,
            grade_min=Decimal("8.5"), grade_max=Decimal("9.5"),
        )
        assert sorted(_titles(await _page(mock_db_session, f))) == [
            "Grade 8.5", "Grade 9", "Grade 9.5",
        ]

    @pytest.mark.asyncio
    async def test_fallback_matches_numeric_strategy(self, mock_db_session, add_card) -> None:
        await _add_graded_set(add_card)
        f = CardListingFilter(for_sale_only=False, graded_only=True, grade_min=Decimal("9"))

        numeric = await _page(mock_db_session, f)

        await mock_db_session.execute(text("ALTER TABLE cards DROP COLUMN grade_number"))
        await mock_db_session.commit()

        fallback = await _page(mock_db_session, f)

        assert _titles(fallback) == _titles(numeric) == ["Grade 10", "Grade 9.5", "Grade 9"]
        assert fallback.total == numeric.total == 3

    @pytest.mark.asyncio
    async def test_fallback_inverted_range_matches_nothing(self, mock_db_session, add_card) -> None:
        await _add_graded_set(add_card)
        await mock_db_session.execute(text("ALTER TABLE cards DROP COLUMN grade_number"))
        await mock_db_session.commit()

        f = CardListingFilter(
            for_sale_only=False, graded_only=True,
            grade_min=Decimal("9.5"), grade_max=Decimal("9"),
        )
        page = await _page(mock_db_session, f)
        assert (page.items, page.total) == ([], 0)

    @pytest.mark.asyncio
    async def test_fallback_with_huge_grade_max(self, mock_db_session, add_card) -> None:
        await _add_graded_set(add_card)
        await mock_db_session.execute(text("ALTER TABLE cards DROP COLUMN grade_number"))
        await mock_db_session.commit()

        params = normalize_params({"forSale": "0", "graded": "1", "grade_min": "9", "grade_max": "1e9"})
        page = await _page(mock_db_session, params.filter)

        assert _titles(page) == ["Grade 10", "Grade 9.5", "Grade 9"]

    @pytest.mark.asyncio
    async def test_fallback_page_envelope(self, mock_db_session, add_card) -> None:
        await _add_graded_set(add_card)
        await mock_db_session.execute(text("ALTER TABLE cards DROP COLUMN grade_number"))
        await mock_db_session.commit()

        f = CardListingFilter(for_sale_only=False, graded_only=True, grade_min=Decimal("8.5"))
        first = await _page(mock_db_session, f, page=1, page_size=2)
        second = await _page(mock_db_session, f, page=2, page_size=2)
        beyond = await _page(mock_db_session, f, page=3, page_size=2)

        assert (_titles(first), first.total, first.has_prev, first.has_next) == (
            ["Grade 10", "Grade 9.5"], 4, False, True,
        )
        assert (_titles(second), second.total, second.has_prev, second.has_next) == (
            ["Grade 9", "Grade 8.5"], 4, True, False,
        )
        assert (beyond.items, beyond.total, beyond.has_prev, beyond.has_next) == ([], 4, True, False)

    @pytest.mark.asyncio
    async def test_grade_range_without_graded_only_is_ignored(self, mock_db_session, add_card) -> None:
        await _add_graded_set(add_card)
        await add_card(title="Raw")

        f = CardListingFilter(for_sale_only=False, grade_min=Decimal("10"))
        assert (await _page(mock_db_session, f)).total == 7


# ---------------------------------------------------------------------------
# Sorting
# ---------------------------------------------------------------------------


class TestSorting:
    @pytest.mark.asyncio
    async def test_newest_and_oldest(self, mock_db_session, add_card) -> None:
        for title in ("A", "B", "C"):
            await add_card(title=title)

        newest = CardListingFilter(for_sale_only=False, sort=SortOrder.NEWEST)
        oldest = CardListingFilter(for_sale_only=False, sort=SortOrder.OLDEST)
        assert _titles(await _page(mock_db_session, newest)) == ["C", "B", "A"]
        assert _titles(await _page(mock_db_session, oldest)) == ["A", "B", "C"]

    @pytest.mark.asyncio
    async def test_price_sorts_put_missing_prices_last(self, mock_db_session, add_card) -> None:
        await add_card(title="Mid", price_cents=500)
        await add_card(title="None", for_sale=False, price_cents=None)
        await add_card(title="High", price_cents=900)
        await add_card(title="Low", price_cents=100)

        desc = CardListingFilter(for_sale_only=False, sort=SortOrder.PRICE_DESC)
        asc = CardListingFilter(for_sale_only=False, sort=SortOrder.PRICE_ASC)
        assert _titles(await _page(mock_db_session, desc)) == ["High", "Mid", "Low", "None"]
        assert _titles(await _page(mock_db_session, asc)) == ["Low", "Mid", "High", "None"]

    @pytest.mark.asyncio
    async def test_year_sort_ties_break_by_newest(self, mock_db_session, add_card) -> None:
        await add_card(title="1990 first", year=1990)
        await add_card(title="2000", year=2000)
        await add_card(title="1990 second", year=1990)

        f = CardListingFilter(for_sale_only=False, sort=SortOrder.YEAR_ASC)
        assert _titles(await _page(mock_db_session, f)) == ["1990 second", "1990 first", "2000"]

    @pytest.mark.asyncio
    async def test_same_timestamp_is_still_deterministic(self, mock_db_session, add_card) -> None:
        first = await add_card(title="First", created_at=SAME_INSTANT)
        second = await add_card(title="Second", created_at=SAME_INSTANT)

        page = await _page(mock_db_session)
        assert [item.id for item in page.items] == [second.id, first.id]


# ---------------------------------------------------------------------------
# Owner enrichment
# ---------------------------------------------------------------------------


class TestOwnerEnrichment:
    @pytest.mark.asyncio
    async def test_owner_profile_attached(self, mock_db_session, add_card, add_profile) -> None:
        await add_profile(OWNER, username="mj23", display_name="Mike", avatar_url="https://a/x.png")
        await add_card(title="Mine")
        await add_card(title="Orphan", user_id=OTHER_OWNER)

        page = await _page(mock_db_session, CardListingFilter(for_sale_only=False, sort=SortOrder.OLDEST))
        mine, orphan = page.items

        assert mine.owner == OwnerProfile(
            id=OWNER, username="mj23", display_name="Mike", avatar_url="https://a/x.png",
        )
        assert mine.owner_label == "Mike"
        assert orphan.owner is None
        assert orphan.owner_label == OTHER_OWNER[:8]

    @pytest.mark.asyncio
    async def test_failed_owner_lookup_keeps_cards(self, mock_db_session, add_card, add_profile) -> None:
        await add_profile(OWNER, username="mj23", display_name="Mike")
        await add_card(title="First")
        await add_card(title="Second")
        await mock_db_session.execute(text("DROP TABLE profiles"))
        await mock_db_session.commit()

        page = await _page(mock_db_session)

        assert _titles(page) == ["Second", "First"]
        assert page.total == 2
        assert all(item.owner is None for item in page.items)
        assert page.items[0].owner_label == OWNER[:8]


# ---------------------------------------------------------------------------
# Failure policy
# ---------------------------------------------------------------------------


class TestFailSoft:
    @pytest.mark.asyncio
    async def test_store_error_returns_empty_page(self) -> None:
        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))

        page = await _page(session, page=2)

        assert page.items == []
        assert page.total == 0
        assert page.page == 2
        assert page.has_next is False
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unrelated_error_is_not_retried(self) -> None:
        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("disk full"))

        f = CardListingFilter(graded_only=True, grade_min=Decimal("9"))
        page = await _page(session, f)

        assert page.total == 0
        assert session.execute.call_count == 1
        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_rollback_still_returns_empty_page(self) -> None:
        session = AsyncMock()
        session.execute.side_effect = OperationalError("SELECT", {}, Exception("connection lost"))
        session.rollback.side_effect = OperationalError("ROLLBACK", {}, Exception("connection lost"))

        page = await _page(session)

        assert (page.items, page.total) == ([], 0)
