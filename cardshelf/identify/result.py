"""
Cardshelf - Identification Result

Typed result of AI-assisted card identification, plus the coercions that
turn a loosely-shaped model response into it. Vision models return years as
numbers, strings or seasons ("2015-16"), and confidence as 0-1 or 0-100;
everything is normalized here.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from cardshelf.pricing.estimator import MarketplaceListing

YEAR_MIN = 1900
YEAR_MAX = 2100

_SEASON_RE = re.compile(r"\b(19\d{2}|20\d{2})\s*[/-]\s*\d{2}\b")
_YEAR_RE = re.compile(r"\b(19\d{2}|20\d{2})\b")

# Free-text fields copied (trimmed, empty -> None) from the model response.
TEXT_FIELDS = (
    "title",
    "player",
    "manufacturer",
    "team",
    "league",
    "sport",
    "set_name",
    "card_number",
    "condition",
    "condition_detail",
    "country_of_origin",
    "original_licensed_reprint",
    "parallel_variety",
    "features",
    "season",
    "grading_company",
    "grade",
    "evidence_text",
)


class IdentifyResult(BaseModel):
    """Best-guess card fields, optionally enriched with a marketplace estimate."""

    confidence: int = 0  # 0-100
    title: str | None = None
    year: int | None = None
    player: str | None = None
    manufacturer: str | None = None
    team: str | None = None
    league: str | None = None
    sport: str | None = None
    set_name: str | None = None
    card_number: str | None = None
    condition: str | None = None
    condition_detail: str | None = None
    country_of_origin: str | None = None
    original_licensed_reprint: str | None = None
    parallel_variety: str | None = None
    features: str | None = None
    season: str | None = None
    year_manufactured: int | None = None
    autograph: bool | None = None
    is_graded: bool | None = None
    grading_company: str | None = None
    grade: str | None = None
    evidence_text: str | None = None

    estimated_price: Decimal | None = None
    estimated_currency: str | None = None
    marketplace_listings_used: int = 0
    marketplace_listings: list[MarketplaceListing] = Field(default_factory=list)


def _clamp(value: float, low: int, high: int) -> int:
    return max(low, min(high, math.trunc(value)))


def extract_year_from_text(text: str | None) -> int | None:
    """Season formats win ("2015-16" -> 2015), else the first plausible year."""
    text = text or ""
    match = _SEASON_RE.search(text) or _YEAR_RE.search(text)
    if match:
        return _clamp(int(match.group(1)), YEAR_MIN, YEAR_MAX)
    return None


def _as_finite_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str) and value.strip():
        try:
            number = float(value)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def coerce_year(value: Any) -> int | None:
    """Number, year-bearing string or season string -> clamped year."""
    if isinstance(value, str):
        year = extract_year_from_text(value)
        if year is not None:
            return year
    number = _as_finite_number(value)
    if number is None:
        return None
    return _clamp(number, YEAR_MIN, YEAR_MAX)


def coerce_confidence(value: Any) -> int:
    """Accept 0-1 fractions or 0-100 percentages; anything else is 0."""
    number = _as_finite_number(value)
    if number is None:
        return 0
    if number <= 1:
        return _clamp(number * 100, 0, 100)
    return _clamp(number, 0, 100)


def _text(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _flag(value: Any) -> bool | None:
    return value if isinstance(value, bool) else None


def parse_identification(raw: Mapping[str, Any]) -> IdentifyResult:
    """
    Build an IdentifyResult from a decoded model response.

    Unknown keys are ignored; wrong-typed values become None. The year falls
    back to any year found in the title or evidence text.
    """
    fields: dict[str, Any] = {name: _text(raw.get(name)) for name in TEXT_FIELDS}

    year = coerce_year(raw.get("year"))
    if year is None:
        year = extract_year_from_text(f"{fields['title'] or ''} {fields['evidence_text'] or ''}")

    return IdentifyResult(
        **fields,
        confidence=coerce_confidence(raw.get("confidence")),
        year=year,
        year_manufactured=coerce_year(raw.get("year_manufactured")),
        autograph=_flag(raw.get("autograph")),
        is_graded=_flag(raw.get("is_graded")),
    )
