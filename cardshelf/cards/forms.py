"""
Cardshelf - Card Forms

Validates the fields of a card submission and creates, updates or deletes
the owner's card. Form values arrive as strings (or None); checkboxes as
"true"/"on". Image upload and removal happen elsewhere; this module only
receives the public URLs and hands back the storage paths to remove.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession

from cardshelf.config import settings
from cardshelf.models.card import Card

logger = structlog.get_logger(__name__)

_REQUIRED_FIELDS = ("title", "year", "player", "brand")


class CardFormError(ValueError):
    """A submitted card form is missing or has an invalid field."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class CardNotFoundError(LookupError):
    """No card with that id (for that owner, on update)."""

    def __init__(self, card_id: int) -> None:
        super().__init__(f"Card {card_id} not found")
        self.card_id = card_id


class CardForbiddenError(PermissionError):
    """The card exists but belongs to someone else."""

    def __init__(self, card_id: int, owner_id: str) -> None:
        super().__init__(f"Card {card_id} is not owned by {owner_id}")
        self.card_id = card_id
        self.owner_id = owner_id


class NewCard(BaseModel):
    title: str
    year: int
    player: str
    brand: str
    is_private: bool = False
    set_name: str | None = None
    card_number: str | None = None
    is_graded: bool = False
    grading_company: str | None = None
    grade: str | None = None
    rookie: bool = False
    autograph: bool = False
    serial_numbered: bool = False
    print_run: int | None = None
    for_sale: bool = False
    price_cents: int | None = None
    currency: str = Field(default=settings.DEFAULT_CURRENCY)


def parse_checkbox(value: Any) -> bool:
    return value in ("true", "on")


def parse_form_int(value: Any) -> int | None:
    """Trimmed numeric string -> truncated int; blank or garbage -> None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return math.trunc(number) if math.isfinite(number) else None


def _form_text(value: Any) -> str | None:
    text = str(value if value is not None else "").strip()
    return text or None


def numeric_grade(grade: str | None) -> Decimal | None:
    """Derived grade_number: "9.5" -> Decimal("9.5"); "OTHER" or blank -> None."""
    if not grade:
        return None
    try:
        value = Decimal(grade.strip())
    except InvalidOperation:
        return None
    if not value.is_finite() or value < 0:
        return None
    return value


def parse_card_form(form: Mapping[str, Any]) -> NewCard:
    """
    Validate a new-card form.

    Raises:
        CardFormError: Missing title/year/player/brand, or a for-sale card
            without a positive price_cents.
    """
    values = {
        "title": _form_text(form.get("title")),
        "year": parse_form_int(form.get("year")),
        "player": _form_text(form.get("player")),
        "brand": _form_text(form.get("brand")),
    }
    for field in _REQUIRED_FIELDS:
        if not values[field]:
            raise CardFormError(
                field, "Missing required fields: title, year, player, brand."
            )

    for_sale = parse_checkbox(form.get("for_sale"))
    price_cents = parse_form_int(form.get("price_cents"))
    if for_sale and (not price_cents or price_cents <= 0):
        raise CardFormError("price_cents", "price_cents is required when for_sale is true.")

    return NewCard(
        **values,
        is_private=parse_checkbox(form.get("is_private")),
        set_name=_form_text(form.get("set_name")),
        card_number=_form_text(form.get("card_number")),
        is_graded=parse_checkbox(form.get("is_graded")),
        grading_company=_form_text(form.get("grading_company")),
        grade=_form_text(form.get("grade")),
        rookie=parse_checkbox(form.get("rookie")),
        autograph=parse_checkbox(form.get("autograph")),
        serial_numbered=parse_checkbox(form.get("serial_numbered")),
        print_run=parse_form_int(form.get("print_run")),
        for_sale=for_sale,
        price_cents=price_cents if for_sale else None,
        currency=_form_text(form.get("currency")) or settings.DEFAULT_CURRENCY,
    )


async def create_card(
    session: AsyncSession,
    owner_id: str,
    new_card: NewCard,
    image_urls: Sequence[str],
) -> int:
    """
    Insert a validated card for `owner_id` and return its id.

    Raises:
        CardFormError: If no image URL is given.
    """
    if not image_urls:
        raise CardFormError("images", "At least one image is required.")

    card = Card(
        user_id=owner_id,
        image_urls=list(image_urls),
        grade_number=numeric_grade(new_card.grade),
        **new_card.model_dump(),
    )
    session.add(card)
    await session.flush()
    card_id = card.id
    await session.commit()

    logger.info(
        "card_created",
        card_id=card_id,
        owner_id=owner_id,
        for_sale=new_card.for_sale,
        is_private=new_card.is_private,
        source="cards",
    )
    return card_id


def clear_unchecked_fields(card: NewCard) -> NewCard:
    """Drop values that sit behind an unchecked box (graded, serial, for sale)."""
    cleared: dict[str, Any] = {}
    if not card.is_graded:
        cleared.update(grading_company=None, grade=None)
    if not card.serial_numbered:
        cleared["print_run"] = None
    if not card.for_sale:
        cleared["price_cents"] = None
    return card.model_copy(update=cleared)


async def update_card(
    session: AsyncSession,
    owner_id: str,
    card_id: int,
    form: Mapping[str, Any],
) -> NewCard:
    """
    Re-validate `form` and overwrite card `card_id` owned by `owner_id`.

    The write is scoped to both id and owner, so a card owned by someone
    else is reported as not found. Images are left unchanged.

    Returns:
        The validated card values that were written.

    Raises:
        CardFormError: The form fails validation (nothing is written).
        CardNotFoundError: No card with that id belongs to `owner_id`.
    """
    card = clear_unchecked_fields(parse_card_form(form))

    result = await session.execute(
        update(Card)
        .where(Card.id == card_id, Card.user_id == owner_id)
        .values(**card.model_dump(), grade_number=numeric_grade(card.grade))
    )
    if result.rowcount == 0:  # type: ignore[attr-defined]
        await session.rollback()
        logger.warning("card_update_not_found", card_id=card_id, owner_id=owner_id, source="cards")
        raise CardNotFoundError(card_id)
    await session.commit()

    logger.info(
        "card_updated",
        card_id=card_id,
        owner_id=owner_id,
        for_sale=card.for_sale,
        is_private=card.is_private,
        source="cards",
    )
    return card


def storage_path_from_public_url(url: str, bucket: str | None = None) -> str | None:
    """
    Object path inside the card image bucket for a public or signed URL.

    Examples:
        .../storage/v1/object/public/card-images/u1/a.jpg     -> "u1/a.jpg"
        .../storage/v1/object/sign/card-images/u1/a.jpg?t=x   -> "u1/a.jpg"
        https://elsewhere/a.jpg                               -> None
    """
    bucket = bucket or settings.CARD_IMAGE_BUCKET
    for access in ("public", "sign"):
        needle = f"/storage/v1/object/{access}/{bucket}/"
        index = url.find(needle)
        if index >= 0:
            path = url[index + len(needle):].split("?", 1)[0]
            return path or None
    return None


async def delete_card(
    session: AsyncSession,
    owner_id: str,
    card_id: int,
) -> list[str]:
    """
    Delete card `card_id` if `owner_id` owns it.

    Returns:
        Storage paths of the card's images, for the caller to remove from
        the image bucket. URLs outside the bucket are skipped.

    Raises:
        CardNotFoundError: No card with that id.
        CardForbiddenError: The card belongs to another user.
    """
    card = await session.get(Card, card_id)
    if card is None:
        raise CardNotFoundError(card_id)
    if card.user_id != owner_id:
        logger.warning("card_delete_forbidden", card_id=card_id, owner_id=owner_id, source="cards")
        raise CardForbiddenError(card_id, owner_id)

    paths = [
        path
        for path in (storage_path_from_public_url(str(url)) for url in card.image_urls or [])
        if path
    ]

    await session.execute(
        delete(Card)
        .where(Card.id == card_id, Card.user_id == owner_id)
    )
    await session.commit()

    logger.info(
        "card_deleted",
        card_id=card_id,
        owner_id=owner_id,
        image_paths=len(paths),
        source="cards",
    )
    return paths
