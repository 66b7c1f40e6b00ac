"""
Cardshelf - Card Model

One uploaded trading card. Owned exclusively by its creator (user_id).

Prices are stored in minor currency units (price_cents) even though users
enter major units. grade holds the grading label verbatim ("9.5", "10",
"OTHER"); grade_number is the derived numeric value used for range
filtering (NULL for non-numeric grades).
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BOOLEAN,
    INTEGER,
    JSON,
    NUMERIC,
    TIMESTAMP,
    Index,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from cardshelf.models.base import Base


class Card(Base):
    """A trading card in a user's collection, optionally listed for sale."""

    __tablename__ = "cards"

    id: Mapped[int] = mapped_column(INTEGER, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String, nullable=False, index=True, comment="Owner identity (profiles.id)"
    )
    is_private: Mapped[bool] = mapped_column(
        BOOLEAN, default=False, server_default="false",
        comment="Hidden from everyone but the owner",
    )

    # --- Identification ---
    title: Mapped[str] = mapped_column(String, nullable=False)
    year: Mapped[int | None] = mapped_column(INTEGER, nullable=True)
    player: Mapped[str | None] = mapped_column(String, nullable=True)
    brand: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Brand or manufacturer (e.g., 'Topps')"
    )
    set_name: Mapped[str | None] = mapped_column(String, nullable=True)
    card_number: Mapped[str | None] = mapped_column(String, nullable=True)
    image_urls: Mapped[list[str]] = mapped_column(JSON, default=list)

    # --- Grading ---
    is_graded: Mapped[bool] = mapped_column(BOOLEAN, default=False, server_default="false")
    grading_company: Mapped[str | None] = mapped_column(String, nullable=True)
    grade: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Grade label: '1'..'10' in 0.5 steps, or 'OTHER'"
    )
    grade_number: Mapped[Decimal | None] = mapped_column(
        NUMERIC(3, 1), nullable=True, comment="Numeric grade derived from grade"
    )

    # --- Attributes ---
    rookie: Mapped[bool] = mapped_column(BOOLEAN, default=False, server_default="false")
    autograph: Mapped[bool] = mapped_column(BOOLEAN, default=False, server_default="false")
    serial_numbered: Mapped[bool] = mapped_column(
        BOOLEAN, default=False, server_default="false"
    )
    print_run: Mapped[int | None] = mapped_column(INTEGER, nullable=True)

    # --- Sale ---
    for_sale: Mapped[bool] = mapped_column(BOOLEAN, default=False, server_default="false")
    price_cents: Mapped[int | None] = mapped_column(
        INTEGER, nullable=True, comment="Asking price in minor units (only when for_sale)"
    )
    currency: Mapped[str] = mapped_column(String, default="CAD", server_default="CAD")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        comment="Upload timestamp; primary sort key for newest/oldest",
    )

    __table_args__ = (
        Index("ix_cards_public_created", "is_private", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Card id={self.id!r} title={self.title!r} "
            f"user_id={self.user_id!r} for_sale={self.for_sale!r}>"
        )
