"""
Cardshelf - Profile Model

Public profile fragment for a user of the external identity provider.
The id is the identity provider's user id; cards reference it via cards.user_id.
Read-only from the listing path.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import TIMESTAMP, String, func
from sqlalchemy.orm import Mapped, mapped_column

from cardshelf.models.base import Base


class Profile(Base):
    """Public profile shown next to a user's cards."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(
        String, primary_key=True, comment="Identity provider user id"
    )
    username: Mapped[str | None] = mapped_column(
        String, unique=True, nullable=True, comment="Public handle"
    )
    display_name: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Preferred display name"
    )
    avatar_url: Mapped[str | None] = mapped_column(
        String, nullable=True, comment="Public avatar image URL"
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        comment="Profile creation timestamp",
    )

    def __repr__(self) -> str:
        return f"<Profile id={self.id!r} username={self.username!r}>"
