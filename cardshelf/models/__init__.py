"""
Models package - export all SQLAlchemy models.
"""

from cardshelf.models.base import Base
from cardshelf.models.card import Card
from cardshelf.models.profile import Profile

__all__ = ["Base", "Card", "Profile"]
