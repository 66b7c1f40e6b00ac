"""
Cardshelf - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- In-memory card + profile store (aiosqlite)
- Card / profile factories
- Async test support via pytest-asyncio
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardshelf.models.base import Base
from cardshelf.models.card import Card
from cardshelf.models.profile import Profile
from cardshelf.pipeline.token_cache import TokenCache


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)

BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def db_engine() -> AsyncGenerator[Any, None]:
    """Fresh in-memory SQLite database with all tables, per test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def mock_db_session(db_engine: Any) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def add_card(mock_db_session: AsyncSession) -> Callable[..., Awaitable[Card]]:
    """
    Insert a card with sensible defaults. Each call is one minute newer than
    the previous one unless created_at is given.
    """
    counter = {"n": 0}

    async def _add(**overrides: Any) -> Card:
        counter["n"] += 1
        values: dict[str, Any] = {
            "user_id": "owner-aaaa-1111",
            "title": f"Card {counter['n']}",
            "year": 2020,
            "player": "Player",
            "brand": "Topps",
            "image_urls": ["https://cdn.example/card.jpg"],
            "for_sale": True,
            "price_cents": 1000,
            "currency": "CAD",
            "created_at": BASE_TIME + timedelta(minutes=counter["n"]),
        }
        values.update(overrides)
        card = Card(**values)
        mock_db_session.add(card)
        await mock_db_session.commit()
        return card

    return _add


@pytest.fixture
def add_profile(mock_db_session: AsyncSession) -> Callable[..., Awaitable[Profile]]:
    async def _add(profile_id: str, **fields: Any) -> Profile:
        profile = Profile(id=profile_id, **fields)
        mock_db_session.add(profile)
        await mock_db_session.commit()
        return profile

    return _add


# ---------------------------------------------------------------------------
# Utility Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def token_cache() -> TokenCache:
    """Empty per-test OAuth token cache."""
    return TokenCache()


@pytest.fixture
def now() -> datetime:
    """Current timestamp for tests."""
    return datetime.now(timezone.utc)
