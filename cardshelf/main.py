"""
Cardshelf - Application Entrypoint

Initializes the async SQLAlchemy engine, configures structlog, and prints one
listing page for a raw query string as JSON.

Run via:
    python -m cardshelf.main "q=jordan&graded=1&sort=price_asc"
    python -m cardshelf.main "page=2" --user <owner_id> --viewer <owner_id>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any
from urllib.parse import parse_qs

import structlog
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardshelf.config import settings
from cardshelf.listings.engine import CardListingPage, CardScope, get_listing_page
from cardshelf.listings.params import (
    GALLERY_DEFAULT_SORT,
    SEARCH_DEFAULT_SORT,
    normalize_params,
)


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def _configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Logs go to stderr so stdout carries only the listing page.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


async def create_db_engine(
    database_url: str | None = None,
) -> tuple[Any, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    Returns:
        (engine, session_factory) tuple.
    """
    logger = structlog.get_logger(__name__)
    url = database_url or settings.DATABASE_URL

    engine_kwargs: dict[str, Any] = {"echo": False, "pool_pre_ping": True}
    if not url.startswith("sqlite"):
        engine_kwargs.update(pool_size=5, max_overflow=10)

    engine = create_async_engine(url, **engine_kwargs)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    logger.info("database_engine_ready", dialect=engine.dialect.name)
    return engine, session_factory


# ---------------------------------------------------------------------------
# Listing command
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print one page of the card gallery, search or a collection as JSON.",
    )
    parser.add_argument(
        "query_string",
        nargs="?",
        default="",
        help='Raw listing query string, e.g. "q=jordan&graded=1&page=2".',
    )
    parser.add_argument(
        "--user",
        default=None,
        help="Owner id: list that user's collection instead of the public gallery.",
    )
    parser.add_argument(
        "--viewer",
        default=None,
        help="Requesting user id (private cards are shown only to their owner).",
    )
    parser.add_argument(
        "--search",
        action="store_true",
        help="Use the search entry point default sort (price_desc).",
    )
    return parser.parse_args(argv)


async def fetch_page(
    session_factory: async_sessionmaker[AsyncSession],
    query_string: str,
    owner_id: str | None = None,
    viewer_id: str | None = None,
    search: bool = False,
) -> CardListingPage:
    """Normalize a raw query string and fetch the matching page."""
    default_sort = SEARCH_DEFAULT_SORT if search else GALLERY_DEFAULT_SORT
    raw = parse_qs(query_string.lstrip("?"), keep_blank_values=True)
    listing_filter, pagination = normalize_params(raw, default_sort)
    scope = CardScope.user(owner_id) if owner_id else CardScope.public()

    async with session_factory() as session:
        return await get_listing_page(session, scope, viewer_id, listing_filter, pagination)


# ---------------------------------------------------------------------------
# Application Startup
# ---------------------------------------------------------------------------


async def main(argv: list[str] | None = None) -> None:
    """
    Execution order:
    1. Configure logging (structlog JSON)
    2. Create async database engine and session factory
    3. Verify database connection (health check)
    4. Fetch and print the requested listing page
    """
    args = parse_args(argv)
    _configure_logging(log_level="INFO")
    logger = structlog.get_logger(__name__)

    try:
        engine, session_factory = await create_db_engine()
    except Exception as e:
        logger.error(
            "database_engine_creation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise

    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
        logger.info("database_health_check_passed")

        page = await fetch_page(
            session_factory,
            args.query_string,
            owner_id=args.user,
            viewer_id=args.viewer,
            search=args.search,
        )
        print(page.model_dump_json(indent=2))
    except Exception as e:
        logger.error(
            "cardshelf_listing_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        raise
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# CLI Entry
# ---------------------------------------------------------------------------


if __name__ == "__main__":
    asyncio.run(main())
