"""
Cardshelf - Card Seeding Script

Creates the owner's profiles row (if missing) and one cards row.
Image upload is out of scope; pass already-public image URLs.

Usage:
    python scripts/add_card.py --owner 3f1c... --title "1986 Fleer Michael Jordan" \\
        --year 1986 --player "Michael Jordan" --brand Fleer --image https://cdn/x.jpg
    python scripts/add_card.py --owner 3f1c... --title "Wemby RC" --year 2023 \\
        --player "Victor Wembanyama" --brand Prizm --image https://cdn/y.jpg \\
        --graded --grading-company PSA --grade 10 --for-sale --price-cents 45000
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Resolve project root so this script can be run from any working directory
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cardshelf.cards.forms import CardFormError, create_card, parse_card_form
from cardshelf.config import settings
from cardshelf.models.profile import Profile


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Seed one card (and its owner's profile) into the Cardshelf database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--owner", required=True, help="Owner identity (profiles.id).")
    parser.add_argument("--username", default=None, help="Username for a newly created profile.")
    parser.add_argument("--display-name", default=None, help="Display name for a newly created profile.")
    parser.add_argument("--title", required=True)
    parser.add_argument("--year", required=True)
    parser.add_argument("--player", required=True)
    parser.add_argument("--brand", required=True)
    parser.add_argument("--set-name", default=None)
    parser.add_argument("--card-number", default=None)
    parser.add_argument(
        "--image",
        action="append",
        default=[],
        help="Public image URL (repeatable, at least one).",
    )
    parser.add_argument("--private", action="store_true", help="Hide from the public gallery.")
    parser.add_argument("--graded", action="store_true")
    parser.add_argument("--grading-company", default=None)
    parser.add_argument("--grade", default=None, help='Grade label, e.g. "9.5" or "OTHER".')
    parser.add_argument("--rookie", action="store_true")
    parser.add_argument("--autograph", action="store_true")
    parser.add_argument("--serial-numbered", action="store_true")
    parser.add_argument("--print-run", default=None)
    parser.add_argument("--for-sale", action="store_true")
    parser.add_argument("--price-cents", default=None, help="Asking price in minor units.")
    parser.add_argument("--currency", default=None, help=f"Default: {settings.DEFAULT_CURRENCY}.")
    return parser.parse_args()


def _checkbox(flag: bool) -> str | None:
    return "on" if flag else None


def form_from_args(args: argparse.Namespace) -> dict[str, str | None]:
    """Shape CLI arguments like a submitted new-card form."""
    return {
        "title": args.title,
        "year": args.year,
        "player": args.player,
        "brand": args.brand,
        "set_name": args.set_name,
        "card_number": args.card_number,
        "is_private": _checkbox(args.private),
        "is_graded": _checkbox(args.graded),
        "grading_company": args.grading_company,
        "grade": args.grade,
        "rookie": _checkbox(args.rookie),
        "autograph": _checkbox(args.autograph),
        "serial_numbered": _checkbox(args.serial_numbered),
        "print_run": args.print_run,
        "for_sale": _checkbox(args.for_sale),
        "price_cents": args.price_cents,
        "currency": args.currency,
    }


async def add_card(args: argparse.Namespace) -> int:
    new_card = parse_card_form(form_from_args(args))

    engine = create_async_engine(settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    try:
        async with session_factory() as session:
            if await session.get(Profile, args.owner) is None:
                session.add(
                    Profile(
                        id=args.owner,
                        username=args.username,
                        display_name=args.display_name,
                    )
                )
                await session.flush()  # Profile row before the card that names it
            card_id = await create_card(session, args.owner, new_card, args.image)
    finally:
        await engine.dispose()
    return card_id


async def main() -> None:
    args = parse_args()

    print(f"Creating card: title={args.title!r}, owner={args.owner}")

    try:
        card_id = await add_card(args)
    except CardFormError as e:
        print(f"Invalid card ({e.field}): {e}", file=sys.stderr)
        sys.exit(2)
    except Exception as e:
        print(f"Failed to create card: {e}", file=sys.stderr)
        sys.exit(1)

    print("Card created successfully.")
    print(f"  cards.id       = {card_id}")
    print(f"  cards.user_id  = {args.owner}")
    print(f"  images         = {len(args.image)}")
    print(f"  for_sale       = {args.for_sale}")


if __name__ == "__main__":
    asyncio.run(main())
