"""Initial schema - profiles, cards

Revision ID: 001_initial_schema
Revises: None
Create Date: 2026-03-02
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "001_initial_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- profiles ---
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(), nullable=False, primary_key=True, comment="Identity provider user id"),
        sa.Column("username", sa.String(), nullable=True, comment="Public handle"),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("avatar_url", sa.String(), nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("username", name="uq_profiles_username"),
    )

    # --- cards ---
    op.create_table(
        "cards",
        sa.Column("id", sa.INTEGER(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(), nullable=False, comment="Owner identity (profiles.id)"),
        sa.Column("is_private", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("year", sa.INTEGER(), nullable=True),
        sa.Column("player", sa.String(), nullable=True),
        sa.Column("brand", sa.String(), nullable=True),
        sa.Column("set_name", sa.String(), nullable=True),
        sa.Column("card_number", sa.String(), nullable=True),
        sa.Column("image_urls", sa.JSON(), nullable=False),
        sa.Column("is_graded", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("grading_company", sa.String(), nullable=True),
        sa.Column("grade", sa.String(), nullable=True, comment="Grade label: '1'..'10' in 0.5 steps, or 'OTHER'"),
        sa.Column("rookie", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("autograph", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("serial_numbered", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("print_run", sa.INTEGER(), nullable=True),
        sa.Column("for_sale", sa.BOOLEAN(), server_default="false", nullable=False),
        sa.Column("price_cents", sa.INTEGER(), nullable=True, comment="Asking price in minor units"),
        sa.Column("currency", sa.String(), server_default="CAD", nullable=False),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_cards_user_id", "cards", ["user_id"])
    op.create_index("ix_cards_public_created", "cards", ["is_private", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_cards_public_created", table_name="cards")
    op.drop_index("ix_cards_user_id", table_name="cards")
    op.drop_table("cards")
    op.drop_table("profiles")
