"""Add grade_number column to cards

Revision ID: 002_card_grade_number
Revises: 001_initial_schema
Create Date: 2026-03-09

Adds:
  - cards.grade_number (NUMERIC(3,1), nullable)
    Numeric value of cards.grade for range filtering; NULL for "OTHER".
    Existing rows are backfilled from grade where it is numeric.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = "002_card_grade_number"
down_revision: Union[str, None] = "001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "cards",
        sa.Column(
            "grade_number",
            sa.NUMERIC(3, 1),
            nullable=True,
            comment="Numeric grade derived from grade",
        ),
    )
    op.execute(
        "UPDATE cards SET grade_number = CAST(grade AS NUMERIC(3,1)) "
        "WHERE grade ~ '^[0-9]+(\\.[0-9]+)?$'"
    )


def downgrade() -> None:
    op.drop_column("cards", "grade_number")
