"""Add teams.tax_id_digits for indexed tax id lookups.

Gateway customers report tax ids with or without punctuation, so matching
happens on the digits alone.  Existing rows are backfilled from ``tax_id``.

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "002"
down_revision: str | Sequence[str] = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column("teams", sa.Column("tax_id_digits", sa.String(32), nullable=True))
    op.execute(
        "UPDATE teams SET tax_id_digits = NULLIF(regexp_replace(tax_id, '[^0-9]', '', 'g'), '') "
        "WHERE tax_id IS NOT NULL"
    )
    op.create_index("ix_teams_tax_id_digits", "teams", ["tax_id_digits"])


def downgrade() -> None:
    op.drop_index("ix_teams_tax_id_digits", table_name="teams")
    op.drop_column("teams", "tax_id_digits")
