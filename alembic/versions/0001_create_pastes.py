"""Create pastes table

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "pastes",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("ciphertext", sa.LargeBinary, nullable=False),
        sa.Column("iv", sa.LargeBinary(64), nullable=False),
        sa.Column("mime", sa.String(128), nullable=True),
        sa.Column("expire_at", sa.DateTime, nullable=False),
        sa.Column("view_limit", sa.Integer, nullable=True),
        sa.Column("views_used", sa.Integer, nullable=False, server_default="0"),
        sa.Column("single_view", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("deletion_token_hash", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime, nullable=False),
    )

    # The reaper scans by expiry
    op.create_index("ix_pastes_expire_at", "pastes", ["expire_at"])


def downgrade() -> None:
    op.drop_index("ix_pastes_expire_at", table_name="pastes")
    op.drop_table("pastes")
