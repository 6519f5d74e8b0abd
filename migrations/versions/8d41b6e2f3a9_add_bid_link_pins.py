"""add_bid_link_pins

Revision ID: 8d41b6e2f3a9
Revises: 3f8a1c2d9e07
Create Date: 2026-10-19 15:40:00.000000+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "8d41b6e2f3a9"
down_revision: Union[str, None] = "3f8a1c2d9e07"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column(
        "bid_access_grants",
        sa.Column("pin_required", sa.Boolean(), server_default=sa.false(), nullable=False),
    )
    op.add_column("bid_access_grants", sa.Column("pin_hash", sa.String(length=255), nullable=True))
    op.add_column(
        "bid_access_grants",
        sa.Column("pin_attempts", sa.Integer(), server_default="0", nullable=False),
    )
    op.add_column("bid_access_grants", sa.Column("pin_locked_until", sa.DateTime(), nullable=True))
    op.create_check_constraint(
        "chk_access_grant_pin",
        "bid_access_grants",
        "pin_required = false OR (channel = 'link' AND pin_hash IS NOT NULL)",
    )


def downgrade() -> None:
    op.drop_constraint("chk_access_grant_pin", "bid_access_grants", type_="check")
    op.drop_column("bid_access_grants", "pin_locked_until")
    op.drop_column("bid_access_grants", "pin_attempts")
    op.drop_column("bid_access_grants", "pin_hash")
    op.drop_column("bid_access_grants", "pin_required")
