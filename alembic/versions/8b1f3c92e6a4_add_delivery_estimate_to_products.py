"""add delivery estimate to products

Revision ID: 8b1f3c92e6a4
Revises: 5d2e8a41c7b3
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "8b1f3c92e6a4"
down_revision: Union[str, None] = "5d2e8a41c7b3"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.add_column("products", sa.Column("delivery_cycle", sa.Text(), nullable=True))
    op.add_column("products", sa.Column("shipping_estimate", sa.Text(), nullable=True))


def downgrade() -> None:
    op.drop_column("products", "shipping_estimate")
    op.drop_column("products", "delivery_cycle")
