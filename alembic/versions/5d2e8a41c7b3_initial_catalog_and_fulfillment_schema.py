"""initial catalog and fulfillment schema

Revision ID: 5d2e8a41c7b3
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision: str = "5d2e8a41c7b3"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _ts(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=nullable)


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(10, 2), nullable=nullable)


def upgrade() -> None:
    op.create_table(
        "system_settings",
        _id(),
        sa.Column("key", sa.Text(), nullable=False, unique=True),
        sa.Column("value", postgresql.JSONB(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _ts("updated_at"),
    )

    op.create_table(
        "products",
        _id(),
        sa.Column("external_ref", sa.Text(), nullable=True, unique=True),
        sa.Column("slug", sa.Text(), nullable=False, unique=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("images", postgresql.JSONB(), nullable=True),
        sa.Column("category_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False),
        _money("supplier_cost"),
        _money("shipping_cost"),
        _money("stripe_fee"),
        _money("total_cost"),
        sa.Column("markup_multiplier", sa.Float(), nullable=False),
        _money("retail_price"),
        _money("compare_at_price", nullable=True),
        _money("margin_dollars"),
        sa.Column("margin_percent", sa.Float(), nullable=False),
        sa.Column("weight_grams", sa.Float(), nullable=True),
        sa.Column("warehouse", sa.Text(), nullable=True),
        sa.Column("available_warehouses", postgresql.JSONB(), nullable=True),
        sa.Column("stock_count", sa.Integer(), nullable=False),
        sa.Column("review_count", sa.Integer(), nullable=False),
        sa.Column("average_rating", sa.Float(), nullable=False),
        sa.Column("supplier_raw", postgresql.JSONB(), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_products_status", "products", ["status"])

    op.create_table(
        "product_variants",
        _id(),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("external_ref", sa.Text(), nullable=True),
        sa.Column("name", sa.Text(), nullable=True),
        sa.Column("color", sa.Text(), nullable=True),
        sa.Column("size", sa.Text(), nullable=True),
        _money("supplier_cost"),
        _money("retail_price"),
        sa.Column("stock_count", sa.Integer(), nullable=False),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_product_variants_product_id", "product_variants", ["product_id"])

    op.create_table(
        "orders",
        _id(),
        sa.Column("order_number", sa.Text(), nullable=False, unique=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("shipping_address", postgresql.JSONB(), nullable=True),
        sa.Column("payment_status", sa.Text(), nullable=False),
        sa.Column("fulfillment_status", sa.Text(), nullable=False),
        sa.Column("supplier_order_id", sa.Text(), nullable=True),
        sa.Column("supplier_order_number", sa.Text(), nullable=True),
        sa.Column("supplier_status", sa.Text(), nullable=True),
        sa.Column("tracking_number", sa.Text(), nullable=True),
        sa.Column("tracking_url", sa.Text(), nullable=True),
        sa.Column("carrier", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _money("subtotal"),
        _money("shipping_charge"),
        _money("total"),
        _ts("created_at"),
        _ts("updated_at"),
    )
    op.create_index("ix_orders_fulfillment_status", "orders", ["fulfillment_status"])

    op.create_table(
        "order_items",
        _id(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=True),
        sa.Column("variant_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("product_variants.id"), nullable=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False),
        _money("unit_price"),
        _ts("created_at"),
    )

    op.create_table(
        "order_status_history",
        _id(),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("from_status", sa.Text(), nullable=True),
        sa.Column("to_status", sa.Text(), nullable=False),
        sa.Column("source", sa.Text(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        _ts("created_at"),
    )

    op.create_table(
        "reviews",
        _id(),
        sa.Column("product_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("supplier_comment_id", sa.Text(), nullable=False),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("customer_name", sa.Text(), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("images", postgresql.JSONB(), nullable=True),
        sa.Column("reviewer_country", sa.Text(), nullable=True),
        sa.Column("is_approved", sa.Boolean(), nullable=False),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _ts("created_at"),
        sa.UniqueConstraint("supplier_comment_id", name="uq_reviews_supplier_comment_id"),
    )

    op.create_table(
        "sync_runs",
        _id(),
        sa.Column("scope", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        _ts("started_at"),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("created_count", sa.Integer(), nullable=False),
        sa.Column("updated_count", sa.Integer(), nullable=False),
        sa.Column("hidden_count", sa.Integer(), nullable=False),
        sa.Column("skipped_count", sa.Integer(), nullable=False),
        sa.Column("error_count", sa.Integer(), nullable=False),
        sa.Column("api_calls", sa.Integer(), nullable=False),
        sa.Column("meta", postgresql.JSONB(), nullable=False),
    )

    op.create_table(
        "sync_run_errors",
        _id(),
        sa.Column("run_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sync_runs.id"), nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("stack", sa.Text(), nullable=True),
        _ts("created_at"),
    )


def downgrade() -> None:
    op.drop_table("sync_run_errors")
    op.drop_table("sync_runs")
    op.drop_table("reviews")
    op.drop_table("order_status_history")
    op.drop_table("order_items")
    op.drop_index("ix_orders_fulfillment_status", table_name="orders")
    op.drop_table("orders")
    op.drop_index("ix_product_variants_product_id", table_name="product_variants")
    op.drop_table("product_variants")
    op.drop_index("ix_products_status", table_name="products")
    op.drop_table("products")
    op.drop_table("system_settings")
