"""shipping regions and per-region rates

Revision ID: 8b41e6d2a7c3
Revises: 3f9a2c71d0b4
Create Date: 2026-10-19 14:37:05.402911

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "8b41e6d2a7c3"
down_revision = "3f9a2c71d0b4"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "shipping_regions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("county", sa.String(length=100), nullable=False),
        sa.Column("towns", sa.JSON(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "shipping_rates",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=False),
        sa.Column("method_id", sa.Integer(), nullable=False),
        sa.Column("custom_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "custom_price >= 0", name="ck_shipping_rate_price"),
        sa.ForeignKeyConstraint(
            ["region_id"], ["shipping_regions.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["method_id"], ["shipping_methods.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "region_id", "method_id",
            name="uq_shipping_rate_region_method"),
    )
    with op.batch_alter_table("shipping_rates", schema=None) as batch_op:
        batch_op.create_index(
            "ix_shipping_rates_region_id",
            ["region_id"], unique=False)


def downgrade():
    with op.batch_alter_table("shipping_rates", schema=None) as batch_op:
        batch_op.drop_index("ix_shipping_rates_region_id")

    op.drop_table("shipping_rates")
    op.drop_table("shipping_regions")
