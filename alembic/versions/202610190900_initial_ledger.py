"""initial ledger schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=64)),
        sa.Column(
            "account_id",
            sa.String(length=32),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_categories_account", "categories", ["account_id"])

    op.create_table(
        "sub_categories",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=64)),
        sa.Column(
            "category_id",
            sa.String(length=32),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "account_id",
            sa.String(length=32),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_sub_categories_category", "sub_categories", ["category_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("payee", sa.String(length=200)),
        sa.Column(
            "is_temporary", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("balance_cents", sa.Integer(), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "category_id",
            sa.String(length=32),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "sub_category_id",
            sa.String(length=32),
            sa.ForeignKey("sub_categories.id", ondelete="CASCADE"),
        ),
        sa.Column(
            "account_id",
            sa.String(length=32),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
        sa.CheckConstraint('"order" >= 0', name="ck_transactions_order_positive"),
    )
    op.create_index(
        "ix_transactions_account_date_order",
        "transactions",
        ["account_id", "date", "order"],
    )
    op.create_index(
        "ix_transactions_account_category",
        "transactions",
        ["account_id", "category_id"],
    )

    op.create_table(
        "widgets",
        sa.Column("id", sa.String(length=32), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("x", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("y", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("width", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("height", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column(
            "account_id",
            sa.String(length=32),
            sa.ForeignKey("accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        *_timestamps(),
    )
    op.create_index("ix_widgets_account", "widgets", ["account_id"])


def downgrade():
    op.drop_index("ix_widgets_account", table_name="widgets")
    op.drop_table("widgets")
    op.drop_index("ix_transactions_account_category", table_name="transactions")
    op.drop_index("ix_transactions_account_date_order", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_sub_categories_category", table_name="sub_categories")
    op.drop_table("sub_categories")
    op.drop_index("ix_categories_account", table_name="categories")
    op.drop_table("categories")
    op.drop_table("accounts")
