"""initial schema: users, merchants, transactions, halving

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.String(), primary_key=True),
        sa.Column("balance", sa.Numeric(14, 5), nullable=False,
                  server_default="0"),
        sa.Column("rub_balance", sa.Numeric(14, 2), nullable=False,
                  server_default="0"),
        sa.Column("blocked", sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False,
                  server_default="1"),
        sa.CheckConstraint("balance >= 0", name="ck_users_balance"),
        sa.CheckConstraint("rub_balance >= 0", name="ck_users_rub_balance"),
    )
    op.create_index("ix_users_user_id", "users", ["user_id"])

    op.create_table(
        "merchants",
        sa.Column("merchant_id", sa.String(), primary_key=True),
        sa.Column("balance", sa.Numeric(14, 5), nullable=False,
                  server_default="0"),
        sa.Column("blocked", sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column("version", sa.Integer(), nullable=False,
                  server_default="1"),
        sa.CheckConstraint("balance >= 0", name="ck_merchants_balance"),
    )
    op.create_index("ix_merchants_merchant_id", "merchants", ["merchant_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("hash", sa.String(32), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("currency", sa.String(8), nullable=False),
        sa.Column("direction", sa.String(16), nullable=True),
        sa.Column("from_account_id", sa.String(), nullable=True),
        sa.Column("to_account_id", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(14, 5), nullable=False),
        sa.Column("new_coin_balance", sa.Numeric(14, 5), nullable=True),
        sa.Column("new_rub_balance", sa.Numeric(14, 2), nullable=True),
        sa.Column("purpose", sa.String(255), nullable=True),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.UniqueConstraint("external_id", name="uq_transactions_external_id"),
    )
    op.create_index(
        "ix_transactions_hash", "transactions", ["hash"], unique=True
    )
    op.create_index(
        "ix_transactions_from_account_id", "transactions", ["from_account_id"]
    )
    op.create_index(
        "ix_transactions_to_account_id", "transactions", ["to_account_id"]
    )

    op.create_table(
        "halving",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("total_mined", sa.Numeric(20, 5), nullable=False,
                  server_default="0"),
        sa.Column("halving_step", sa.Integer(), nullable=False,
                  server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False,
                  server_default="1"),
    )
    op.execute(
        "INSERT INTO halving (id, total_mined, halving_step, version) "
        "VALUES (1, 0, 0, 1)"
    )


def downgrade() -> None:
    op.drop_table("halving")
    op.drop_index("ix_transactions_to_account_id", table_name="transactions")
    op.drop_index("ix_transactions_from_account_id", table_name="transactions")
    op.drop_index("ix_transactions_hash", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_merchants_merchant_id", table_name="merchants")
    op.drop_table("merchants")
    op.drop_index("ix_users_user_id", table_name="users")
    op.drop_table("users")
