"""initial ledger schema

Revision ID: 202603051200
Revises:
Create Date: 2026-03-05 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202603051200"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=128), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column(
            "is_default", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("id", "owner_id", name="uq_account_id_owner"),
    )
    op.create_index("ix_accounts_owner", "accounts", ["owner_id"])
    op.create_index(
        "uq_accounts_owner_default",
        "accounts",
        ["owner_id"],
        unique=True,
        sqlite_where=sa.text("is_default = 1"),
        postgresql_where=sa.text("is_default"),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("note", sa.Text()),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(
            ["account_id", "owner_id"],
            ["accounts.id", "accounts.owner_id"],
            name="fk_transactions_account_owner",
        ),
    )
    op.create_index(
        "ix_transactions_owner_occurred", "transactions", ["owner_id", "occurred_at"]
    )


def downgrade():
    op.drop_index("ix_transactions_owner_occurred", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_accounts_owner_default", table_name="accounts")
    op.drop_index("ix_accounts_owner", table_name="accounts")
    op.drop_table("accounts")
    op.drop_table("users")
