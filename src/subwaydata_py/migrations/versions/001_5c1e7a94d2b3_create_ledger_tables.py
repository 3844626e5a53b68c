"""create ledger tables

Revision ID: 5c1e7a94d2b3
Revises:
Create Date: 2026-10-12 09:14:02.118734

Details
* upgrade -> create ledger_days, holding the feeds published for each
    service date, and ledger_commits, the history of every change to it

* downgrade -> drop both tables
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "5c1e7a94d2b3"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "ledger_days",
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("feed_ids", sa.String(length=1024), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "updated_on",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("service_date"),
    )

    op.create_table(
        "ledger_commits",
        sa.Column("pk_id", sa.Integer(), nullable=False),
        sa.Column("service_date", sa.Date(), nullable=False),
        sa.Column("feed_ids", sa.String(length=1024), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("message", sa.String(length=1024), nullable=False),
        sa.Column(
            "created_on",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=True,
        ),
        sa.PrimaryKeyConstraint("pk_id"),
    )
    op.create_index(
        "ix_ledger_commits_service_date",
        "ledger_commits",
        ["service_date"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_ledger_commits_service_date", table_name="ledger_commits")
    op.drop_table("ledger_commits")
    op.drop_table("ledger_days")
