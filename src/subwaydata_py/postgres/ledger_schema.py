from typing import Any

import sqlalchemy as sa
from sqlalchemy.orm import declarative_base

LedgerSqlBase: Any = declarative_base(name="Ledger")


class LedgerDay(LedgerSqlBase):  # pylint: disable=too-few-public-methods
    """Table recording which feeds have been published for each service date"""

    __tablename__ = "ledger_days"

    service_date = sa.Column(sa.Date, primary_key=True)
    # sorted, comma separated feed ids
    feed_ids = sa.Column(sa.String(1024), nullable=False)
    # optimistic concurrency token, bumped on every commit
    version = sa.Column(sa.Integer, nullable=False)
    updated_on = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now())


class LedgerCommitLog(LedgerSqlBase):  # pylint: disable=too-few-public-methods
    """Append only history of every change made to ledger_days"""

    __tablename__ = "ledger_commits"

    pk_id = sa.Column(sa.Integer, primary_key=True)
    service_date = sa.Column(sa.Date, nullable=False)
    feed_ids = sa.Column(sa.String(1024), nullable=False)
    version = sa.Column(sa.Integer, nullable=False)
    message = sa.Column(sa.String(1024), nullable=False)
    created_on = sa.Column(sa.DateTime(timezone=True), server_default=sa.func.now())


sa.Index(
    "ix_ledger_commits_service_date",
    LedgerCommitLog.service_date,
)
