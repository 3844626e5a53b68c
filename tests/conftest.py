"""
this file contains fixtures that are intended to be used across multiple test
files
"""

from pathlib import Path
from typing import Iterator

import pytest

from subwaydata_py.metadata.ledger import MetadataLedger
from subwaydata_py.postgres.ledger_schema import LedgerSqlBase
from subwaydata_py.postgres.postgres_utils import DatabaseManager


@pytest.fixture(autouse=True, name="service_name")
def fixture_service_name(monkeypatch: pytest.MonkeyPatch) -> None:
    """every process logger line names the service it came from"""
    monkeypatch.setenv("SERVICE_NAME", "subwaydata_test")


@pytest.fixture(name="db_manager")
def fixture_db_manager(tmp_path: Path) -> Iterator[DatabaseManager]:
    """
    a ledger database in a local sqlite file. the tables are created from the
    sqlalchemy schema, the alembic migration is tested separately.
    """
    db_manager = DatabaseManager(database_url=f"sqlite:///{tmp_path / 'ledger.db'}")
    db_manager.create_tables(LedgerSqlBase.metadata)
    yield db_manager
    db_manager.dispose()


@pytest.fixture(name="ledger")
def fixture_ledger(db_manager: DatabaseManager) -> MetadataLedger:
    """an empty metadata ledger"""
    return MetadataLedger(db_manager)
