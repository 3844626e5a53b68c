import os
import logging
from typing import Optional

from alembic.config import Config
from alembic import command

from subwaydata_py.postgres.postgres_utils import resolve_database_url


def get_alembic_config(database_url: Optional[str] = None) -> Config:
    """
    get alembic configuration for the ledger database

    the migration scripts ship inside the package, so the configuration is
    built here instead of being read from an ini file
    """
    here = os.path.dirname(os.path.abspath(__file__))
    script_location = os.path.abspath(os.path.join(here, "..", "migrations"))
    logging.info("getting alembic config from %s", script_location)

    alembic_cfg = Config()
    alembic_cfg.set_main_option("script_location", script_location)
    # configparser interpolation would choke on url encoded passwords
    alembic_cfg.set_main_option("sqlalchemy.url", resolve_database_url(database_url).replace("%", "%%"))

    return alembic_cfg


def alembic_upgrade_to_head(database_url: Optional[str] = None) -> None:
    """
    upgrade the ledger database to head revision
    """
    alembic_cfg = get_alembic_config(database_url)

    command.upgrade(alembic_cfg, revision="head")


def alembic_downgrade_to_base(database_url: Optional[str] = None) -> None:
    """
    downgrade the ledger database to base revision
    """
    alembic_cfg = get_alembic_config(database_url)

    command.downgrade(alembic_cfg, revision="base")
