from logging.config import fileConfig

import sqlalchemy as sa
from alembic import context

from subwaydata_py.postgres.ledger_schema import LedgerSqlBase
from subwaydata_py.postgres.postgres_utils import create_ledger_engine

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging, only when alembic is run
# from the command line with an ini file.
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = LedgerSqlBase.metadata


def run_migrations_online() -> None:
    """Run migrations in 'online' mode.

    In this scenario we need to create an Engine
    and associate a connection with the context.

    """
    connectable: sa.engine.Engine = create_ledger_engine(config.get_main_option("sqlalchemy.url"))

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    raise NotImplementedError("Alembic offline migration not implemented.")
else:
    run_migrations_online()
