import os
import urllib.parse as urlparse
from typing import Any, Callable, Dict, Optional, Tuple

import boto3
import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

from subwaydata_py.runtime_utils.process_logger import ProcessLogger

DEFAULT_ENV_PREFIX = "LEDGER"


def running_in_docker() -> bool:
    """
    return true if running inside of a docker container
    """
    path = "/proc/self/cgroup"
    if os.path.exists("/.dockerenv"):
        return True
    if not os.path.isfile(path):
        return False
    with open(path, encoding="UTF-8") as cgroup:
        return any("docker" in line for line in cgroup)


def environ_get(var_name: str) -> str:
    """
    get an environment variable, raising an error if it does not exist. this
    utility helps with type checking.
    """
    value = os.environ.get(var_name)
    if value is None:
        raise KeyError(f"Unable to find {var_name} in environment")
    return value


class PsqlArgs:
    """
    container class for arguments needed to log into the ledger postgres db
    """

    def __init__(self, prefix: str = DEFAULT_ENV_PREFIX):
        self.host: str = environ_get(f"{prefix}_DB_HOST")
        self.port: str = "5432" if running_in_docker() else environ_get(f"{prefix}_DB_PORT")
        self.name: str = environ_get(f"{prefix}_DB_NAME")
        self.user: str = environ_get(f"{prefix}_DB_USER")
        self.password: Optional[str] = os.environ.get(f"{prefix}_DB_PASSWORD")

    def get_password(self) -> str:
        """
        function to provide rds password

        used to refresh auth token, if required
        """
        if self.password is not None:
            return self.password

        # generate an rds auth token when no password is configured
        client = boto3.client("rds")
        return client.generate_db_auth_token(
            DBHostname=self.host,
            Port=self.port,
            DBUsername=self.user,
            Region=os.environ.get("DB_REGION", None),
        )

    def database_url(self) -> str:
        """sqlalchemy url for the postgres database"""
        db_password = urlparse.quote_plus(self.get_password())
        db_ssl_options = ""
        if self.password is None:
            # token authentication is only accepted over ssl
            db_ssl_options = "?sslmode=require"
        return f"postgresql+psycopg2://{self.user}:{db_password}@{self.host}:{self.port}/{self.name}{db_ssl_options}"

    def metadata(self) -> Dict[str, str]:
        """
        generate a dict to add to logs for psql connection details
        """
        return {
            "host": self.host,
            "database_name": self.name,
            "user": self.user,
            "port": self.port,
        }


def generate_update_db_password_func(psql_args: PsqlArgs) -> Callable:
    """
    create a function to update the password for a database when a new
    connection is created
    """

    def postgres_event_update_db_password(
        _: sa.engine.interfaces.Dialect,
        __: Any,
        ___: Tuple[Any, ...],
        cparams: Dict[str, Any],
    ) -> None:
        """
        update database password on every new connection attempt
        this will refresh db auth token passwords
        """
        process_logger = ProcessLogger("password_refresh")
        process_logger.log_start()
        cparams["password"] = psql_args.get_password()
        process_logger.log_complete()

    return postgres_event_update_db_password


def resolve_database_url(database_url: Optional[str] = None, prefix: str = DEFAULT_ENV_PREFIX) -> str:
    """
    pick the ledger database url: an explicit url wins, then a full url from
    the environment, then one assembled from the individual postgres variables
    """
    if database_url:
        return database_url
    env_url = os.environ.get(f"{prefix}_DB_URL")
    if env_url:
        return env_url
    return PsqlArgs(prefix).database_url()


def create_ledger_engine(database_url: Optional[str] = None, verbose: bool = False) -> sa.engine.Engine:
    """
    create the sqlalchemy engine for the ledger database. postgres engines
    get pool settings and an auth token refresh hook, anything else (sqlite
    for local runs and tests) is created with defaults.
    """
    process_logger = ProcessLogger("create_sql_engine")
    process_logger.log_start()
    try:
        url = resolve_database_url(database_url)
        parsed = sa.engine.make_url(url)
        process_logger.add_metadata(drivername=parsed.drivername, host=parsed.host, database_name=parsed.database)

        if parsed.get_backend_name() != "postgresql":
            engine = sa.create_engine(url, echo=verbose)
            process_logger.log_complete()
            return engine

        engine = sa.create_engine(
            url,
            echo=verbose,
            pool_pre_ping=True,
            pool_use_lifo=True,
            pool_size=5,
            max_overflow=2,
            connect_args={
                "keepalives": 1,
                "keepalives_idle": 60,
                "keepalives_interval": 60,
            },
        )
        if database_url is None and os.environ.get(f"{DEFAULT_ENV_PREFIX}_DB_URL") is None:
            sa.event.listen(engine, "do_connect", generate_update_db_password_func(PsqlArgs()))

        process_logger.log_complete()
        return engine
    except Exception as exception:
        process_logger.log_failure(exception)
        raise exception


class DatabaseManager:
    """
    manager class for ledger database operations
    """

    def __init__(self, database_url: Optional[str] = None, verbose: bool = False):
        """
        initialize db manager object, creates engine and sessionmaker
        """
        self.engine = create_ledger_engine(database_url, verbose=verbose)
        self.session = sessionmaker(bind=self.engine)

    def create_tables(self, metadata: sa.MetaData) -> None:
        """create any missing tables, used for local databases and tests"""
        metadata.create_all(self.engine)

    def dispose(self) -> None:
        """close pooled connections"""
        self.engine.dispose()
