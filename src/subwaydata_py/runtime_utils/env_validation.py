import os
from typing import List, Optional

from .process_logger import ProcessLogger

PRIVATE_VARIABLES = ["LEDGER_DB_PASSWORD", "LEDGER_DB_URL", "AWS_SECRET_ACCESS_KEY"]


def ledger_db_variables(prefix: str = "LEDGER") -> List[str]:
    """
    environment variables needed to reach the ledger database. a full
    sqlalchemy url replaces the individual connection parts.
    """
    if os.environ.get(f"{prefix}_DB_URL") is not None:
        return [f"{prefix}_DB_URL"]

    variables = [
        f"{prefix}_DB_HOST",
        f"{prefix}_DB_NAME",
        f"{prefix}_DB_PORT",
        f"{prefix}_DB_USER",
    ]
    # without a password a token is generated for the cloud database, which
    # needs the region it lives in
    if os.environ.get(f"{prefix}_DB_PASSWORD") is None:
        variables.append("DB_REGION")
    return variables


def validate_environment(
    required_variables: List[str],
    optional_variables: Optional[List[str]] = None,
    check_ledger_db: bool = True,
) -> None:
    """
    ensure that the environment has all the variables its required to have
    before any day is processed, making certain errors easier to debug.
    """
    process_logger = ProcessLogger("validate_env")
    process_logger.log_start()

    # every pipeline needs a service name for logging
    required_variables = list(required_variables) + ["SERVICE_NAME"]
    if check_ledger_db:
        required_variables += ledger_db_variables()

    missing_required = []
    for key in required_variables:
        value = os.environ.get(key)
        if value is None:
            missing_required.append(key)
        if key in PRIVATE_VARIABLES:
            value = "**********"
        process_logger.add_metadata(**{key: value})

    for key in optional_variables or []:
        value = os.environ.get(key)
        if value is not None:
            if key in PRIVATE_VARIABLES:
                value = "**********"
            process_logger.add_metadata(**{key: value})

    # if required variables are missing, log a failure and throw.
    if missing_required:
        exception = EnvironmentError(f"Missing required environment variables {missing_required}")
        process_logger.log_failure(exception)
        raise exception

    process_logger.log_complete()
