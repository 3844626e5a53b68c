import threading
from dataclasses import dataclass, field
from typing import Optional

from subwaydata_py.aws.feed_archive import FeedArchive
from subwaydata_py.etl.artifacts import ArtifactStore
from subwaydata_py.etl.config import EtlConfig
from subwaydata_py.metadata.ledger import MetadataLedger
from subwaydata_py.postgres.postgres_utils import DatabaseManager


@dataclass(frozen=True)
class Session:
    """
    everything a command needs, built once per invocation and shared by all
    workers. the stop event is the only thing on it that changes.
    """

    config: EtlConfig
    ledger: MetadataLedger
    feed_archive: FeedArchive
    artifacts: ArtifactStore
    stop_event: threading.Event = field(default_factory=threading.Event)


def new_session(
    config: EtlConfig,
    stop_event: Optional[threading.Event] = None,
    verbose: bool = False,
) -> Session:
    """connect to the ledger database and build the s3 clients for a config"""
    db_manager = DatabaseManager(database_url=config.ledger_url, verbose=verbose)
    return Session(
        config=config,
        ledger=MetadataLedger(db_manager),
        feed_archive=FeedArchive(config.feed_archive, config.zone),
        artifacts=ArtifactStore(config.output, config.artifact_prefix),
        stop_event=stop_event if stop_event is not None else threading.Event(),
    )
