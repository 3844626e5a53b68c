"""
ETL configuration, read once from a JSON file at startup.

{
    "timezone": "America/New_York",
    "publication_delay_hours": 5,
    "artifact_prefix": "subwaydatanyc",
    "feeds": [
        {"id": "nycsubway_L", "first_day": "2021-09-01"},
        {"id": "nycsubway_G", "first_day": "2021-09-01", "last_day": "2022-01-31"}
    ],
    "feed_archive": {"bucket": "hoard-bucket", "prefix": "hoard"},
    "output": {"bucket": "public-bucket", "prefix": "subwaydata/days"},
    "ledger_url": "postgresql+psycopg2://...",
    "remove_orphaned_artifacts": false
}

Only "feeds" is required. Buckets fall back to the FEED_ARCHIVE_BUCKET and
PUBLIC_ARCHIVE_BUCKET environment variables, the ledger url to LEDGER_DB_URL or
the LEDGER_DB_* postgres variables.
"""

import datetime
import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from subwaydata_py.metadata.day import parse_day
from subwaydata_py.runtime_utils.etl_exception import ArgumentException, ConfigError
from subwaydata_py.runtime_utils.process_logger import ProcessLogger
from subwaydata_py.runtime_utils import remote_files as rf


@dataclass(frozen=True)
class FeedConfig:
    """a realtime feed and the days it has data for (last_day inclusive)"""

    feed_id: str
    first_day: datetime.date
    last_day: Optional[datetime.date] = None

    def covers(self, day: datetime.date) -> bool:
        """True if the feed has data for the day"""
        if day < self.first_day:
            return False
        return self.last_day is None or day <= self.last_day


@dataclass(frozen=True)
class EtlConfig:
    """immutable configuration handed to every command"""

    feeds: Tuple[FeedConfig, ...]
    timezone: str = "America/New_York"
    publication_delay_hours: float = 5
    artifact_prefix: str = "subwaydatanyc"
    feed_archive: rf.S3Location = rf.feed_archive
    output: rf.S3Location = rf.day_exports
    ledger_url: Optional[str] = None
    remove_orphaned_artifacts: bool = False

    @property
    def zone(self) -> ZoneInfo:
        """the target timezone"""
        return ZoneInfo(self.timezone)

    @property
    def publication_delay(self) -> datetime.timedelta:
        """how long after local midnight a day's feed data is complete"""
        return datetime.timedelta(hours=self.publication_delay_hours)


def _location(raw: Any, default: rf.S3Location, name: str) -> rf.S3Location:
    if raw is None:
        return default
    if not isinstance(raw, dict) or "bucket" not in raw:
        raise ConfigError(f"{name} must be an object with a bucket")
    return rf.S3Location(
        bucket=str(raw["bucket"]),
        prefix=str(raw.get("prefix", default.prefix)).strip("/"),
        version=str(raw.get("version", default.version)),
    )


def _feed(raw: Any) -> FeedConfig:
    if not isinstance(raw, dict) or "id" not in raw or "first_day" not in raw:
        raise ConfigError(f"feed entries need an id and a first_day, got {raw!r}")
    try:
        first_day = parse_day(str(raw["first_day"]))
        last_day = parse_day(str(raw["last_day"])) if raw.get("last_day") else None
    except ArgumentException as exception:
        raise ConfigError(f"feed {raw['id']}: {exception}") from exception
    if last_day is not None and last_day < first_day:
        raise ConfigError(f"feed {raw['id']}: last_day is before first_day")
    return FeedConfig(feed_id=str(raw["id"]), first_day=first_day, last_day=last_day)


def parse_config(raw: Dict[str, Any]) -> EtlConfig:
    """build the config from decoded json, raising ConfigError on bad values"""
    if not isinstance(raw, dict):
        raise ConfigError("the etl config must be a json object")

    raw_feeds = raw.get("feeds")
    if not isinstance(raw_feeds, list) or not raw_feeds:
        raise ConfigError("the etl config must list at least one feed")
    feeds = tuple(_feed(raw_feed) for raw_feed in raw_feeds)

    feed_ids = [feed.feed_id for feed in feeds]
    if len(set(feed_ids)) != len(feed_ids):
        raise ConfigError(f"duplicate feed ids in {feed_ids}")

    timezone = str(raw.get("timezone", EtlConfig.timezone))
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exception:
        raise ConfigError(f"unable to load timezone {timezone!r}") from exception

    try:
        delay = float(raw.get("publication_delay_hours", EtlConfig.publication_delay_hours))
    except (TypeError, ValueError) as exception:
        raise ConfigError("publication_delay_hours must be a number") from exception

    return EtlConfig(
        feeds=feeds,
        timezone=timezone,
        publication_delay_hours=delay,
        artifact_prefix=str(raw.get("artifact_prefix", EtlConfig.artifact_prefix)),
        feed_archive=_location(raw.get("feed_archive"), rf.feed_archive, "feed_archive"),
        output=_location(raw.get("output"), rf.day_exports, "output"),
        ledger_url=raw.get("ledger_url"),
        remove_orphaned_artifacts=bool(raw.get("remove_orphaned_artifacts", False)),
    )


def load_config(path: str) -> EtlConfig:
    """read and parse the etl config file"""
    process_logger = ProcessLogger("load_etl_config", path=path)
    process_logger.log_start()
    try:
        with open(path, "r", encoding="utf8") as config_file:
            raw = json.load(config_file)
        config = parse_config(raw)
    except OSError as exception:
        error = ConfigError(f"failed to read the etl config file from disk: {exception}")
        process_logger.log_failure(error)
        raise error from exception
    except json.JSONDecodeError as exception:
        error = ConfigError(f"failed to parse the etl config file: {exception}")
        process_logger.log_failure(error)
        raise error from exception
    except ConfigError as exception:
        process_logger.log_failure(exception)
        raise

    process_logger.add_metadata(feed_count=len(config.feeds), timezone=config.timezone, print_log=False)
    process_logger.log_complete()
    return config
