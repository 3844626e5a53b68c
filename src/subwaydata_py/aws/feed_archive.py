import datetime
import gzip
import io
import lzma
import os
import tarfile
from typing import Dict, List, Set
from zoneinfo import ZoneInfo

from botocore.exceptions import BotoCoreError, ClientError

from subwaydata_py.aws.s3 import download_bytes, file_list_from_s3
from subwaydata_py.runtime_utils.etl_exception import DecodeError, FeedUnavailable
from subwaydata_py.runtime_utils.process_logger import ProcessLogger
from subwaydata_py.runtime_utils.remote_files import S3Location

# trips that start late in the day finish after midnight
TRAILING_HOURS = 4

TAR_SUFFIXES = (".tar", ".tar.gz", ".tgz", ".tar.xz", ".txz")


def unpack_object(object_path: str, body: bytes) -> List[bytes]:
    """
    raw feed messages held by an archived object. archivers write either
    single messages, optionally gzipped, or tar bundles of them.
    """
    try:
        if object_path.endswith(TAR_SUFFIXES):
            messages = []
            with tarfile.open(fileobj=io.BytesIO(body), mode="r:*") as bundle:
                for member in sorted(bundle.getmembers(), key=lambda member: member.name):
                    if not member.isfile():
                        continue
                    extracted = bundle.extractfile(member)
                    if extracted is not None:
                        messages.append(extracted.read())
            return messages
        if object_path.endswith(".gz"):
            return [gzip.decompress(body)]
    except (tarfile.TarError, lzma.LZMAError, OSError, EOFError) as exception:
        raise DecodeError(f"unable to unpack archived object {object_path}: {exception}") from exception
    return [body]


class FeedArchive:
    """
    read access to raw gtfs-rt snapshots archived in s3 under
    {prefix}/{feed_id}/{YYYY}/{MM}/{DD}/{HH}/, partitioned by utc hour
    """

    def __init__(self, location: S3Location, timezone: ZoneInfo, trailing_hours: int = TRAILING_HOURS) -> None:
        self.location = location
        self.timezone = timezone
        self.trailing_hours = trailing_hours

    def utc_hours(self, day: datetime.date) -> List[datetime.datetime]:
        """every utc hour holding data for trips that start on the local day"""
        start = datetime.datetime.combine(day, datetime.time(), tzinfo=self.timezone)
        end = datetime.datetime.combine(day + datetime.timedelta(days=1), datetime.time(), tzinfo=self.timezone)
        start_utc = start.astimezone(datetime.timezone.utc)
        end_utc = end.astimezone(datetime.timezone.utc) + datetime.timedelta(hours=self.trailing_hours)

        hours = []
        current = start_utc.replace(minute=0, second=0, microsecond=0)
        while current < end_utc:
            hours.append(current)
            current += datetime.timedelta(hours=1)
        return hours

    def day_prefix(self, feed_id: str, utc_date: datetime.date) -> str:
        """object key prefix for one utc date of a feed"""
        return os.path.join(
            self.location.prefix,
            feed_id,
            f"{utc_date.year:04d}",
            f"{utc_date.month:02d}",
            f"{utc_date.day:02d}",
            "",
        )

    def object_paths(self, feed_id: str, day: datetime.date) -> List[str]:
        """s3 paths of every archived object in the day's window"""
        wanted: Dict[datetime.date, Set[str]] = {}
        for hour in self.utc_hours(day):
            wanted.setdefault(hour.date(), set()).add(f"{hour.hour:02d}")

        paths = []
        for utc_date, hours in sorted(wanted.items()):
            prefix = self.day_prefix(feed_id, utc_date)
            for path in file_list_from_s3(self.location.bucket, prefix):
                hour_part = path.split(prefix, 1)[-1].split("/", 1)[0]
                if hour_part in hours:
                    paths.append(path)
        return sorted(paths)

    def download(self, feed_id: str, day: datetime.date) -> List[bytes]:
        """
        raw feed messages for a feed and day.

        raises FeedUnavailable if the archive can't be reached or holds nothing
        for the day, DecodeError if an archived bundle is corrupt
        """
        process_logger = ProcessLogger("feed_archive_download", feed_id=feed_id, service_date=day)
        process_logger.log_start()

        try:
            paths = self.object_paths(feed_id, day)
            if not paths:
                raise FeedUnavailable(f"no archived data for feed {feed_id} on {day.isoformat()}")

            messages = []
            for path in paths:
                messages.extend(unpack_object(path, download_bytes(path)))
        except (ClientError, BotoCoreError) as exception:
            error = FeedUnavailable(f"unable to read archived data for feed {feed_id}: {exception}")
            process_logger.log_failure(error)
            raise error from exception
        except (FeedUnavailable, DecodeError) as exception:
            process_logger.log_failure(exception)
            raise

        process_logger.add_metadata(object_count=len(paths), message_count=len(messages), print_log=False)
        process_logger.log_complete()
        return messages
