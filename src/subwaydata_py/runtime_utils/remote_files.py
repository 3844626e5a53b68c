import os
from dataclasses import dataclass

# bucket constants, used when the etl config does not name a bucket
S3_FEED_ARCHIVE: str = os.environ.get("FEED_ARCHIVE_BUCKET", "unset_FEED_ARCHIVE")
S3_PUBLIC: str = os.environ.get("PUBLIC_ARCHIVE_BUCKET", "unset_PUBLIC")

# prefix constants
SUBWAYDATA = "subwaydata"
FEED_ARCHIVE_PREFIX = "hoard"

VERSION_KEY = "subwaydata_version"


@dataclass(frozen=True)
class S3Location:
    """
    wrapper for a bucket name and prefix pair used to define an s3 location
    """

    bucket: str
    prefix: str
    version: str = "1.0"

    @property
    def s3_uri(self) -> str:
        """generate the full s3 uri for the location"""
        return f"s3://{self.bucket}/{self.prefix}"

    def join(self, *parts: str) -> str:
        """s3 uri of an object below this location"""
        return os.path.join(self.s3_uri, *parts)


# raw gtfs-rt snapshots written by the feed archiver
feed_archive = S3Location(bucket=S3_FEED_ARCHIVE, prefix=FEED_ARCHIVE_PREFIX)

# per day csv exports published by this pipeline
day_exports = S3Location(bucket=S3_PUBLIC, prefix=os.path.join(SUBWAYDATA, "days"), version="1.0")
