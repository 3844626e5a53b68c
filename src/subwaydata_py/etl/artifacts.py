import datetime
import lzma

from botocore.exceptions import BotoCoreError, ClientError

from subwaydata_py.aws.s3 import delete_object, object_exists, upload_bytes
from subwaydata_py.metadata.day import format_day
from subwaydata_py.runtime_utils.etl_exception import PublishError, PurgeError
from subwaydata_py.runtime_utils.remote_files import VERSION_KEY, S3Location

ARTIFACT_SUFFIX = "csv.tar.xz"


def compress(archive: bytes) -> bytes:
    """
    xz compress a tar archive. xz streams carry no timestamps, so equal
    archives compress to equal bytes.
    """
    return lzma.compress(archive, format=lzma.FORMAT_XZ, check=lzma.CHECK_CRC64)


class ArtifactStore:
    """published per day exports"""

    def __init__(self, output: S3Location, artifact_prefix: str) -> None:
        self.output = output
        self.artifact_prefix = artifact_prefix

    def export_prefix(self, day: datetime.date) -> str:
        """prefix of the file names inside a day's archive"""
        return f"{self.artifact_prefix}_{format_day(day)}_"

    def key(self, day: datetime.date) -> str:
        """s3 uri a day's archive is published to"""
        return self.output.join(
            f"{day.year:04d}",
            f"{day.month:02d}",
            f"{self.export_prefix(day)}{ARTIFACT_SUFFIX}",
        )

    def publish(self, day: datetime.date, archive: bytes) -> str:
        """
        compress and upload a day's archive, overwriting any earlier publish.
        returns the object path, raises PublishError if the upload fails.
        """
        object_path = self.key(day)
        try:
            upload_bytes(
                compress(archive),
                object_path,
                extra_args={
                    "ContentType": "application/x-xz",
                    "Metadata": {VERSION_KEY: self.output.version},
                },
            )
        except (ClientError, BotoCoreError) as exception:
            raise PublishError(f"unable to publish {object_path}: {exception}") from exception
        return object_path

    def remove(self, day: datetime.date) -> None:
        """delete a day's published archive, succeeds if there is none"""
        object_path = self.key(day)
        try:
            delete_object(object_path)
        except (ClientError, BotoCoreError) as exception:
            raise PurgeError(f"unable to delete {object_path}: {exception}") from exception

    def exists(self, day: datetime.date) -> bool:
        """True if an archive is published for the day"""
        return object_exists(self.key(day))
