import datetime
import logging
import os
import shutil
import time
import traceback
import uuid
from typing import Any, Dict, FrozenSet, List, Optional, Set, Tuple, Union

import psutil

MdValues = Optional[
    Union[str, int, float, bool, datetime.date, BaseException, List[str], Tuple[str, ...], FrozenSet[str], Set[str]]
]


def format_value(value: Any) -> str:
    """
    render a metadata value for a key=value log line. dates are iso formatted
    and collections of feed ids are sorted and comma joined, so the same day
    always logs the same way.
    """
    if isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if isinstance(value, (frozenset, set)):
        return ",".join(sorted(str(item) for item in value))
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    return str(value)


class ProcessLogger:
    """
    Log the life of a unit of work (a day run, an s3 call, a ledger commit)
    as key=value lines: started, optionally metadata updates and warnings,
    then complete or failed with a duration.
    """

    # default_data keys that can not be added as metadata
    protected_keys = [
        "parent",
        "process_name",
        "process_id",
        "uuid",
        "status",
        "duration",
        "error_type",
        "free_disk_mb",
        "free_mem_pct",
        "print_log",
    ]

    def __init__(self, process_name: str, **metadata: MdValues) -> None:
        """
        create a process logger with a name and optional metadata. nothing is
        logged until log_start, so the uuid and timer belong to the work itself
        """
        logging.getLogger().setLevel("INFO")

        self.default_data: Dict[str, Any] = {
            "parent": os.environ.get("SERVICE_NAME", "unknown"),
            "process_name": process_name,
        }
        self.metadata: Dict[str, str] = {}
        self.start_time = 0.0

        self.add_metadata(**metadata, print_log=False)

    @staticmethod
    def _resource_stats() -> Dict[str, int]:
        _, _, free_disk_bytes = shutil.disk_usage("/")
        return {
            "free_disk_mb": int(free_disk_bytes / (1000 * 1000)),
            "free_mem_pct": int(100 - psutil.virtual_memory().percent),
        }

    def _get_log_string(self) -> str:
        """create logging string for log write"""
        self.default_data.update(self._resource_stats())
        fields = {**self.default_data, **self.metadata}
        return ", ".join(f"{key}={value}" for key, value in fields.items())

    def _start_if_unstarted(self) -> None:
        if "uuid" not in self.default_data:
            self.log_start()

    def _elapsed(self) -> str:
        return f"{time.monotonic() - self.start_time:.2f}"

    def _add_error_context(self, exception: BaseException) -> None:
        """copy context attached to an etl exception into the log fields"""
        for key, value in getattr(exception, "context", {}).items():
            if key not in ProcessLogger.protected_keys:
                self.metadata.setdefault(str(key), format_value(value))

    def add_metadata(self, **metadata: MdValues) -> None:
        """
        add metadata to the process logger

        :param print_log: if True(default), print log after metadata is added
        """
        print_log = bool(metadata.pop("print_log", True))
        for key, value in metadata.items():
            if key in ProcessLogger.protected_keys:
                continue
            self.metadata[str(key)] = format_value(value)

        if not print_log:
            return
        self._start_if_unstarted()
        self.default_data["status"] = "add_metadata"
        logging.info(self._get_log_string())

    def log_start(self) -> None:
        """log the start of a process"""
        self.default_data["uuid"] = uuid.uuid4()
        self.default_data["process_id"] = os.getpid()
        self.default_data["status"] = "started"
        self.default_data.pop("duration", None)
        self.default_data.pop("error_type", None)

        self.start_time = time.monotonic()

        logging.info(self._get_log_string())

    def log_complete(self) -> None:
        """log the completion of a process with duration"""
        self.default_data["status"] = "complete"
        self.default_data["duration"] = self._elapsed()

        logging.info(self._get_log_string())

    def log_warning(self, exception: BaseException) -> None:
        """
        log a problem the process recovers from, e.g. one failed day of a
        backlog, without marking the process as failed
        """
        self._start_if_unstarted()

        self.default_data["status"] = "warning"
        self.default_data["error_type"] = type(exception).__name__
        self.metadata["warning"] = str(exception)
        self._add_error_context(exception)

        logging.warning(self._get_log_string())

    def log_failure(self, exception: BaseException) -> None:
        """log the failure of a process with exception type and context"""
        self._start_if_unstarted()

        self.default_data["status"] = "failed"
        self.default_data["duration"] = self._elapsed()
        self.default_data["error_type"] = type(exception).__name__
        self._add_error_context(exception)

        process_uuid = self.default_data["uuid"]

        # exceptions that were never raised have no traceback to print
        for tb in traceback.format_tb(exception.__traceback__):
            for line in tb.strip("\n").split("\n"):
                logging.error("uuid=%s, %s", process_uuid, line.strip("\n"))

        for line in traceback.format_exception_only(type(exception), exception):
            logging.error("uuid=%s, %s", process_uuid, line.strip("\n"))

        has_exception_info = bool(exception.__traceback__)
        logging.exception(self._get_log_string(), exc_info=has_exception_info)
