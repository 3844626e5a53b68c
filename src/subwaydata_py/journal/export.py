import io
import tarfile
from datetime import datetime, timezone
from typing import Optional, Sequence

import dataframely as dy
import polars as pl

from subwaydata_py.journal.models import Trip
from subwaydata_py.runtime_utils.etl_exception import SerializationError
from subwaydata_py.runtime_utils.process_logger import ProcessLogger

TRIPS_FILE = "trips.csv"
STOP_TIMES_FILE = "stop_times.csv"


class TripsCsv(dy.Schema):
    """One row per trip."""

    trip_uid = dy.String(nullable=False)
    trip_id = dy.String(nullable=False)
    route_id = dy.String(nullable=False)
    direction_id = dy.Bool(nullable=False)
    start_time = dy.Int64(nullable=False)
    vehicle_id = dy.String(nullable=False)


class StopTimesCsv(dy.Schema):
    """One row per stop visited by a trip, denormalized on trip_uid."""

    trip_uid = dy.String(nullable=False)
    stop_id = dy.String(nullable=False)
    track = dy.String(nullable=True)
    arrival_time = dy.Int64(nullable=True)
    departure_time = dy.Int64(nullable=True)


def _epoch(value: Optional[datetime]) -> Optional[int]:
    """unix seconds, naive datetimes are read as utc"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())


def trips_frame(trips: Sequence[Trip]) -> dy.DataFrame[TripsCsv]:
    """trips table, rows in input order"""
    frame = pl.DataFrame(
        {
            "trip_uid": [trip.trip_uid for trip in trips],
            "trip_id": [trip.trip_id for trip in trips],
            "route_id": [trip.route_id for trip in trips],
            "direction_id": [trip.direction_id for trip in trips],
            "start_time": [_epoch(trip.start_time) for trip in trips],
            "vehicle_id": [trip.vehicle_id for trip in trips],
        },
        schema=TripsCsv.create_empty().schema,
    )
    return TripsCsv.validate(frame, cast=True)


def stop_times_frame(trips: Sequence[Trip]) -> dy.DataFrame[StopTimesCsv]:
    """stop times table, trips in input order and stops in visiting order"""
    pairs = [(trip.trip_uid, stop_time) for trip in trips for stop_time in trip.stop_times]
    frame = pl.DataFrame(
        {
            "trip_uid": [trip_uid for trip_uid, _ in pairs],
            "stop_id": [stop_time.stop_id for _, stop_time in pairs],
            "track": [stop_time.track for _, stop_time in pairs],
            "arrival_time": [_epoch(stop_time.arrival_time) for _, stop_time in pairs],
            "departure_time": [_epoch(stop_time.departure_time) for _, stop_time in pairs],
        },
        schema=StopTimesCsv.create_empty().schema,
    )
    return StopTimesCsv.validate(frame, cast=True)


def _add_entry(archive: tarfile.TarFile, name: str, content: bytes) -> None:
    # fixed header fields keep the archive byte-identical across reruns
    info = tarfile.TarInfo(name=name)
    info.size = len(content)
    info.mtime = 0
    info.mode = 0o644
    archive.addfile(info, io.BytesIO(content))


def export_csv(trips: Sequence[Trip], prefix: str) -> bytes:
    """
    serialize trips into a tar archive holding {prefix}trips.csv and
    {prefix}stop_times.csv, in that order.

    rows keep the order of the input, nothing is sorted or deduplicated here.
    a failure is a defect in the trips handed in and is raised as a
    SerializationError.
    """
    process_logger = ProcessLogger("export_csv", prefix=prefix, trip_count=len(trips))
    process_logger.log_start()

    try:
        trips_csv = trips_frame(trips).select(TripsCsv.column_names()).write_csv(quote_style="never")
        stop_times = stop_times_frame(trips)
        stop_times_csv = stop_times.select(StopTimesCsv.column_names()).write_csv(quote_style="never")
    except (dy.exc.ValidationError, pl.exceptions.PolarsError, TypeError) as exception:
        error = SerializationError(f"unable to serialize {len(trips)} trips: {exception}")
        process_logger.log_failure(error)
        raise error from exception

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w", format=tarfile.PAX_FORMAT) as archive:
        _add_entry(archive, f"{prefix}{TRIPS_FILE}", trips_csv.encode("utf-8"))
        _add_entry(archive, f"{prefix}{STOP_TIMES_FILE}", stop_times_csv.encode("utf-8"))

    process_logger.add_metadata(stop_time_count=stop_times.height, archive_bytes=buffer.tell(), print_log=False)
    process_logger.log_complete()
    return buffer.getvalue()
