import datetime
import io
import tarfile
from typing import Dict, List

import pytest

from subwaydata_py.journal.export import export_csv
from subwaydata_py.journal.models import StopTime, Trip
from subwaydata_py.runtime_utils.etl_exception import SerializationError


def utc(seconds: int) -> datetime.datetime:
    """timezone aware datetime from unix seconds"""
    return datetime.datetime.fromtimestamp(seconds, tz=datetime.timezone.utc)


def read_entries(archive: bytes) -> Dict[str, str]:
    """names and contents of the archive entries, in archive order"""
    entries = {}
    with tarfile.open(fileobj=io.BytesIO(archive)) as tar:
        for member in tar.getmembers():
            extracted = tar.extractfile(member)
            assert extracted is not None
            entries[member.name] = extracted.read().decode("utf-8")
    return entries


@pytest.fixture(name="trip")
def fixture_trip() -> Trip:
    """a trip with every combination of present and absent stop fields"""
    return Trip(
        trip_uid="TripUID",
        trip_id="TripID",
        route_id="RouteID",
        direction_id=True,
        vehicle_id="VehicleID",
        start_time=utc(100),
        stop_times=(
            StopTime(stop_id="StopID1", track="Track1", departure_time=utc(200)),
            StopTime(stop_id="StopID2", arrival_time=utc(300), departure_time=utc(400)),
            StopTime(stop_id="StopID3", track="Track3", arrival_time=utc(500)),
        ),
    )


def test_export_csv(trip: Trip) -> None:
    """It writes the trips and stop times files byte for byte."""
    entries = read_entries(export_csv([trip], "somePrefix_"))

    assert list(entries) == ["somePrefix_trips.csv", "somePrefix_stop_times.csv"]
    assert entries["somePrefix_trips.csv"] == (
        "trip_uid,trip_id,route_id,direction_id,start_time,vehicle_id\n"
        "TripUID,TripID,RouteID,true,100,VehicleID\n"
    )
    assert entries["somePrefix_stop_times.csv"] == (
        "trip_uid,stop_id,track,arrival_time,departure_time\n"
        "TripUID,StopID1,Track1,,200\n"
        "TripUID,StopID2,,300,400\n"
        "TripUID,StopID3,Track3,500,\n"
    )


def test_export_preserves_order() -> None:
    """It keeps the order trips and stops are handed in, without sorting or deduplicating."""
    trips: List[Trip] = [
        Trip(
            trip_uid=uid,
            trip_id="same_trip",
            route_id="L",
            direction_id=False,
            vehicle_id="V",
            start_time=utc(start),
            stop_times=(StopTime("Z"), StopTime("A"), StopTime("Z")),
        )
        for uid, start in (("c", 300), ("a", 100), ("b", 200))
    ]

    entries = read_entries(export_csv(trips, "p_"))

    trip_rows = entries["p_trips.csv"].splitlines()[1:]
    assert [row.split(",")[0] for row in trip_rows] == ["c", "a", "b"]
    assert trip_rows[0] == "c,same_trip,L,false,300,V"

    stop_rows = entries["p_stop_times.csv"].splitlines()[1:]
    assert [tuple(row.split(",")[:2]) for row in stop_rows] == [
        (uid, stop_id) for uid in ("c", "a", "b") for stop_id in ("Z", "A", "Z")
    ]


def test_export_no_trips() -> None:
    """It writes both files with only their headers."""
    entries = read_entries(export_csv([], "empty_"))

    assert entries == {
        "empty_trips.csv": "trip_uid,trip_id,route_id,direction_id,start_time,vehicle_id\n",
        "empty_stop_times.csv": "trip_uid,stop_id,track,arrival_time,departure_time\n",
    }


def test_export_is_deterministic(trip: Trip) -> None:
    """It produces identical bytes for identical input."""
    assert export_csv([trip], "somePrefix_") == export_csv([trip], "somePrefix_")


def test_naive_times_are_utc() -> None:
    """It reads naive datetimes as utc."""
    trip = Trip(
        trip_uid="u",
        trip_id="t",
        route_id="r",
        direction_id=False,
        vehicle_id="v",
        start_time=datetime.datetime(1970, 1, 1, 0, 1, 40),
    )

    entries = read_entries(export_csv([trip], ""))

    assert entries["trips.csv"].splitlines()[1] == "u,t,r,false,100,v"


def test_export_invalid_trip() -> None:
    """It raises SerializationError for a trip that breaks the csv schema."""
    trip = Trip(
        trip_uid="u",
        trip_id="t",
        route_id="r",
        direction_id=False,
        vehicle_id="v",
        start_time=None,  # type: ignore[arg-type]
    )

    with pytest.raises(SerializationError):
        export_csv([trip], "")


def test_export_empty_fields() -> None:
    """It leaves empty identifiers blank instead of quoting them."""
    trip = Trip(
        trip_uid="u",
        trip_id="t",
        route_id="r",
        direction_id=False,
        vehicle_id="",
        start_time=utc(100),
        stop_times=(StopTime("S", track=""),),
    )

    entries = read_entries(export_csv([trip], ""))

    assert entries["trips.csv"].splitlines()[1] == "u,t,r,false,100,"
    assert entries["stop_times.csv"].splitlines()[1] == "u,S,,,"
