"""
Build the trip journal for one service day out of archived GTFS-realtime
snapshots.

Snapshots are replayed in header timestamp order. Every trip update seen for a
trip refines what is known about it: the last reported arrival and departure
for each stop wins, and a stop keeps the position at which it was first seen.
Stops that drop out of later updates (because the train already passed them)
are kept with their last reported times.
"""

import datetime
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.transit import gtfs_realtime_pb2

from subwaydata_py.journal.models import StopTime, Trip
from subwaydata_py.runtime_utils.etl_exception import DecodeError
from subwaydata_py.runtime_utils.process_logger import ProcessLogger

TripKey = Tuple[str, str, str]


@dataclass
class _ActiveStopTime:
    stop_id: str
    arrival_time: Optional[datetime.datetime] = None
    departure_time: Optional[datetime.datetime] = None


@dataclass
class _ActiveTrip:
    feed_id: str
    trip_id: str
    start_date: str
    route_id: str = ""
    direction_id: bool = False
    vehicle_id: str = ""
    scheduled_start: Optional[datetime.datetime] = None
    first_seen: Optional[datetime.datetime] = None
    stop_times: Dict[str, _ActiveStopTime] = field(default_factory=dict)

    def start_time(self) -> Optional[datetime.datetime]:
        """scheduled start if the feed gave one, else the earliest known event"""
        if self.scheduled_start is not None:
            return self.scheduled_start
        times = [
            time
            for stop_time in self.stop_times.values()
            for time in (stop_time.arrival_time, stop_time.departure_time)
            if time is not None
        ]
        if times:
            return min(times)
        return self.first_seen

    def freeze(self, start_time: datetime.datetime) -> Trip:
        """immutable trip for export"""
        return Trip(
            trip_uid=f"{self.feed_id}:{self.start_date}:{self.trip_id}",
            trip_id=self.trip_id,
            route_id=self.route_id,
            direction_id=self.direction_id,
            vehicle_id=self.vehicle_id,
            start_time=start_time,
            stop_times=tuple(
                StopTime(
                    stop_id=stop_time.stop_id,
                    arrival_time=stop_time.arrival_time,
                    departure_time=stop_time.departure_time,
                )
                for stop_time in self.stop_times.values()
            ),
        )


def decode_feed_message(raw: bytes) -> gtfs_realtime_pb2.FeedMessage:
    """parse a protobuf FeedMessage, raising DecodeError for garbage input"""
    message = gtfs_realtime_pb2.FeedMessage()
    try:
        message.ParseFromString(raw)
    except ProtobufDecodeError as exception:
        raise DecodeError(f"invalid gtfs-rt feed message: {exception}") from exception
    return message


def _from_epoch(value: int) -> Optional[datetime.datetime]:
    if value <= 0:
        return None
    return datetime.datetime.fromtimestamp(value, tz=datetime.timezone.utc)


def _scheduled_start(start_date: str, start_time: str, timezone: ZoneInfo) -> Optional[datetime.datetime]:
    """
    combine gtfs start_date (YYYYMMDD) and start_time (HH:MM:SS, may exceed
    24:00:00) into an absolute time
    """
    if not start_date or not start_time:
        return None
    try:
        service_date = datetime.datetime.strptime(start_date, "%Y%m%d")
        hours, minutes, seconds = (int(part) for part in start_time.split(":"))
    except ValueError:
        return None
    # gtfs times are measured from noon minus 12 hours, which is midnight
    # except on daylight saving days
    noon = service_date.replace(hour=12, tzinfo=timezone).astimezone(datetime.timezone.utc)
    return noon + datetime.timedelta(hours=hours - 12, minutes=minutes, seconds=seconds)


class JournalBuilder:
    """accumulates gtfs-rt snapshots into trips"""

    def __init__(self, timezone: ZoneInfo) -> None:
        self.timezone = timezone
        self.trips: Dict[TripKey, _ActiveTrip] = {}
        self.message_count = 0

    def add_message(self, feed_id: str, message: gtfs_realtime_pb2.FeedMessage) -> None:
        """apply one snapshot"""
        self.message_count += 1
        message_time = _from_epoch(message.header.timestamp)

        for entity in message.entity:
            if entity.HasField("trip_update"):
                trip_update = entity.trip_update
                trip = self._active_trip(feed_id, trip_update.trip, message_time)
                if trip is None:
                    continue
                if trip_update.HasField("vehicle") and trip_update.vehicle.id:
                    trip.vehicle_id = trip_update.vehicle.id
                for update in trip_update.stop_time_update:
                    self._apply_stop_time_update(trip, update)

            if entity.HasField("vehicle"):
                vehicle = entity.vehicle
                if not vehicle.HasField("trip"):
                    continue
                trip = self._active_trip(feed_id, vehicle.trip, message_time)
                if trip is not None and vehicle.HasField("vehicle"):
                    trip.vehicle_id = vehicle.vehicle.id or vehicle.vehicle.label or trip.vehicle_id

    def _active_trip(
        self,
        feed_id: str,
        descriptor: gtfs_realtime_pb2.TripDescriptor,
        message_time: Optional[datetime.datetime],
    ) -> Optional[_ActiveTrip]:
        if not descriptor.trip_id:
            return None
        key = (feed_id, descriptor.start_date, descriptor.trip_id)
        trip = self.trips.get(key)
        if trip is None:
            trip = _ActiveTrip(
                feed_id=feed_id,
                trip_id=descriptor.trip_id,
                start_date=descriptor.start_date,
                first_seen=message_time,
            )
            self.trips[key] = trip
        if descriptor.route_id:
            trip.route_id = descriptor.route_id
        if descriptor.HasField("direction_id"):
            trip.direction_id = descriptor.direction_id == 1
        scheduled_start = _scheduled_start(descriptor.start_date, descriptor.start_time, self.timezone)
        if scheduled_start is not None:
            trip.scheduled_start = scheduled_start
        return trip

    @staticmethod
    def _apply_stop_time_update(trip: _ActiveTrip, update: gtfs_realtime_pb2.TripUpdate.StopTimeUpdate) -> None:
        if not update.stop_id:
            return
        stop_time = trip.stop_times.setdefault(update.stop_id, _ActiveStopTime(update.stop_id))
        if update.HasField("arrival"):
            stop_time.arrival_time = _from_epoch(update.arrival.time) or stop_time.arrival_time
        if update.HasField("departure"):
            stop_time.departure_time = _from_epoch(update.departure.time) or stop_time.departure_time

    def build(self, day: datetime.date) -> List[Trip]:
        """
        trips that started on the day in the target timezone, ordered by start
        time and then trip uid
        """
        trips = []
        for active_trip in self.trips.values():
            start_time = active_trip.start_time()
            if start_time is None or start_time.astimezone(self.timezone).date() != day:
                continue
            trips.append(active_trip.freeze(start_time))
        trips.sort(key=lambda trip: (trip.start_time, trip.trip_uid))
        return trips


def build_journal(
    raw_messages: Dict[str, Iterable[bytes]],
    day: datetime.date,
    timezone: ZoneInfo,
) -> List[Trip]:
    """
    decode raw gtfs-rt snapshots, keyed by feed id, into the trips that started
    on the day
    """
    process_logger = ProcessLogger("build_journal", service_date=day, feed_ids=sorted(raw_messages.keys()))
    process_logger.log_start()

    builder = JournalBuilder(timezone)
    try:
        for feed_id in sorted(raw_messages.keys()):
            messages = [decode_feed_message(raw) for raw in raw_messages[feed_id]]
            messages.sort(key=lambda message: message.header.timestamp)
            for message in messages:
                builder.add_message(feed_id, message)
    except DecodeError as exception:
        process_logger.log_failure(exception)
        raise

    trips = builder.build(day)
    process_logger.add_metadata(message_count=builder.message_count, trip_count=len(trips), print_log=False)
    process_logger.log_complete()
    return trips
