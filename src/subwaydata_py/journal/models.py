from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class StopTime:
    """a stop visited by a trip. both times absent is legal but degenerate."""

    stop_id: str
    track: Optional[str] = None
    arrival_time: Optional[datetime] = None
    departure_time: Optional[datetime] = None


@dataclass(frozen=True)
class Trip:
    """
    one realized vehicle journey. trip_uid is unique across the whole journal,
    trip_id is the source system identifier and may repeat across days and
    feeds. stop_times are in visiting order.
    """

    trip_uid: str
    trip_id: str
    route_id: str
    direction_id: bool
    vehicle_id: str
    start_time: datetime
    stop_times: Tuple[StopTime, ...] = field(default_factory=tuple)
