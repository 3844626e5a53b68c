"""
Run the backlog over and over, but only inside configured time of day
windows, e.g. at night when the feed archive and the ledger database are
quiet. Windows are given in the target timezone as HH:MM[:SS]-HH:MM[:SS] and
may cross midnight. A backlog started inside a window gets the window end as
its deadline, so no day is started after the window closes.
"""

import datetime
import sched
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence

from subwaydata_py.etl.backlog import BacklogReport, backlog
from subwaydata_py.etl.session import Session
from subwaydata_py.runtime_utils.etl_exception import ArgumentException
from subwaydata_py.runtime_utils.process_logger import ProcessLogger

# pause inside a window after a backlog run that got nothing done
IDLE_SECONDS = 300

BacklogFn = Callable[..., BacklogReport]


def _parse_time(raw: str) -> datetime.time:
    for time_format in ("%H:%M:%S", "%H:%M"):
        try:
            return datetime.datetime.strptime(raw.strip(), time_format).time()
        except ValueError:
            continue
    raise ArgumentException(f"invalid time {raw!r}, expected HH:MM or HH:MM:SS")


@dataclass(frozen=True)
class Interval:
    """a daily time window, end exclusive. start after end crosses midnight."""

    start: datetime.time
    end: datetime.time

    @classmethod
    def parse(cls, raw: str) -> "Interval":
        """parse HH:MM[:SS]-HH:MM[:SS]"""
        parts = raw.split("-")
        if len(parts) != 2:
            raise ArgumentException(f"invalid interval {raw!r}, expected HH:MM[:SS]-HH:MM[:SS]")
        interval = cls(_parse_time(parts[0]), _parse_time(parts[1]))
        if interval.start == interval.end:
            raise ArgumentException(f"interval {raw!r} is empty")
        return interval

    @property
    def crosses_midnight(self) -> bool:
        """True if the window ends on the day after it starts"""
        return self.start > self.end

    def contains(self, moment: datetime.time) -> bool:
        """True if a time of day falls inside the window"""
        if self.crosses_midnight:
            return moment >= self.start or moment < self.end
        return self.start <= moment < self.end

    def end_after(self, now: datetime.datetime) -> datetime.datetime:
        """end of the window that now is inside of"""
        end_date = now.date()
        if self.crosses_midnight and now.time() >= self.start:
            end_date += datetime.timedelta(days=1)
        return datetime.datetime.combine(end_date, self.end, tzinfo=now.tzinfo)

    def next_start(self, now: datetime.datetime) -> datetime.datetime:
        """first start of the window after now"""
        start = datetime.datetime.combine(now.date(), self.start, tzinfo=now.tzinfo)
        if start <= now:
            start += datetime.timedelta(days=1)
        return start

    def __str__(self) -> str:
        return f"{self.start.isoformat()}-{self.end.isoformat()}"


def current_window_end(intervals: Sequence[Interval], now: datetime.datetime) -> Optional[datetime.datetime]:
    """latest end of the windows now is inside of, None outside of every window"""
    ends = [interval.end_after(now) for interval in intervals if interval.contains(now.time())]
    if not ends:
        return None
    return max(ends)


def next_window_start(intervals: Sequence[Interval], now: datetime.datetime) -> datetime.datetime:
    """earliest start of any window after now"""
    return min(interval.next_start(now) for interval in intervals)


def run_periodic(
    session: Session,
    intervals: Sequence[Interval],
    backlog_fn: BacklogFn = backlog,
    concurrency: int = 1,
    limit: Optional[int] = None,
    clock: Callable[[], float] = time.time,
    sleep: Optional[Callable[[float], Any]] = None,
    iterations: Optional[int] = None,
) -> List[BacklogReport]:
    """
    run the backlog inside the windows until the session is asked to stop.

    :param clock: unix time source for the scheduler
    :param sleep: waits on the scheduler's behalf, by default on the session
        stop event so a shutdown interrupts the wait
    :param iterations: stop after this many scheduler iterations

    returns the report of every backlog that ran
    """
    if not intervals:
        raise ArgumentException("at least one interval is needed")

    main_process_logger = ProcessLogger("run_periodic", intervals=[str(interval) for interval in intervals])
    main_process_logger.log_start()

    if sleep is None:
        sleep = session.stop_event.wait

    def wait(seconds: float) -> None:
        """sleep, dropping whatever is scheduled once shutdown was requested"""
        sleep(seconds)  # type: ignore[misc]
        if session.stop_event.is_set():
            for event in scheduler.queue:
                scheduler.cancel(event)

    # schedule object that will control the "event loop"
    scheduler = sched.scheduler(clock, wait)
    reports: List[BacklogReport] = []
    iteration_count = 0

    def iteration() -> None:
        """run the backlog if inside a window, then schedule the next check"""
        nonlocal iteration_count
        if session.stop_event.is_set() or iterations == 0:
            return
        iteration_count += 1

        current = clock()
        now = datetime.datetime.fromtimestamp(current, tz=session.config.zone)
        window_end = current_window_end(intervals, now)

        if window_end is None:
            next_start = next_window_start(intervals, now)
            delay = next_start.timestamp() - current
            process_logger = ProcessLogger("periodic_wait", next_window_start=next_start.isoformat())
            process_logger.log_start()
            process_logger.log_complete()
        else:
            process_logger = ProcessLogger("periodic_iteration", window_end=window_end.isoformat())
            process_logger.log_start()
            delay = 0.0
            try:
                report = backlog_fn(session, limit=limit, concurrency=concurrency, deadline=window_end)
                reports.append(report)
                if not report.succeeded:
                    delay = min(float(IDLE_SECONDS), max(window_end.timestamp() - current, 0.0))
                process_logger.add_metadata(selected_count=len(report.selected), print_log=False)
                process_logger.log_complete()
            except Exception as exception:
                # keep the loop alive, the next iteration retries after a pause
                delay = float(IDLE_SECONDS)
                process_logger.log_failure(exception)

        if iterations is not None and iteration_count >= iterations:
            return
        scheduler.enter(delay, 1, iteration)

    # schedule the initial loop and start the scheduler
    scheduler.enter(0, 1, iteration)
    scheduler.run()

    main_process_logger.add_metadata(backlog_runs=len(reports), print_log=False)
    main_process_logger.log_complete()
    return reports
