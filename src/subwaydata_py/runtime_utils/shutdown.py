import signal
import threading
from typing import Any, Callable

from subwaydata_py.runtime_utils.etl_exception import BacklogCancelled
from subwaydata_py.runtime_utils.process_logger import ProcessLogger


def make_shutdown_handler(stop_event: threading.Event) -> Callable[[int, Any], None]:
    """
    create a handler for SIGTERM / SIGINT that asks running work to stop at its
    next check instead of killing it mid publish
    """

    def handle_shutdown(signum: int, _: Any) -> None:
        process_logger = ProcessLogger("shutdown_signal_received", signal=signal.Signals(signum).name)
        process_logger.log_start()
        stop_event.set()
        process_logger.log_complete()

    return handle_shutdown


def install_shutdown_handlers(stop_event: threading.Event) -> None:
    """route SIGTERM and SIGINT to the stop event"""
    handler = make_shutdown_handler(stop_event)
    signal.signal(signal.SIGTERM, handler)
    signal.signal(signal.SIGINT, handler)


def check_for_shutdown(stop_event: threading.Event) -> None:
    """
    check if a shutdown was requested. if so, raise so the caller unwinds at
    this point.
    """
    if stop_event.is_set():
        raise BacklogCancelled("shutdown requested")
