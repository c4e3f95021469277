"""Graceful shutdown for the job runner.

The first SIGINT/SIGTERM sets a flag that fetches check before touching the
network and runs the cleanup callbacks, so jobs with a running step land in
the interrupted state. A second signal exits immediately.
"""

import signal
import sys
import threading
from typing import Callable, Dict, List, Optional

from devicescrape.logging_config import get_logger

__all__ = [
    "ShutdownHandler",
    "get_shutdown_handler",
    "raise_if_shutdown_requested",
    "register_cleanup",
]

logger = get_logger("shutdown")

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownHandler:
    """Process-wide shutdown flag plus cleanup callbacks."""

    _instance: Optional["ShutdownHandler"] = None
    _lock = threading.Lock()

    def __init__(self) -> None:
        self._requested = threading.Event()
        self._callbacks: List[Callable[[], None]] = []
        self._previous: Dict[int, object] = {}
        self._signals_seen = 0

    @classmethod
    def get_instance(cls) -> "ShutdownHandler":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def installed(self) -> bool:
        return bool(self._previous)

    def install(self) -> "ShutdownHandler":
        """Install signal handlers; a no-op outside the main thread."""
        if self.installed:
            return self
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in the main thread, signal handlers left alone")
            return self

        for signum in _SIGNALS:
            self._previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._on_signal)
        return self

    def uninstall(self) -> None:
        for signum, previous in self._previous.items():
            if previous is not None:
                signal.signal(signum, previous)
        self._previous.clear()

    def _on_signal(self, signum: int, frame) -> None:
        self._signals_seen += 1
        name = signal.Signals(signum).name

        if self._signals_seen > 1:
            logger.error(f"Received {name} again, exiting")
            self.cleanup()
            sys.exit(1)

        logger.warning(f"Received {name}, interrupting running jobs (repeat to force quit)")
        self._requested.set()
        self.cleanup()

    @property
    def shutdown_requested(self) -> bool:
        return self._requested.is_set()

    def request_shutdown(self) -> None:
        """Set the flag without a signal."""
        self._requested.set()

    def raise_if_requested(self) -> None:
        """Raises KeyboardInterrupt once a shutdown was requested."""
        if self._requested.is_set():
            raise KeyboardInterrupt("Graceful shutdown requested")

    def register_cleanup(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def cleanup(self) -> None:
        """Run the registered callbacks once; a failing callback does not stop the rest."""
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("Cleanup callback failed")

    def reset(self) -> None:
        self._requested.clear()
        self._signals_seen = 0


def get_shutdown_handler() -> ShutdownHandler:
    return ShutdownHandler.get_instance()


def raise_if_shutdown_requested() -> None:
    get_shutdown_handler().raise_if_requested()


def register_cleanup(callback: Callable[[], None]) -> None:
    get_shutdown_handler().register_cleanup(callback)
