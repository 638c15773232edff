"""
Match events and the notifier interface.

The session reports to the outside world (a UI, a log, a message bus)
only through a Notifier. Notifications are one-way: return values are
ignored and exceptions raised by a notifier are logged by the session,
never propagated into the matching loop.
"""

import enum
import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ErrorKind(enum.Enum):
    NOT_READY = "not_ready"
    DIMENSION_MISMATCH = "dimension_mismatch"
    CAPTURE = "capture"
    EXTRACTION = "extraction"
    REFERENCE_EXTRACTION_FAILED = "reference_extraction_failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class MatchEvent:
    """Outcome of one completed cycle."""

    score: float
    matched: bool
    running_count: int
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class CycleFailure:
    """A non-fatal failure inside one cycle."""

    kind: ErrorKind
    message: str
    timestamp: float = field(default_factory=time.time)


class Notifier:
    """Receiver for session notifications. The base class ignores everything."""

    def on_match_event(self, event: MatchEvent) -> None:
        pass

    def on_error(self, kind: ErrorKind, message: str) -> None:
        pass


class LoggingNotifier(Notifier):
    """Writes every notification to the log."""

    def __init__(self, log: logging.Logger = None):
        self.log = log or logger

    def on_match_event(self, event: MatchEvent) -> None:
        if event.matched:
            self.log.info(
                f"Object matched! Count: {event.running_count} "
                f"(similarity {event.score:.3f})"
            )
        else:
            self.log.info(f"No match (similarity {event.score:.3f})")

    def on_error(self, kind: ErrorKind, message: str) -> None:
        self.log.warning(f"[{kind.value}] {message}")


class CallbackNotifier(Notifier):
    """Forwards notifications to plain callables."""

    def __init__(self,
                 on_match: Optional[Callable[[MatchEvent], None]] = None,
                 on_error: Optional[Callable[[ErrorKind, str], None]] = None):
        self._on_match = on_match
        self._on_error = on_error

    def on_match_event(self, event: MatchEvent) -> None:
        if self._on_match is not None:
            self._on_match(event)

    def on_error(self, kind: ErrorKind, message: str) -> None:
        if self._on_error is not None:
            self._on_error(kind, message)


class ThreadedNotifier(Notifier):
    """
    Delivers notifications to another notifier on a background thread.

    The matching loop only enqueues, so a slow receiver never delays the
    next cycle. When the bounded queue is full the notification is
    dropped and logged.
    """

    def __init__(self, inner: Notifier, max_queue_size: int = 1000):
        self.inner = inner
        self.queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self.dropped = 0
        self._closed = False
        self._lock = threading.Lock()
        self.worker = threading.Thread(
            target=self._worker, daemon=True, name="MatchNotifier"
        )
        self.worker.start()

    def _worker(self):
        while True:
            item = self.queue.get()
            if item is None:  # Shutdown signal
                break
            method, args = item
            try:
                getattr(self.inner, method)(*args)
            except Exception as e:
                logger.error(f"Notifier {method} failed: {e}")

    def _put(self, method: str, *args) -> None:
        with self._lock:
            if self._closed:
                logger.warning(f"Notifier closed, dropping {method}")
                return
            try:
                self.queue.put_nowait((method, args))
            except queue.Full:
                self.dropped += 1
                logger.warning(f"Notification queue full, dropped {method}")

    def on_match_event(self, event: MatchEvent) -> None:
        self._put("on_match_event", event)

    def on_error(self, kind: ErrorKind, message: str) -> None:
        self._put("on_error", kind, message)

    def close(self, timeout: float = 5.0) -> None:
        """Deliver what is queued, then stop the worker. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True

        try:
            self.queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning(f"Notifier still busy after {timeout}s, abandoning queued notifications")
            return
        self.worker.join(timeout)
