"""
Matching session: reference embedding + continuous capture/compare loop.

State machine:

    IDLE --set_reference--> ARMED --start--> RUNNING
    RUNNING --stop (cycle in flight)--> STOPPING --cycle done--> ARMED
    RUNNING --stop (idle) or fatal error--> ARMED

The loop is a chain of threading.Timer ticks, not a blocking while
loop. Each tick runs one cycle (capture -> extract -> score -> decide)
and, if the session is still running, schedules the next tick after
cycle_delay. State, busy flag, generation and pending timer form one
critical section under a single lock; stop() only flips state and
cancels the timer, so it never blocks on an in-flight cycle.

Per-cycle failures are reported through the notifier and the loop
keeps going. Only stop(), close() or a DimensionMismatch ends a run.
"""

import enum
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from .backends import InferenceBackend, create_backend
from .config import DEFAULT_CYCLE_DELAY, MatcherConfig
from .decision import MatchPolicy
from .errors import (
    AlreadyRunning, CaptureError, CycleTimeout, DimensionMismatch,
    ExtractionError, NotReady, ReferenceExtractionFailed,
)
from .events import CycleFailure, ErrorKind, LoggingNotifier, MatchEvent, Notifier
from .extractor import FeatureExtractor
from .scoring import cosine_similarity
from .sources import ImageSource

logger = logging.getLogger(__name__)

# How long close() waits for an in-flight cycle before releasing resources
TEARDOWN_TIMEOUT = 10.0


class SessionState(enum.Enum):
    IDLE = "idle"
    ARMED = "armed"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass
class SessionStats:
    cycles_started: int = 0
    cycles_completed: int = 0
    cycles_skipped: int = 0
    cycle_errors: int = 0
    matches: int = 0
    last_failure: Optional[CycleFailure] = None


def _failure_kind(exc: Exception) -> ErrorKind:
    if isinstance(exc, CycleTimeout):
        return ErrorKind.TIMEOUT
    if isinstance(exc, CaptureError):
        return ErrorKind.CAPTURE
    if isinstance(exc, NotReady):
        return ErrorKind.NOT_READY
    return ErrorKind.EXTRACTION


class MatchingSession:
    """
    Owns the reference embedding and drives the matching loop.

    The session exclusively owns its image source(s) and the extractor's
    backend; close() releases all of them.
    """

    def __init__(self,
                 extractor: FeatureExtractor,
                 source: ImageSource,
                 notifier: Optional[Notifier] = None,
                 policy: Optional[MatchPolicy] = None,
                 cycle_delay: float = DEFAULT_CYCLE_DELAY,
                 settle_delay: float = 0.0,
                 cycle_timeout: Optional[float] = None,
                 reference_source: Optional[ImageSource] = None):
        """
        Args:
            extractor: Feature extractor wrapping a loaded backend.
            source: Probe frame source for the continuous loop.
            notifier: Receiver of match events and errors.
            policy: Decision policy (default threshold from config).
            cycle_delay: Seconds between the end of one cycle and the
                start of the next.
            settle_delay: Seconds to wait before each capture.
            cycle_timeout: Optional per-cycle deadline in seconds. A cycle
                that overruns is reported as a TIMEOUT failure and its
                result discarded.
            reference_source: Source used by set_reference() when no
                image is passed.
        """
        self.extractor = extractor
        self.source = source
        self.notifier = notifier or LoggingNotifier()
        self.policy = policy or MatchPolicy()
        self.cycle_delay = float(cycle_delay)
        self.settle_delay = float(settle_delay)
        self.cycle_timeout = cycle_timeout
        self.reference_source = reference_source

        self._lock = threading.Lock()
        self._state = SessionState.IDLE
        self._busy = False
        self._idle = threading.Event()
        self._idle.set()
        self._worker: Optional[threading.Thread] = None
        self._generation = 0
        self._timer: Optional[threading.Timer] = None
        self._reference: Optional[np.ndarray] = None
        self._stats = SessionStats()
        self._closed = False

    @classmethod
    def from_config(cls,
                    config: MatcherConfig,
                    source: ImageSource,
                    notifier: Optional[Notifier] = None,
                    reference_source: Optional[ImageSource] = None,
                    backend: Optional[InferenceBackend] = None) -> "MatchingSession":
        """Build a session (and its backend, unless given) from a config."""
        backend = backend or create_backend(config)
        return cls(
            FeatureExtractor(backend, config.output_length),
            source,
            notifier=notifier,
            policy=MatchPolicy(config.threshold),
            cycle_delay=config.cycle_delay,
            settle_delay=config.settle_delay,
            cycle_timeout=config.cycle_timeout,
            reference_source=reference_source,
        )

    # ── Properties ──────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def count(self) -> int:
        return self.policy.count

    @property
    def reference(self) -> Optional[np.ndarray]:
        return self._reference

    @property
    def is_busy(self) -> bool:
        return self._busy

    @property
    def stats(self) -> SessionStats:
        with self._lock:
            return replace(self._stats)

    # ── Public API ──────────────────────────────────────────────────

    def set_reference(self, image: Optional[np.ndarray] = None) -> np.ndarray:
        """
        Embed and store the reference object.

        Args:
            image: Reference image. When omitted, one is captured from
                reference_source.

        Returns:
            The stored (read-only) reference embedding.

        Raises:
            NotReady: Session closed or extractor not ready.
            ReferenceExtractionFailed: Capture or extraction failed. The
                previous reference and the state are left unchanged.
            DimensionMismatch: Backend output length is misconfigured.
        """
        self._check_open()
        if not self.extractor.is_ready():
            self._notify_error(ErrorKind.NOT_READY, "Model not loaded yet")
            raise NotReady("Model not loaded yet")

        if image is None:
            if self.reference_source is None:
                message = "No reference image given and no reference source configured"
                self._notify_error(ErrorKind.REFERENCE_EXTRACTION_FAILED, message)
                raise ValueError(message)
            try:
                image = self.reference_source.capture()
            except Exception as e:
                self._notify_error(ErrorKind.REFERENCE_EXTRACTION_FAILED, f"Reference capture failed: {e}")
                raise ReferenceExtractionFailed(f"Reference capture failed: {e}") from e

        try:
            embedding = self.extractor.extract(image)
        except (ExtractionError, NotReady) as e:
            self._notify_error(ErrorKind.REFERENCE_EXTRACTION_FAILED, f"Reference extraction failed: {e}")
            raise ReferenceExtractionFailed(f"Reference extraction failed: {e}") from e
        except DimensionMismatch as e:
            self._notify_error(ErrorKind.DIMENSION_MISMATCH, str(e))
            raise

        with self._lock:
            self._check_open_locked()
            self._reference = embedding
            if self._state == SessionState.IDLE:
                self._state = SessionState.ARMED
            state = self._state

        logger.info(f"Reference object saved ({embedding.shape[0]}d), state={state.value}")
        return embedding

    def start(self) -> None:
        """
        Begin continuous matching.

        Raises:
            NotReady: No reference set, or session closed.
            AlreadyRunning: The loop is already running.
        """
        with self._lock:
            self._check_open_locked()
            if self._state == SessionState.RUNNING:
                raise AlreadyRunning("Matching is already running")
            missing_reference = self._reference is None
            if not missing_reference:
                self._state = SessionState.RUNNING
                self._generation += 1
                self._schedule_locked(0.0, self._generation)
                generation = self._generation

        if missing_reference:
            self._notify_error(ErrorKind.NOT_READY, "Take a reference photo first.")
            raise NotReady("Take a reference photo first.")

        logger.info(f"Matching started (run {generation}, delay {self.cycle_delay}s)")

    def stop(self) -> None:
        """
        Request the loop to stop. Never blocks.

        An in-flight cycle finishes (and may still emit its event); no new
        cycle starts afterwards.
        """
        with self._lock:
            if self._state != SessionState.RUNNING:
                return
            self._cancel_timer_locked()
            if self._busy:
                self._state = SessionState.STOPPING
            else:
                self._state = SessionState.ARMED
            state = self._state

        logger.info(f"Matching stop requested, state={state.value}")

    def reset(self) -> None:
        """Zero the running count and statistics. The reference is kept."""
        with self._lock:
            self.policy.reset()
            self._stats = SessionStats()
        logger.info("Match count reset")

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no cycle is in flight. Returns False on timeout."""
        return self._idle.wait(timeout)

    def close(self, timeout: float = TEARDOWN_TIMEOUT) -> None:
        """
        Stop matching and release the backend, sources and notifier.

        Safe to call from any state and more than once.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._cancel_timer_locked()
            self._state = SessionState.IDLE
            # Called from a notifier inside the cycle: waiting would wait on ourselves
            in_cycle = self._worker is threading.current_thread()

        if in_cycle:
            logger.info("Session closed from inside a cycle, not waiting for it")
        elif not self._idle.wait(timeout):
            logger.warning(f"Cycle still in flight after {timeout}s, releasing resources anyway")

        sources = [self.source]
        if self.reference_source is not None and self.reference_source is not self.source:
            sources.append(self.reference_source)
        for source in sources:
            try:
                source.close()
            except Exception as e:
                logger.error(f"Failed to close image source: {e}")

        try:
            self.extractor.close()
        except Exception as e:
            logger.error(f"Failed to close inference backend: {e}")

        close_notifier = getattr(self.notifier, "close", None)
        if callable(close_notifier):
            close_notifier()

        logger.info("Matching session closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ── Loop ────────────────────────────────────────────────────────

    def _schedule_locked(self, delay: float, generation: int) -> None:
        timer = threading.Timer(delay, self._tick, args=(generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _cancel_timer_locked(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._state != SessionState.RUNNING or self._closed:
                return
            self._timer = None
            if self._busy:
                # Previous cycle still in flight: skip, never queue
                self._stats.cycles_skipped += 1
                self._schedule_locked(self.cycle_delay, generation)
                skipped = True
            else:
                self._busy = True
                self._idle.clear()
                self._worker = threading.current_thread()
                self._stats.cycles_started += 1
                reference = self._reference
                skipped = False

        if skipped:
            logger.warning("Previous cycle still in flight, skipping tick")
            return

        fatal = False
        try:
            fatal = self._run_cycle(reference)
        finally:
            with self._lock:
                self._busy = False
                self._idle.set()
                self._worker = None
                if fatal and generation == self._generation and self._state == SessionState.RUNNING:
                    self._state = SessionState.ARMED
                    logger.error("Matching stopped after fatal error")
                elif self._state == SessionState.STOPPING:
                    self._state = SessionState.ARMED
                    logger.info("In-flight cycle finished, matching stopped")
                elif (self._state == SessionState.RUNNING
                      and generation == self._generation
                      and not self._closed):
                    self._schedule_locked(self.cycle_delay, generation)

    def _run_cycle(self, reference: np.ndarray) -> bool:
        """
        Run one capture -> extract -> score -> decide cycle.

        Returns:
            True if the failure was fatal to the session.
        """
        if self.settle_delay > 0:
            time.sleep(self.settle_delay)

        started = time.monotonic()
        try:
            image = self.source.capture()
            probe = self.extractor.extract(image)
            score = cosine_similarity(reference, probe)

            elapsed = time.monotonic() - started
            if self.cycle_timeout is not None and elapsed > self.cycle_timeout:
                raise CycleTimeout(
                    f"Cycle took {elapsed:.2f}s, deadline is {self.cycle_timeout:.2f}s"
                )

        except DimensionMismatch as e:
            logger.error(f"Probe embedding incompatible with reference: {e}")
            self._record_failure(ErrorKind.DIMENSION_MISMATCH, str(e))
            return True

        except Exception as e:
            kind = _failure_kind(e)
            if kind == ErrorKind.EXTRACTION and not isinstance(e, ExtractionError):
                logger.exception("Unexpected error during cycle")
            else:
                logger.warning(f"Cycle failed ({kind.value}): {e}")
            self._record_failure(kind, f"Cycle failed: {e}")
            return False

        event = self.policy.apply(score)
        with self._lock:
            self._stats.cycles_completed += 1
            if event.matched:
                self._stats.matches += 1

        logger.debug(f"Similarity: {score:.4f}")
        self._notify_match(event)
        return False

    # ── Notification helpers ────────────────────────────────────────

    def _record_failure(self, kind: ErrorKind, message: str) -> None:
        failure = CycleFailure(kind=kind, message=message)
        with self._lock:
            self._stats.cycle_errors += 1
            self._stats.last_failure = failure
        self._notify_error(kind, message)

    def _notify_match(self, event: MatchEvent) -> None:
        try:
            self.notifier.on_match_event(event)
        except Exception as e:
            logger.error(f"Notifier on_match_event failed: {e}")

    def _notify_error(self, kind: ErrorKind, message: str) -> None:
        try:
            self.notifier.on_error(kind, message)
        except Exception as e:
            logger.error(f"Notifier on_error failed: {e}")

    def _check_open(self) -> None:
        with self._lock:
            self._check_open_locked()

    def _check_open_locked(self) -> None:
        if self._closed:
            raise NotReady("Matching session is closed")
