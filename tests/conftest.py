"""Shared test fixtures for object matcher tests."""

import threading
import time

import numpy as np
import cv2
import pytest

from object_matcher.backends import InferenceBackend
from object_matcher.decision import MatchPolicy
from object_matcher.events import Notifier
from object_matcher.extractor import FeatureExtractor
from object_matcher.session import MatchingSession
from object_matcher.sources import ImageSource


class FakeBackend(InferenceBackend):
    """
    Scripted inference backend.

    Each infer() call returns the next item of `outputs` (the last one
    repeats). Exception instances in `outputs` are raised instead.
    """

    def __init__(self, outputs=None, output_length=3, input_size=(8, 8),
                 latency=0.0, ready=True):
        self.outputs = list(outputs or [])
        self.output_length = output_length
        self.input_size = input_size
        self.latency = latency
        self.ready = ready
        self.closed = False
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self.tensors = []
        self._lock = threading.Lock()

    def is_ready(self):
        return self.ready and not self.closed

    def infer(self, tensor):
        with self._lock:
            index = self.calls
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.tensors.append(tensor)
        try:
            if self.latency:
                time.sleep(self.latency)
            if not self.outputs:
                return np.ones(self.output_length, dtype=np.float32)
            item = self.outputs[min(index, len(self.outputs) - 1)]
            if isinstance(item, Exception):
                raise item
            return np.asarray(item, dtype=np.float32)
        finally:
            with self._lock:
                self.active -= 1

    def close(self):
        self.closed = True


class ScriptedSource(ImageSource):
    """
    Image source with controllable latency, failures and a blocking gate.

    errors maps a 0-based capture index to the exception to raise.
    If gate is given, every capture blocks until the gate is set.
    """

    def __init__(self, image, latency=0.0, errors=None, gate=None):
        self.image = image
        self.latency = latency
        self.errors = dict(errors or {})
        self.gate = gate
        self.entered = threading.Event()
        self.closed = False
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def capture(self):
        with self._lock:
            index = self.calls
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.entered.set()
        try:
            if self.gate is not None:
                self.gate.wait(5.0)
            if self.latency:
                time.sleep(self.latency)
            if index in self.errors:
                raise self.errors[index]
            return self.image.copy()
        finally:
            with self._lock:
                self.active -= 1

    def close(self):
        self.closed = True


class RecordingNotifier(Notifier):
    """Collects notifications and lets tests wait for them."""

    def __init__(self):
        self.events = []
        self.errors = []
        self.event_times = []
        self.error_times = []
        self._cond = threading.Condition()

    def on_match_event(self, event):
        with self._cond:
            self.events.append(event)
            self.event_times.append(time.monotonic())
            self._cond.notify_all()

    def on_error(self, kind, message):
        with self._cond:
            self.errors.append((kind, message))
            self.error_times.append(time.monotonic())
            self._cond.notify_all()

    def wait_for(self, predicate, timeout=5.0):
        with self._cond:
            return self._cond.wait_for(predicate, timeout)


def wait_until(predicate, timeout=5.0, interval=0.005):
    """Poll until predicate() is true. Returns the final predicate value."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


@pytest.fixture
def small_image():
    """Generate a 16x16 mid-gray RGB image."""
    return np.full((16, 16, 3), 128, dtype=np.uint8)


@pytest.fixture
def red_square_image():
    """Generate a 200x200 red square on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    img[40:160, 40:160] = [200, 30, 30]  # Red square
    return img


@pytest.fixture
def blue_circle_image():
    """Generate a 200x200 blue circle on white background."""
    img = np.ones((200, 200, 3), dtype=np.uint8) * 255
    cv2.circle(img, (100, 100), 60, (30, 30, 200), -1)
    return img


@pytest.fixture
def noise_image():
    """Generate a 200x200 random noise image."""
    rng = np.random.RandomState(42)
    return rng.randint(0, 255, (200, 200, 3), dtype=np.uint8)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_session(small_image, notifier):
    """
    Factory for sessions wired to a FakeBackend and a ScriptedSource.

    Every session built here is closed at teardown.
    """
    sessions = []

    def _make(outputs=None, backend=None, source=None, threshold=0.6,
              cycle_delay=0.05, **kwargs):
        backend = backend or FakeBackend(outputs)
        source = source or ScriptedSource(small_image)
        session = MatchingSession(
            FeatureExtractor(backend),
            source,
            notifier=notifier,
            policy=MatchPolicy(threshold),
            cycle_delay=cycle_delay,
            **kwargs,
        )
        sessions.append(session)
        return session, backend, source

    yield _make

    for session in sessions:
        session.close(timeout=2.0)
