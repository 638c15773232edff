"""
Exception taxonomy for the matching engine.

Two families:
    - Contract errors (NotReady, DimensionMismatch, AlreadyRunning,
      ReferenceExtractionFailed) fail the calling operation immediately.
    - CycleError subclasses are transient. The session loop catches them,
      reports them through the notifier and keeps running.
"""


class MatcherError(Exception):
    """Base class for all object_matcher errors."""


class NotReady(MatcherError):
    """Backend, camera or session is not initialized (retry after init)."""


class DimensionMismatch(MatcherError):
    """Two embeddings (or an embedding and its configured length) disagree."""

    def __init__(self, expected: int, actual: int, message: str = None):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message or f"Embedding length {actual} doesn't match expected length {expected}"
        )


class AlreadyRunning(MatcherError):
    """start() was called on a session that is already running."""


class ReferenceExtractionFailed(MatcherError):
    """The reference image could not be captured or embedded."""


class CycleError(MatcherError):
    """Transient failure inside one capture/extract/score cycle."""


class CaptureError(CycleError):
    """The image source could not deliver a frame."""


class ExtractionError(CycleError):
    """The image could not be preprocessed or the backend failed."""


class CycleTimeout(CycleError):
    """A cycle took longer than its configured deadline."""
