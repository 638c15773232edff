"""
Match decision policy: similarity score -> matched / not matched.

A frame counts as the reference object when its similarity is strictly
greater than the threshold. A score exactly equal to the threshold is
not a match.
"""

import logging
import threading

from .config import DEFAULT_THRESHOLD
from .events import MatchEvent

logger = logging.getLogger(__name__)


class MatchPolicy:
    """Thresholds similarity scores and keeps the running match count."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD):
        threshold = float(threshold)
        if not -1.0 <= threshold <= 1.0:
            raise ValueError(f"Threshold must be within [-1, 1], got {threshold}")
        self.threshold = threshold
        self._count = 0
        self._lock = threading.Lock()

    @property
    def count(self) -> int:
        return self._count

    def decide(self, score: float) -> bool:
        return score > self.threshold

    def apply(self, score: float) -> MatchEvent:
        """
        Decide on a score and update the running count.

        Args:
            score: Cosine similarity of probe vs. reference.

        Returns:
            MatchEvent carrying the score, the decision and the count
            after this decision.
        """
        matched = self.decide(score)
        with self._lock:
            if matched:
                self._count += 1
            count = self._count

        if matched:
            logger.info(f"Match (similarity {score:.3f} > {self.threshold}), count={count}")
        else:
            logger.debug(f"No match (similarity {score:.3f} <= {self.threshold})")

        return MatchEvent(score=float(score), matched=matched, running_count=count)

    def reset(self) -> None:
        with self._lock:
            self._count = 0
