"""
Runtime configuration for the matching engine.

Defaults are read from environment variables at import time so a
deployment can be tuned without code changes. Every value can still be
overridden explicitly through MatcherConfig.with_overrides().
"""

import os
from dataclasses import dataclass, replace
from typing import Optional, Tuple

# Model asset and geometry. MobileNet-v2 classification head by default:
# 224x224x3 input, 1000 logits out.
DEFAULT_MODEL_PATH = os.environ.get("MATCH_MODEL_PATH", "assets/MobileNet-v2.onnx")
DEFAULT_INPUT_WIDTH = int(os.environ.get("MATCH_INPUT_WIDTH", "224"))
DEFAULT_INPUT_HEIGHT = int(os.environ.get("MATCH_INPUT_HEIGHT", "224"))
DEFAULT_OUTPUT_LENGTH = int(os.environ.get("MATCH_OUTPUT_LENGTH", "1000"))

# Decision threshold on cosine similarity. Strictly greater counts as a match.
DEFAULT_THRESHOLD = float(os.environ.get("MATCH_THRESHOLD", "0.60"))

# Loop timing, in seconds
DEFAULT_CYCLE_DELAY = float(os.environ.get("MATCH_CYCLE_DELAY", "2.0"))
DEFAULT_SETTLE_DELAY = float(os.environ.get("MATCH_SETTLE_DELAY", "0.3"))
_timeout = os.environ.get("MATCH_CYCLE_TIMEOUT", "")
DEFAULT_CYCLE_TIMEOUT = float(_timeout) if _timeout else None

DEFAULT_CAMERA_INDEX = int(os.environ.get("MATCH_CAMERA_INDEX", "0"))
DEFAULT_LOG_LEVEL = os.environ.get("MATCH_LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class MatcherConfig:
    model_path: str = DEFAULT_MODEL_PATH
    input_width: int = DEFAULT_INPUT_WIDTH
    input_height: int = DEFAULT_INPUT_HEIGHT
    output_length: int = DEFAULT_OUTPUT_LENGTH
    threshold: float = DEFAULT_THRESHOLD
    cycle_delay: float = DEFAULT_CYCLE_DELAY
    settle_delay: float = DEFAULT_SETTLE_DELAY
    cycle_timeout: Optional[float] = DEFAULT_CYCLE_TIMEOUT
    camera_index: int = DEFAULT_CAMERA_INDEX

    @property
    def input_size(self) -> Tuple[int, int]:
        """(width, height) as OpenCV expects it."""
        return self.input_width, self.input_height

    @classmethod
    def from_env(cls) -> "MatcherConfig":
        """Build a config from the environment as it is now, not at import."""
        timeout = os.environ.get("MATCH_CYCLE_TIMEOUT", "")
        return cls(
            model_path=os.environ.get("MATCH_MODEL_PATH", DEFAULT_MODEL_PATH),
            input_width=int(os.environ.get("MATCH_INPUT_WIDTH", DEFAULT_INPUT_WIDTH)),
            input_height=int(os.environ.get("MATCH_INPUT_HEIGHT", DEFAULT_INPUT_HEIGHT)),
            output_length=int(os.environ.get("MATCH_OUTPUT_LENGTH", DEFAULT_OUTPUT_LENGTH)),
            threshold=float(os.environ.get("MATCH_THRESHOLD", DEFAULT_THRESHOLD)),
            cycle_delay=float(os.environ.get("MATCH_CYCLE_DELAY", DEFAULT_CYCLE_DELAY)),
            settle_delay=float(os.environ.get("MATCH_SETTLE_DELAY", DEFAULT_SETTLE_DELAY)),
            cycle_timeout=float(timeout) if timeout else None,
            camera_index=int(os.environ.get("MATCH_CAMERA_INDEX", DEFAULT_CAMERA_INDEX)),
        )

    def with_overrides(self, **overrides) -> "MatcherConfig":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes)
