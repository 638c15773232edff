"""
Inference backends.

A backend turns a normalized input tensor into a fixed-length output
vector. The matching engine only relies on the InferenceBackend
interface, so a model runtime can be swapped without touching the
extractor or the session loop.

The shipped implementation runs an ONNX export of an image
classification network (MobileNet-v2 by default) with onnxruntime.
"""

import logging
import os
import threading
from typing import List, Optional, Tuple

import numpy as np
import onnxruntime as ort

from .config import MatcherConfig
from .errors import NotReady

logger = logging.getLogger(__name__)


class InferenceBackend:
    """
    Interface for model runtimes.

    Implementations must report readiness, run a single (1, H, W, 3)
    float32 tensor through the model and release their resources on
    close(). close() must be idempotent.
    """

    input_size: Tuple[int, int] = (224, 224)
    output_length: int = 1000

    def is_ready(self) -> bool:
        raise NotImplementedError

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class OnnxBackend(InferenceBackend):
    """
    onnxruntime-backed classification model.

    The session is created by load(), not by the constructor, so the
    caller decides when the (slow) model load happens and can surface
    its failure separately.
    """

    def __init__(self,
                 model_path: str,
                 input_size: Tuple[int, int] = (224, 224),
                 output_length: int = 1000,
                 providers: Optional[List[str]] = None):
        """
        Args:
            model_path: Path to the .onnx model asset.
            input_size: Model input (width, height).
            output_length: Length of the model's output vector.
            providers: onnxruntime execution providers (CPU by default).
        """
        self.model_path = model_path
        self.input_size = tuple(input_size)
        self.output_length = int(output_length)
        self.providers = providers or ["CPUExecutionProvider"]

        self._session: Optional[ort.InferenceSession] = None
        self._input_name: Optional[str] = None
        self._output_name: Optional[str] = None
        self._channels_first = False
        self._lock = threading.Lock()

    def load(self) -> "OnnxBackend":
        """Create the inference session. Safe to call more than once."""
        with self._lock:
            if self._session is not None:
                return self

            if not os.path.exists(self.model_path):
                raise NotReady(f"Model asset not found: {self.model_path}")

            sess_options = ort.SessionOptions()
            sess_options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_EXTENDED
            sess_options.inter_op_num_threads = 1

            try:
                session = ort.InferenceSession(
                    self.model_path, sess_options, providers=self.providers
                )
            except Exception as e:
                raise NotReady(f"Could not load model {self.model_path}: {e}") from e
            model_input = session.get_inputs()[0]
            self._input_name = model_input.name
            self._output_name = session.get_outputs()[0].name

            # Exported PyTorch models are NCHW, TFLite conversions are NHWC
            shape = model_input.shape
            self._channels_first = len(shape) == 4 and shape[1] == 3
            self._session = session

        logger.info(
            f"Loaded ONNX model {self.model_path} "
            f"(input={self._input_name}, "
            f"layout={'NCHW' if self._channels_first else 'NHWC'})"
        )
        return self

    def is_ready(self) -> bool:
        return self._session is not None

    def infer(self, tensor: np.ndarray) -> np.ndarray:
        session = self._session
        if session is None:
            raise NotReady("ONNX session not loaded")

        feed = tensor.astype(np.float32, copy=False)
        if self._channels_first:
            feed = np.transpose(feed, (0, 3, 1, 2))

        outputs = session.run([self._output_name], {self._input_name: feed})
        return np.asarray(outputs[0]).reshape(-1)

    def close(self) -> None:
        with self._lock:
            if self._session is None:
                return
            self._session = None
        logger.info(f"Released ONNX model {self.model_path}")


def create_backend(config: MatcherConfig, load: bool = True) -> InferenceBackend:
    """
    Build the backend described by a MatcherConfig.

    Args:
        config: Matcher configuration (model asset, input size, output length).
        load: Load the model immediately.

    Returns:
        Configured backend, loaded unless load=False.
    """
    backend = OnnxBackend(
        model_path=config.model_path,
        input_size=config.input_size,
        output_length=config.output_length,
    )
    if load:
        backend.load()
    return backend
