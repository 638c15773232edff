"""
Image sources.

Everything the session needs from a camera or a file is capture() and
close(). Reference photos and continuous probe frames go through the
same interface; only the provenance differs.

All sources hand out RGB uint8 arrays (OpenCV reads BGR, so frames are
converted on the way out).
"""

import logging
import os
import threading
from typing import Iterable, Optional

import cv2
import numpy as np

from .errors import CaptureError

logger = logging.getLogger(__name__)


class ImageSource:
    """Interface for anything that can produce an image on demand."""

    def capture(self) -> np.ndarray:
        raise NotImplementedError

    def close(self) -> None:
        pass


class FileImageSource(ImageSource):
    """Reads the same image file on every capture."""

    def __init__(self, path: str):
        self.path = path

    def capture(self) -> np.ndarray:
        if not os.path.exists(self.path):
            raise CaptureError(f"Image file not found: {self.path}")

        image = cv2.imread(self.path)
        if image is None:
            raise CaptureError(f"Could not read: {self.path}")

        return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


class StaticImageSource(ImageSource):
    """Cycles over a fixed list of in-memory frames."""

    def __init__(self, images: Iterable[np.ndarray]):
        self.images = [np.asarray(img) for img in images]
        if not self.images:
            raise ValueError("StaticImageSource needs at least one image")
        self._position = 0
        self._lock = threading.Lock()

    def capture(self) -> np.ndarray:
        with self._lock:
            image = self.images[self._position % len(self.images)]
            self._position += 1
        return image.copy()


class CameraImageSource(ImageSource):
    """
    OpenCV camera wrapper.

    The device is opened on first capture and re-opened if it was
    released in between (e.g. the host app went to the background).
    Only one capture runs at a time; a second caller gets a
    CaptureError instead of waiting on the device.
    """

    def __init__(self,
                 index: int = 0,
                 width: Optional[int] = None,
                 height: Optional[int] = None):
        self.index = index
        self.width = width
        self.height = height
        self._cap: Optional[cv2.VideoCapture] = None
        self._busy = threading.Lock()

    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def open(self) -> None:
        """Open the camera device if it is not open yet."""
        if self.is_open():
            return

        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise CaptureError(
                f"Camera {self.index} not opened. Try changing index (0/1/2)."
            )

        # Keep only the latest frame buffered
        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        if self.width:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        if self.height:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        self._cap = cap
        logger.info(f"Camera {self.index} initialized")

    def capture(self) -> np.ndarray:
        if not self._busy.acquire(blocking=False):
            raise CaptureError("Camera is currently busy")
        try:
            self.open()
            ok, frame = self._cap.read()
            if not ok or frame is None:
                raise CaptureError(f"Failed to read frame from camera {self.index}")
            return cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        finally:
            self._busy.release()

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info(f"Camera {self.index} released")
