"""
Image preprocessing for embedding extraction.

Converts whatever the image source hands over (uint8 or float, gray,
RGB or RGBA) into the tensor layout the classification model expects:
a float32 batch of one (1, H, W, 3) with channel values scaled from
[0, 255] to [-1, 1] via (v - 127.5) / 127.5.

None of these functions modify their input array.
"""

import logging
from typing import Tuple

import cv2
import numpy as np

logger = logging.getLogger(__name__)

PIXEL_CENTER = 127.5


def normalize_image(image_np: np.ndarray) -> np.ndarray:
    """
    Ensure image is a uint8 RGB array of shape (H, W, 3).

    Float images in [0, 1] are scaled to [0, 255]. Grayscale images are
    stacked to three channels and RGBA images lose their alpha channel.

    Args:
        image_np: Decoded image array.

    Returns:
        New uint8 RGB array. The input is never returned as-is.

    Raises:
        ValueError: If the array is empty or not an image shape.
    """
    image_np = np.asarray(image_np)
    if image_np.size == 0:
        raise ValueError("Image is empty")

    if image_np.dtype != np.uint8:
        if image_np.max() <= 1.0:
            image_np = (image_np * 255).round()
        image_np = np.clip(image_np, 0, 255).astype(np.uint8)
    else:
        image_np = image_np.copy()

    if image_np.ndim == 2:
        return np.stack([image_np] * 3, axis=-1)

    if image_np.ndim != 3:
        raise ValueError(f"Expected a 2-D or 3-D image, got shape {image_np.shape}")

    channels = image_np.shape[2]
    if channels == 1:
        return np.repeat(image_np, 3, axis=2)
    if channels == 4:
        return np.ascontiguousarray(image_np[:, :, :3])
    if channels != 3:
        raise ValueError(f"Unsupported channel count: {channels}")
    return image_np


def resize_to_input(image_np: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """
    Resize an image to the model input resolution.

    Args:
        image_np: RGB uint8 image.
        size: Target (width, height).

    Returns:
        Resized copy of the image.
    """
    width, height = size
    h, w = image_np.shape[:2]
    if (w, h) == (width, height):
        return image_np.copy()

    # Area interpolation for shrinking, bilinear for enlarging
    shrinking = w * h > width * height
    interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_LINEAR
    return cv2.resize(image_np, (width, height), interpolation=interpolation)


def to_input_tensor(image_np: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    """
    Build the model input tensor for one image.

    Process:
        1. Normalize to uint8 RGB
        2. Resize to the model input resolution
        3. Scale each channel value from [0, 255] to [-1, 1]
        4. Add the batch axis

    Args:
        image_np: Decoded image array.
        size: Model input (width, height).

    Returns:
        Float32 tensor of shape (1, height, width, 3).
    """
    rgb = normalize_image(image_np)
    resized = resize_to_input(rgb, size)
    tensor = (resized.astype(np.float32) - PIXEL_CENTER) / PIXEL_CENTER
    return tensor[np.newaxis, ...]


def decode_image(data: bytes) -> np.ndarray:
    """
    Decode encoded image bytes (JPEG, PNG, ...) into an RGB uint8 array.

    Raises:
        ValueError: If the bytes are not a decodable image.
    """
    buffer = np.frombuffer(data, dtype=np.uint8)
    if buffer.size == 0:
        raise ValueError("No image data")

    decoded = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if decoded is None:
        raise ValueError("Could not decode image data")

    return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)
