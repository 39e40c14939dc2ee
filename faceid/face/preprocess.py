from __future__ import annotations

from pathlib import Path
from typing import Union

import cv2
import numpy as np

from faceid.errors import PreprocessError

# Maps byte samples 0..255 onto [-1, 1].
PIXEL_MEAN = 127.5
PIXEL_STD = 127.5


def load_image(path: Union[str, Path]) -> np.ndarray:
    """Decode an image file into an (H, W, 3) RGB uint8 array."""
    fp = Path(path)
    image = cv2.imread(str(fp), cv2.IMREAD_COLOR)
    if image is None:
        raise PreprocessError(f"Cannot read image: {fp}")
    return cv2.cvtColor(image, cv2.COLOR_BGR2RGB)


def _as_rgb(image) -> np.ndarray:
    if image is None:
        raise PreprocessError("Image is missing")
    try:
        arr = np.asarray(image)
    except Exception as e:
        raise PreprocessError(f"Image pixel data is unreadable: {e}", cause=e) from e

    if arr.dtype == object or not np.issubdtype(arr.dtype, np.number):
        raise PreprocessError(f"Image pixel data is not numeric (dtype={arr.dtype})")
    if arr.ndim != 3:
        raise PreprocessError(f"Expected an (H, W, C) image, got shape {arr.shape}")

    h, w, c = arr.shape
    if h == 0 or w == 0:
        raise PreprocessError(f"Image has zero size: {w}x{h}")
    if c not in (3, 4):
        raise PreprocessError(f"Expected RGB or RGBA samples, got {c} channels")

    # RGBA: alpha does not participate
    rgb = arr[:, :, :3]
    if rgb.dtype != np.uint8:
        rgb = rgb.astype(np.float32)
        if not np.all(np.isfinite(rgb)):
            raise PreprocessError("Image pixel data contains non-finite samples")
    return np.ascontiguousarray(rgb)


def preprocess(image, target_width: int, target_height: int) -> np.ndarray:
    """Resize an RGB(A) image and normalize it into a model input tensor.

    Args:
        image: (H, W, 3) RGB or (H, W, 4) RGBA array with byte-range samples.
        target_width: model input width in pixels.
        target_height: model input height in pixels.

    Returns:
        float32 tensor of shape (1, target_height, target_width, 3), values in
        [-1, 1], row-major with R, G, B interleaved per pixel.

    Raises:
        PreprocessError: empty, malformed or undecodable pixel data.
    """
    tw = int(target_width)
    th = int(target_height)
    if tw <= 0 or th <= 0:
        raise PreprocessError(f"Invalid target size: {tw}x{th}")

    rgb = _as_rgb(image)
    h, w = rgb.shape[:2]

    # INTER_AREA for shrinking avoids aliasing; INTER_LINEAR when enlarging.
    interpolation = cv2.INTER_AREA if (tw < w and th < h) else cv2.INTER_LINEAR
    if (w, h) == (tw, th):
        resized = rgb
    else:
        try:
            resized = cv2.resize(rgb, (tw, th), interpolation=interpolation)
        except cv2.error as e:
            raise PreprocessError(f"Resize {w}x{h} -> {tw}x{th} failed: {e}", cause=e) from e

    tensor = (resized.astype(np.float32) - PIXEL_MEAN) / PIXEL_STD
    # Float inputs outside 0..255 would leave [-1, 1].
    np.clip(tensor, -1.0, 1.0, out=tensor)
    return np.ascontiguousarray(tensor.reshape(1, th, tw, 3))
