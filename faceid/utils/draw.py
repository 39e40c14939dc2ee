from __future__ import annotations

from functools import lru_cache
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from faceid.config import FONT_LIST

MATCH_COLOR = (0, 200, 0)
UNKNOWN_COLOR = (0, 0, 255)
FAILURE_COLOR = (0, 165, 255)


@lru_cache(maxsize=64)
def _get_best_font(font_size: int) -> ImageFont.ImageFont:
    """Return the first loadable font in FONT_LIST (cached), or PIL's default."""
    for p in FONT_LIST:
        try:
            return ImageFont.truetype(p, int(font_size))
        except OSError:
            continue
    return ImageFont.load_default()


def measure_text(text: str, font_size: int = 14) -> Tuple[int, int]:
    font = _get_best_font(int(font_size))
    dummy = ImageDraw.Draw(Image.new("RGB", (10, 10)))
    bbox = dummy.textbbox((0, 0), str(text), font=font)
    return int(bbox[2] - bbox[0]), int(bbox[3] - bbox[1])


def draw_text(img: np.ndarray, text: str, org: Tuple[int, int], font_size: int = 14, color=(255, 255, 255)) -> None:
    """Draw unicode text (identities may be non-ASCII) onto a BGR image in place."""
    pil_img = Image.fromarray(cv2.cvtColor(img, cv2.COLOR_BGR2RGB))
    draw = ImageDraw.Draw(pil_img)
    # PIL uses RGB
    draw.text(tuple(org), str(text), font=_get_best_font(int(font_size)), fill=(color[2], color[1], color[0]))
    img[:] = cv2.cvtColor(np.array(pil_img), cv2.COLOR_RGB2BGR)


def draw_result(image: np.ndarray, result) -> np.ndarray:
    """Return a BGR copy of an RGB photo with the face region and identity drawn."""
    vis = cv2.cvtColor(np.ascontiguousarray(image[:, :, :3]), cv2.COLOR_RGB2BGR)
    region = getattr(result, "region", None)
    if region is None:
        return vis

    x1, y1, x2, y2 = region.bbox
    if result.matched:
        color = MATCH_COLOR
        label = f"{result.identity} ({result.distance:.3f})"
    elif result.failure is not None:
        color = FAILURE_COLOR
        label = f"? {result.failure.stage}"
    else:
        color = UNKNOWN_COLOR
        label = "unknown"

    cv2.rectangle(vis, (x1, y1), (x2, y2), color, 2)

    font_size = max(12, int(max(12, y2 - y1) * 0.12))
    text_w, text_h = measure_text(label, font_size)
    pad = max(4, int(font_size * 0.25))
    bg_y1 = max(0, y1 - text_h - pad * 2)
    cv2.rectangle(vis, (x1, bg_y1), (x1 + text_w + pad * 2, y1), color, -1)
    draw_text(vis, label, (x1 + pad, bg_y1 + pad), font_size=font_size, color=(255, 255, 255))
    return vis
