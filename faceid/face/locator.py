from __future__ import annotations

import io

from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass
from typing import List, Protocol, Tuple

import cv2
import numpy as np

from faceid.config import DEFAULT_DET_SIZE
from faceid.face.engine import resolve_device
from faceid.utils.log import get_logger, suppress_fds

logger = get_logger(__name__)


@dataclass(frozen=True)
class FaceRegion:
    x1: float
    y1: float
    x2: float
    y2: float
    score: float = 1.0

    @property
    def bbox(self) -> Tuple[int, int, int, int]:
        return int(self.x1), int(self.y1), int(self.x2), int(self.y2)


class FaceLocator(Protocol):
    def locate(self, image: np.ndarray) -> List[FaceRegion]: ...


def clamp_region(region: FaceRegion, width: int, height: int) -> FaceRegion:
    """Clip region coordinates into [0, dimension - 1]."""
    max_x = max(0, int(width) - 1)
    max_y = max(0, int(height) - 1)

    def _clip(v: float, hi: int) -> int:
        return int(min(max(float(v), 0.0), float(hi)))

    return FaceRegion(
        x1=_clip(region.x1, max_x),
        y1=_clip(region.y1, max_y),
        x2=_clip(region.x2, max_x),
        y2=_clip(region.y2, max_y),
        score=region.score,
    )


def crop_region(image: np.ndarray, region: FaceRegion) -> np.ndarray:
    """Crop `image` to the clamped region. May return an empty array for degenerate boxes."""
    h, w = image.shape[:2]
    x1, y1, x2, y2 = clamp_region(region, w, h).bbox
    return image[y1:max(y1, y2), x1:max(x1, x2)]


class InsightFaceLocator:
    """Face locator backed by InsightFace's detection model.

    Only the detection module is loaded; embeddings come from the recognizer's
    own engine. Regions are returned best score first.
    """

    def __init__(self, model_name: str = "buffalo_l", det_size: int = DEFAULT_DET_SIZE, device: str = "auto"):
        # Lazy import: insightface is an optional extra.
        from insightface.app import FaceAnalysis

        dev = resolve_device(device)
        if dev.startswith("cuda"):
            providers = ["CUDAExecutionProvider"]
            ctx_id = 0
        else:
            providers = ["CPUExecutionProvider"]
            ctx_id = -1

        with suppress_fds():
            self._app = FaceAnalysis(name=model_name, providers=providers, allowed_modules=["detection"])
        buf = io.StringIO()
        with redirect_stdout(buf), redirect_stderr(buf):
            self._app.prepare(ctx_id=ctx_id, det_size=(int(det_size), int(det_size)))
        logger.info(f"Loaded InsightFace detector: {model_name} (det_size={det_size}, providers={providers})")

    def locate(self, image: np.ndarray) -> List[FaceRegion]:
        # InsightFace works on BGR
        bgr = cv2.cvtColor(np.ascontiguousarray(image[:, :, :3]), cv2.COLOR_RGB2BGR)
        faces = self._app.get(bgr) or []
        regions = [
            FaceRegion(
                x1=float(f.bbox[0]),
                y1=float(f.bbox[1]),
                x2=float(f.bbox[2]),
                y2=float(f.bbox[3]),
                score=float(getattr(f, "det_score", 1.0)),
            )
            for f in faces
        ]
        regions.sort(key=lambda r: -r.score)
        return regions
