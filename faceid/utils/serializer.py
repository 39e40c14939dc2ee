from typing import Dict, Optional, Tuple

import numpy as np


def _json_identity(identity):
    if identity is None or isinstance(identity, (str, int, float, bool)):
        return identity
    if isinstance(identity, np.generic):
        return identity.item()
    return str(identity)


def serialize_result(result, image_shape: Optional[Tuple[int, int]] = None) -> Dict:
    """Serialize a RecognitionResult into a JSON-safe dict.

    image_shape: (h, w) of the photo the region was found in; adds normalized coords.
    """
    out: Dict = {
        "identity": _json_identity(result.identity),
        "matched": bool(result.matched),
        "distance": float(result.distance) if result.distance is not None else None,
        "failure": None,
        "bbox": None,
    }

    failure = getattr(result, "failure", None)
    if failure is not None:
        out["failure"] = {"stage": str(failure.stage), "reason": str(failure.reason)}

    region = getattr(result, "region", None)
    if region is not None:
        x1, y1, x2, y2 = [int(x) for x in region.bbox]
        out["bbox"] = [x1, y1, x2, y2]
        out["det_score"] = float(region.score)
        if image_shape is not None:
            try:
                h, w = image_shape[0], image_shape[1]
                out["bbox_norm"] = [round(x1 / w, 4), round(y1 / h, 4), round(x2 / w, 4), round(y2 / h, 4)]
            except ZeroDivisionError:
                out["bbox_norm"] = None

    return out
