from __future__ import annotations

import time

from pathlib import Path

import cv2
import numpy as np
import pytest

from faceid.face.gallery import RegisteredEntry
from faceid.face.locator import FaceRegion
from faceid.face.recognizer import FaceRecognizer


class _MeanColorEngine:
    """Embeds a face as its mean normalized (R, G, B): white -> [1, 1, 1], black -> [-1, -1, -1]."""

    def __init__(self, size: int = 112, delay: float = 0.0, fail: bool = False):
        self.input_shape = (1, size, size, 3)
        self.output_shape = (1, 3)
        self.delay = delay
        self.fail = fail
        self.calls = 0
        self.closed = False

    def run(self, tensor: np.ndarray) -> np.ndarray:
        self.calls += 1
        if self.delay:
            time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("inference backend crashed")
        return tensor.reshape(-1, 3).mean(axis=0).reshape(1, 3)

    def close(self) -> None:
        self.closed = True


class _FixedLocator:
    def __init__(self, regions):
        self.regions = list(regions)

    def locate(self, image):
        return list(self.regions)


class _BrokenLocator:
    def locate(self, image):
        raise RuntimeError("detector unavailable")


def _solid(h: int, w: int, rgb) -> np.ndarray:
    img = np.zeros((h, w, 3), dtype=np.uint8)
    img[:, :] = rgb
    return img


def _gallery():
    return [
        ("alice", "1,1,1"),
        ("bob", "-1,-1,-1"),
    ]


def _recognizer(engine=None, **kwargs) -> FaceRecognizer:
    return FaceRecognizer(engine=engine or _MeanColorEngine(), entries=_gallery(), **kwargs)


def test_recognize_registered_face():
    with _recognizer() as rec:
        result = rec.recognize(_solid(40, 30, (255, 255, 255)))

    assert result.matched
    assert result.identity == "alice"
    assert result.distance == pytest.approx(0.0, abs=1e-6)
    assert result.failure is None


def test_unregistered_face_is_no_match_without_failure():
    with _recognizer() as rec:
        result = rec.recognize(_solid(40, 30, (128, 128, 128)))

    assert not result.matched
    assert result.identity is None
    assert result.failure is None


def test_identify_returns_plain_identity():
    with _recognizer() as rec:
        assert rec.identify(_solid(16, 16, (0, 0, 0))) == "bob"
        assert rec.identify(_solid(16, 16, (128, 128, 128))) is None


def test_empty_gallery_is_no_match():
    with FaceRecognizer(engine=_MeanColorEngine()) as rec:
        result = rec.recognize(_solid(8, 8, (255, 255, 255)))
    assert result.identity is None
    assert result.failure is None


def test_bad_image_yields_preprocess_failure():
    engine = _MeanColorEngine()
    with _recognizer(engine) as rec:
        result = rec.recognize(np.zeros((0, 10, 3), dtype=np.uint8))

    assert result.identity is None
    assert result.failure.stage == "preprocess"
    assert engine.calls == 0


def test_engine_failure_is_isolated():
    with _recognizer(_MeanColorEngine(fail=True)) as rec:
        result = rec.recognize(_solid(8, 8, (255, 255, 255)))

    assert result.identity is None
    assert result.failure.stage == "extract"
    assert "crashed" in result.failure.reason


def test_faces_are_resized_to_declared_model_input():
    engine = _MeanColorEngine(size=160)
    with _recognizer(engine, input_size=112) as rec:
        result = rec.recognize(_solid(8, 8, (255, 255, 255)))

    assert result.failure is None
    assert result.identity == "alice"
    assert engine.calls == 1


def test_incompatible_model_input_yields_extract_failure():
    engine = _MeanColorEngine()
    engine.input_shape = (1, 112, 112, 4)
    with _recognizer(engine) as rec:
        result = rec.recognize(_solid(8, 8, (255, 255, 255)))

    assert result.identity is None
    assert result.failure.stage == "extract"
    assert engine.calls == 0


def test_non_finite_embedding_yields_extract_failure():
    engine = _MeanColorEngine()
    engine.run = lambda tensor: np.full((1, 3), np.nan, dtype=np.float32)
    with _recognizer(engine) as rec:
        result = rec.recognize(_solid(8, 8, (255, 255, 255)))

    assert result.identity is None
    assert result.failure.stage == "extract"


def test_engine_timeout_is_isolated():
    rec = _recognizer(_MeanColorEngine(delay=0.5), timeout=0.05)
    try:
        result = rec.recognize(_solid(8, 8, (255, 255, 255)))
    finally:
        rec.close()

    assert result.identity is None
    assert result.failure.stage == "extract"


def test_one_engine_call_per_recognition():
    engine = _MeanColorEngine()
    with _recognizer(engine) as rec:
        rec.recognize(_solid(8, 8, (255, 255, 255)))
        rec.recognize(_solid(8, 8, (0, 0, 0)))
    assert engine.calls == 2


def test_threshold_is_configurable():
    gray = _solid(8, 8, (191, 191, 191))  # ~0.5 per channel, ~0.86 from alice
    with _recognizer(threshold=0.7) as rec:
        assert rec.identify(gray) is None
        rec.threshold = 1.0
        assert rec.identify(gray) == "alice"


def test_enroll_adds_runtime_template():
    with _recognizer() as rec:
        red = _solid(8, 8, (255, 0, 0))
        assert rec.identify(red) is None

        entry = rec.enroll("carol", red)
        assert isinstance(entry, RegisteredEntry)
        assert len(rec.store) == 3
        assert rec.identify(red) == "carol"


def test_load_embeddings_skips_malformed_records():
    with FaceRecognizer(engine=_MeanColorEngine()) as rec:
        count = rec.load_embeddings([("alice", "1,1,1"), ("broken", "1,x,1"), ("bob", "-1,-1,-1")])
        assert count == 2
        assert rec.store.identities() == ["alice", "bob"]


def test_recognize_photo_uses_first_clamped_region():
    photo = _solid(50, 50, (0, 0, 0))
    photo[10:30, 10:30] = (255, 255, 255)
    locator = _FixedLocator([FaceRegion(10, 10, 30, 30, score=0.9), FaceRegion(-5, -5, 100, 100, score=0.5)])

    with _recognizer(locator=locator) as rec:
        result = rec.recognize_photo(photo)

    assert result.identity == "alice"
    assert result.region.bbox == (10, 10, 30, 30)


def test_recognize_photo_clamps_out_of_bounds_region():
    photo = _solid(20, 20, (0, 0, 0))
    locator = _FixedLocator([FaceRegion(-10, -10, 500, 500)])

    with _recognizer(locator=locator) as rec:
        result = rec.recognize_photo(photo)

    assert result.identity == "bob"
    assert result.region.bbox == (0, 0, 19, 19)


def test_recognize_photo_without_face():
    with _recognizer(locator=_FixedLocator([])) as rec:
        result = rec.recognize_photo(_solid(20, 20, (255, 255, 255)))

    assert result.identity is None
    assert result.failure.stage == "locate"


def test_recognize_photo_locator_error_is_isolated():
    with _recognizer(locator=_BrokenLocator()) as rec:
        result = rec.recognize_photo(_solid(20, 20, (255, 255, 255)))
    assert result.failure.stage == "locate"


def test_degenerate_region_yields_preprocess_failure():
    locator = _FixedLocator([FaceRegion(5, 5, 5, 9)])
    with _recognizer(locator=locator) as rec:
        result = rec.recognize_photo(_solid(20, 20, (255, 255, 255)))
    assert result.failure.stage == "preprocess"


def test_recognize_file(tmp_path: Path):
    fp = tmp_path / "face.png"
    assert cv2.imwrite(str(fp), _solid(12, 12, (0, 0, 0)))

    with _recognizer() as rec:
        assert rec.recognize_file(fp).identity == "bob"
        missing = rec.recognize_file(tmp_path / "nope.png")

    assert missing.failure.stage == "preprocess"


def test_close_releases_engine_and_rejects_calls():
    engine = _MeanColorEngine()
    rec = _recognizer(engine)
    rec.close()

    assert engine.closed
    assert rec.closed
    with pytest.raises(RuntimeError):
        rec.recognize(_solid(8, 8, (255, 255, 255)))


def test_recognize_photo_requires_locator():
    with _recognizer() as rec:
        with pytest.raises(RuntimeError):
            rec.recognize_photo(_solid(8, 8, (255, 255, 255)))


def test_requires_engine_or_model():
    with pytest.raises(ValueError):
        FaceRecognizer()
