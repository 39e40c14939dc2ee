from __future__ import annotations

import logging

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Hashable, Iterable, List, Optional, Tuple, Union

import numpy as np

from faceid.config import DEFAULT_EMBEDDING_DIM, DEFAULT_INPUT_SIZE, DEFAULT_THRESHOLD, SUPPORTED_INPUT_SIZES
from faceid.errors import PreprocessError, RecognitionError, ShapeMismatchError
from faceid.face.engine import InferenceEngine, create_engine
from faceid.face.extractor import EmbeddingExtractor
from faceid.face.gallery import EmbeddingStore, RegisteredEntry, entries_from_records, read_records
from faceid.face.locator import FaceLocator, FaceRegion, clamp_region, crop_region
from faceid.face.matcher import EuclideanMatcher, MatcherConfig, MatchResult
from faceid.face.preprocess import load_image, preprocess
from faceid.utils.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RecognitionFailure:
    # One of: locate / preprocess / extract
    stage: str
    reason: str


@dataclass(frozen=True)
class RecognitionResult:
    identity: Optional[Hashable] = None
    distance: Optional[float] = None
    failure: Optional[RecognitionFailure] = None
    region: Optional[FaceRegion] = None

    @property
    def matched(self) -> bool:
        return self.identity is not None

    @property
    def failed(self) -> bool:
        return self.failure is not None


class FaceRecognizer:
    """Face identification: preprocess -> embed -> threshold-gated nearest neighbour.

    Owns its inference engine for its whole life: the engine is acquired on
    construction and released by `close()` (or leaving a `with` block).
    A recognition attempt that fails in a stage (bad image, shape mismatch,
    engine error or timeout) yields an unmatched `RecognitionResult` carrying a
    `RecognitionFailure`; it never raises. Calling into a closed recognizer does.
    """

    def __init__(
        self,
        model_path: Optional[Union[str, Path]] = None,
        threshold: float = DEFAULT_THRESHOLD,
        input_size: int = DEFAULT_INPUT_SIZE,
        embedding_dim: int = DEFAULT_EMBEDDING_DIM,
        num_threads: Optional[int] = None,
        device: str = "auto",
        timeout: Optional[float] = None,
        entries: Optional[Iterable[Any]] = None,
        engine: Optional[InferenceEngine] = None,
        locator: Optional[FaceLocator] = None,
    ):
        """
        Args:
            model_path: ONNX or TorchScript model, used when `engine` is not given.
            threshold: Euclidean acceptance bound; only distances strictly below match.
            input_size: square model input side (112 or 160 for the reference models).
            embedding_dim: embedding length, for runtimes that do not declare it.
            num_threads: intra-op threads for the inference runtime.
            device: 'auto' / 'cpu' / 'gpu'.
            timeout: per-call inference bound in seconds; None waits indefinitely.
            entries: initial gallery, `RegisteredEntry` values or persistence records.
            engine: pre-built inference engine; the recognizer takes ownership.
            locator: face locator used by `recognize_photo`.
        """
        if engine is None:
            if model_path is None:
                raise ValueError("FaceRecognizer needs either an engine or a model_path")
            engine = create_engine(
                model_path,
                input_size=int(input_size),
                embedding_dim=int(embedding_dim),
                num_threads=num_threads,
                device=device,
            )

        if int(input_size) not in SUPPORTED_INPUT_SIZES:
            logger.warning(f"Input size {input_size} is not one of the reference sizes {SUPPORTED_INPUT_SIZES}")
        self.input_size = int(input_size)
        self.locator = locator

        self._extractor: Optional[EmbeddingExtractor] = EmbeddingExtractor(engine, timeout=timeout)
        expected = (1, self.input_size, self.input_size, 3)
        if self._extractor.input_shape != expected:
            logger.warning(
                f"Model input shape {self._extractor.input_shape} differs from configured {expected}; "
                f"faces are resized to the model input"
            )

        self.store = EmbeddingStore()
        self.matcher = EuclideanMatcher(MatcherConfig(threshold=float(threshold)))

        if entries is not None:
            self.load_embeddings(entries)

    @property
    def threshold(self) -> float:
        return self.matcher.threshold

    @threshold.setter
    def threshold(self, value: float) -> None:
        self.matcher.config.threshold = float(value)

    @property
    def embedding_dim(self) -> int:
        return self._require_extractor().embedding_dim

    @property
    def closed(self) -> bool:
        return self._extractor is None

    def _require_extractor(self) -> EmbeddingExtractor:
        if self._extractor is None:
            raise RuntimeError("FaceRecognizer is closed")
        return self._extractor

    def load_embeddings(self, records: Iterable[Any], expected_dim: Optional[int] = None) -> int:
        """Replace the gallery. Malformed persistence records are skipped one by one."""
        records = list(records)
        if all(isinstance(r, RegisteredEntry) for r in records):
            entries: List[RegisteredEntry] = records
        else:
            entries = entries_from_records(records, expected_dim=expected_dim)
        self.store.load(entries)
        return len(entries)

    def load_embeddings_file(self, path: Union[str, Path], expected_dim: Optional[int] = None) -> int:
        return self.load_embeddings(read_records(path), expected_dim=expected_dim)

    def embed(self, image: np.ndarray) -> np.ndarray:
        """Embedding for an already cropped face image. Stage errors propagate."""
        extractor = self._require_extractor()
        # Size the tensor to what the model declares, not the configured default.
        width, height = extractor.input_size
        tensor = preprocess(image, width, height)
        return extractor.extract(tensor)

    def enroll(self, identity: Hashable, image: np.ndarray) -> RegisteredEntry:
        """Embed a reference face and append it to the gallery."""
        entry = self.store.add(identity, self.embed(image))
        logger.info(f"Enrolled {identity!r} ({len(self.store)} registered embeddings)")
        return entry

    def recognize(self, image: np.ndarray) -> RecognitionResult:
        """Identify a cropped face image against the gallery (single attempt)."""
        self._require_extractor()
        try:
            emb = self.embed(image)
        except ShapeMismatchError as e:
            logger.error(f"Recognition failed at {e.stage}: {e}")
            return RecognitionResult(failure=RecognitionFailure(stage=e.stage, reason=str(e)))
        except RecognitionError as e:
            logger.warning(f"Recognition failed at {e.stage}: {e}")
            return RecognitionResult(failure=RecognitionFailure(stage=e.stage, reason=str(e)))

        result = self.matcher.match(emb, self.store)
        if result is None:
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"No match; nearest: {self.matcher.rank(emb, self.store)}")
            return RecognitionResult()
        logger.info(f"Recognized {result.identity!r} (distance {result.distance:.4f})")
        return RecognitionResult(identity=result.identity, distance=result.distance)

    def identify(self, image: np.ndarray) -> Optional[Hashable]:
        """Identity of the closest registered face, or None."""
        return self.recognize(image).identity

    def match_embedding(self, embedding) -> Optional[MatchResult]:
        return self.matcher.match(embedding, self.store)

    def locate_face(self, photo: np.ndarray) -> Tuple[Optional[np.ndarray], Optional[FaceRegion]]:
        """Crop the first region the locator reports, or (None, None) if none."""
        if self.locator is None:
            raise RuntimeError("No face locator configured")
        regions = self.locator.locate(photo)
        if not regions:
            return None, None
        h, w = photo.shape[:2]
        region = clamp_region(regions[0], w, h)
        return crop_region(photo, region), region

    def recognize_photo(self, photo: np.ndarray) -> RecognitionResult:
        """Locate a face in a full photo, crop it and recognize it."""
        self._require_extractor()
        if self.locator is None:
            raise RuntimeError("No face locator configured")
        try:
            if photo is None or np.asarray(photo).ndim < 2:
                raise PreprocessError("Photo is missing or malformed")
            face, region = self.locate_face(np.asarray(photo))
        except PreprocessError as e:
            logger.warning(f"Recognition failed at {e.stage}: {e}")
            return RecognitionResult(failure=RecognitionFailure(stage=e.stage, reason=str(e)))
        except Exception as e:
            logger.warning(f"Recognition failed at locate: {e}")
            return RecognitionResult(failure=RecognitionFailure(stage="locate", reason=str(e)))

        if face is None:
            logger.info("No face found in photo")
            return RecognitionResult(failure=RecognitionFailure(stage="locate", reason="no face found"))

        result = self.recognize(face)
        return RecognitionResult(
            identity=result.identity,
            distance=result.distance,
            failure=result.failure,
            region=region,
        )

    def recognize_file(self, path: Union[str, Path]) -> RecognitionResult:
        """Decode an image file and recognize it (locating the face first when a locator is set)."""
        self._require_extractor()
        try:
            image = load_image(path)
        except PreprocessError as e:
            logger.warning(f"Recognition failed at {e.stage}: {e}")
            return RecognitionResult(failure=RecognitionFailure(stage=e.stage, reason=str(e)))
        if self.locator is not None:
            return self.recognize_photo(image)
        return self.recognize(image)

    def get_gallery_info(self) -> dict:
        return {
            "entries": len(self.store),
            "identities": len(self.store.identities()),
            "threshold": self.threshold,
            "input_size": self.input_size,
        }

    def close(self) -> None:
        extractor = self._extractor
        self._extractor = None
        if extractor is not None:
            extractor.close()

    def __enter__(self) -> "FaceRecognizer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
