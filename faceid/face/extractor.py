from __future__ import annotations

import threading
import time

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Optional, Tuple

import numpy as np

from faceid.errors import ExtractionFailure, ExtractionTimeoutError, ShapeMismatchError
from faceid.face.engine import InferenceEngine
from faceid.utils.log import get_logger

logger = get_logger(__name__)


class EmbeddingExtractor:
    """Single forward pass from a preprocessed tensor to a raw embedding.

    Owns the engine: `close()` releases it. Engine calls are serialized since
    inference runtimes are not assumed reentrant. With `timeout` set, calls run
    on a single worker thread and a call exceeding it raises
    `ExtractionTimeoutError`; the worker keeps the engine busy until the
    expired call returns, and later calls queue behind it.
    """

    def __init__(self, engine: InferenceEngine, timeout: Optional[float] = None):
        if engine is None:
            raise ValueError("EmbeddingExtractor requires an inference engine")
        if timeout is not None and float(timeout) <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")

        self._engine: Optional[InferenceEngine] = engine
        self.timeout = float(timeout) if timeout is not None else None
        self._lock = threading.Lock()
        self._executor: Optional[ThreadPoolExecutor] = None
        if self.timeout is not None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="faceid-extract")

        # Shapes are fixed for the life of the engine.
        self.input_shape: Tuple[int, ...] = tuple(int(x) for x in engine.input_shape)
        self.output_shape: Tuple[int, ...] = tuple(int(x) for x in engine.output_shape)
        self.embedding_dim = int(np.prod(self.output_shape))

    @property
    def closed(self) -> bool:
        return self._engine is None

    @property
    def input_size(self) -> Tuple[int, int]:
        """(width, height) the preprocessor must produce."""
        return int(self.input_shape[2]), int(self.input_shape[1])

    def _run(self, tensor: np.ndarray) -> np.ndarray:
        with self._lock:
            engine = self._engine
            if engine is None:
                raise RuntimeError("EmbeddingExtractor is closed")
            t0 = time.time()
            out = engine.run(tensor)
            logger.debug(f"Inference took {(time.time() - t0) * 1000.0:.1f} ms")
            return out

    def extract(self, tensor: np.ndarray) -> np.ndarray:
        """Run the model once and return the flat, read-only embedding.

        Raises:
            ShapeMismatchError: tensor shape differs from the model input shape.
            ExtractionTimeoutError: the engine call exceeded `timeout`.
            ExtractionFailure: the engine raised, or returned a wrong-length or non-finite output.
            RuntimeError: the extractor was closed.
        """
        if self._engine is None:
            raise RuntimeError("EmbeddingExtractor is closed")

        shape = tuple(int(x) for x in getattr(tensor, "shape", ()))
        if shape != self.input_shape:
            raise ShapeMismatchError(f"Tensor shape {shape} does not match model input shape {self.input_shape}")

        try:
            if self._executor is not None:
                future = self._executor.submit(self._run, tensor)
                try:
                    out = future.result(timeout=self.timeout)
                except FutureTimeoutError as e:
                    raise ExtractionTimeoutError(f"Inference exceeded {self.timeout:.3f}s", cause=e) from e
            else:
                out = self._run(tensor)
        except ExtractionFailure:
            raise
        except Exception as e:
            if self._engine is None:
                # Closed while this call was waiting.
                raise RuntimeError("EmbeddingExtractor is closed") from e
            raise ExtractionFailure(f"Inference failed: {e}", cause=e) from e

        try:
            emb = np.asarray(out, dtype=np.float32).reshape(-1)
        except (TypeError, ValueError) as e:
            raise ExtractionFailure(f"Engine output is not numeric: {e}", cause=e) from e
        if emb.shape[0] != self.embedding_dim:
            raise ExtractionFailure(
                f"Engine returned {emb.shape[0]} values, model declares {self.embedding_dim} ({self.output_shape})"
            )
        if not np.all(np.isfinite(emb)):
            raise ExtractionFailure("Engine returned non-finite embedding values")

        emb = emb.copy()
        emb.setflags(write=False)
        return emb

    def close(self) -> None:
        """Release the engine and the worker thread. Safe to call twice."""
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None
        with self._lock:
            engine = self._engine
            self._engine = None
        if engine is not None:
            engine.close()

    def __enter__(self) -> "EmbeddingExtractor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
