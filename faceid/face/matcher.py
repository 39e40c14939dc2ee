from __future__ import annotations

from dataclasses import dataclass
from typing import Hashable, List, Optional, Tuple

import numpy as np

from faceid.config import DEFAULT_THRESHOLD
from faceid.face.gallery import EmbeddingStore
from faceid.utils.log import get_logger
from faceid.utils.math import euclidean_distances

logger = get_logger(__name__)


@dataclass
class MatcherConfig:
    # Acceptance bound on Euclidean distance: only d < threshold can match.
    threshold: float = DEFAULT_THRESHOLD
    # Nearest candidates reported by `rank` for debug logging.
    topk_debug: int = 5


@dataclass(frozen=True)
class MatchResult:
    identity: Hashable
    distance: float
    # Position of the matched entry in the store snapshot.
    index: int


class EuclideanMatcher:
    """1-nearest-neighbour with rejection over a multi-template gallery.

    Entries whose embedding length differs from the query are skipped. The best
    distance starts at `threshold`, so a store with no entry strictly closer
    than the threshold yields no match. Ties go to the earliest entry.
    """

    def __init__(self, config: Optional[MatcherConfig] = None):
        self.config = config or MatcherConfig()

        # Cached index over the compatible entries of the last store snapshot,
        # swapped as one tuple: (store, (version, dim), matrix (N, D) float32,
        # rows (N,) store positions, skipped count).
        self._cache: Optional[Tuple[EmbeddingStore, Tuple[int, int], np.ndarray, np.ndarray, int]] = None

    @property
    def threshold(self) -> float:
        return float(self.config.threshold)

    @staticmethod
    def _as_query(query) -> np.ndarray:
        q = np.asarray(query)
        if q.ndim != 1 or q.size == 0:
            raise ValueError(f"Query embedding must be a non-empty 1D vector, got shape {q.shape}")
        if not np.issubdtype(q.dtype, np.number):
            raise TypeError(f"Query embedding must be numeric, got dtype {q.dtype}")
        return q.astype(np.float32, copy=False)

    def _ensure_index(self, store: EmbeddingStore, version: int, entries, dim: int):
        key = (int(version), int(dim))
        cache = self._cache
        if cache is not None and cache[0] is store and cache[1] == key:
            return cache

        rows: List[int] = []
        vecs: List[np.ndarray] = []
        for i, entry in enumerate(entries):
            if entry.dim != dim:
                continue
            rows.append(i)
            vecs.append(entry.embedding)

        if vecs:
            matrix = np.ascontiguousarray(np.stack(vecs, axis=0), dtype=np.float32)
        else:
            matrix = np.zeros((0, dim), dtype=np.float32)
        cache = (store, key, matrix, np.asarray(rows, dtype=np.int64), len(entries) - len(rows))
        self._cache = cache
        return cache

    def _distances(self, q: np.ndarray, store: EmbeddingStore):
        if not isinstance(store, EmbeddingStore):
            raise TypeError(f"Expected an EmbeddingStore, got {type(store).__name__}")

        version, entries = store.snapshot()
        if not entries:
            return entries, None, None

        dim = int(q.shape[0])
        _, _, matrix, rows, skipped = self._ensure_index(store, version, entries, dim)
        if skipped:
            logger.warning(f"Skipped {skipped} registered embeddings with length != {dim}")
        if matrix.shape[0] == 0:
            return entries, None, None

        dists = euclidean_distances(matrix, q)
        # NaN/inf entries can never become the best match.
        dists = np.where(np.isfinite(dists), dists, np.inf)
        return entries, dists, rows

    def match(self, query, store: EmbeddingStore) -> Optional[MatchResult]:
        """Return the closest entry strictly within the threshold, or None."""
        q = self._as_query(query)

        entries, dists, rows = self._distances(q, store)
        if dists is None:
            if entries:
                logger.warning(f"No registered embedding has length {q.shape[0]}")
            else:
                logger.warning("No registered embeddings; nothing to match against")
            return None

        # argmin returns the first minimum, which keeps earliest-entry tie-breaking.
        best = int(np.argmin(dists))
        best_dist = float(dists[best])
        if not best_dist < self.threshold:
            logger.debug(f"Nearest distance {best_dist:.4f} is not below threshold {self.threshold:.4f}")
            return None

        row = int(rows[best])
        return MatchResult(identity=entries[row].identity, distance=best_dist, index=row)

    def rank(self, query, store: EmbeddingStore, k: Optional[int] = None) -> List[Tuple[Hashable, float]]:
        """Nearest `k` (identity, distance) pairs, ignoring the threshold."""
        q = self._as_query(query)
        entries, dists, rows = self._distances(q, store)
        if dists is None:
            return []
        topk = int(max(1, k if k is not None else self.config.topk_debug))
        # Stable sort keeps store order among equal distances.
        order = np.argsort(dists, kind="stable")[:topk]
        return [(entries[int(rows[i])].identity, float(dists[i])) for i in order]
