from __future__ import annotations

import numpy as np


def euclidean_distances(matrix: np.ndarray, vec: np.ndarray) -> np.ndarray:
    """Row-wise Euclidean distance between an (N, D) matrix and a (D,) vector."""
    mat = np.asarray(matrix, dtype=np.float64)
    if mat.ndim == 1:
        mat = mat.reshape(1, -1)
    if mat.ndim != 2:
        raise ValueError(f"Unsupported ndim={mat.ndim}")
    v = np.asarray(vec, dtype=np.float64).reshape(-1)
    diff = mat - v[None, :]
    return np.sqrt(np.einsum("ij,ij->i", diff, diff))
