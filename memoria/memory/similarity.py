"""
Vector similarity metrics.

Every metric is expressed as a score where higher means more similar,
so callers can rank results the same way regardless of the metric an
index was built with.
"""

from enum import Enum
from typing import Sequence

import numpy as np


class DistanceMetric(str, Enum):
    COSINE = "cosine"
    L2 = "l2"
    INNER_PRODUCT = "ip"

    @classmethod
    def parse(cls, value) -> "DistanceMetric":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        aliases = {
            "cosine": cls.COSINE,
            "l2": cls.L2,
            "euclidean": cls.L2,
            "ip": cls.INNER_PRODUCT,
            "inner_product": cls.INNER_PRODUCT,
            "dot": cls.INNER_PRODUCT,
            "dotproduct": cls.INNER_PRODUCT,
        }
        if key not in aliases:
            raise ValueError(f"Unknown distance metric: {value}")
        return aliases[key]


def as_vector(values: Sequence[float]) -> np.ndarray:
    return np.asarray(values, dtype=np.float32)


def normalize(vector: np.ndarray) -> np.ndarray:
    norm = np.linalg.norm(vector)
    if norm == 0:
        return vector
    return vector / norm


def similarity(
    a: Sequence[float],
    b: Sequence[float],
    metric: DistanceMetric = DistanceMetric.COSINE,
) -> float:
    """
    Similarity between two vectors.

    COSINE: dot / (|a| |b|), 0.0 when either vector is all zeros.
    L2: 1 / (1 + euclidean distance).
    INNER_PRODUCT: raw dot product; only meaningful for normalised vectors.
    """
    va, vb = as_vector(a), as_vector(b)
    if va.shape != vb.shape:
        raise ValueError(f"Vector shapes differ: {va.shape} vs {vb.shape}")

    if metric == DistanceMetric.COSINE:
        denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
        if denom == 0:
            return 0.0
        return float(np.dot(va, vb) / denom)
    if metric == DistanceMetric.L2:
        return 1.0 / (1.0 + float(np.linalg.norm(va - vb)))
    return float(np.dot(va, vb))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    return similarity(a, b, DistanceMetric.COSINE)


def batch_similarity(
    query: np.ndarray,
    matrix: np.ndarray,
    metric: DistanceMetric = DistanceMetric.COSINE,
) -> np.ndarray:
    """Score one query against every row of a matrix."""
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float32)

    if metric == DistanceMetric.COSINE:
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, dots / norms, 0.0)
        return scores
    if metric == DistanceMetric.L2:
        return 1.0 / (1.0 + np.linalg.norm(matrix - query, axis=1))
    return matrix @ query


def score_to_distance(score: float, metric: DistanceMetric) -> float:
    """Recover the raw distance reported alongside a score."""
    if metric == DistanceMetric.COSINE:
        return 1.0 - score
    if metric == DistanceMetric.L2:
        return (1.0 / score) - 1.0 if score > 0 else float("inf")
    return -score
