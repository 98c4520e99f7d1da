"""Vector math shared by the stores and the retrieval engine."""

from collections.abc import Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1].

    Returns 0.0 when the vectors differ in length, are empty, or either has
    zero norm (placeholder embeddings land here).
    """
    if len(a) == 0 or len(a) != len(b):
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def is_zero_vector(vector: Sequence[float] | None) -> bool:
    """True for missing, empty or all-zero vectors."""
    if not vector:
        return True
    return not np.any(np.asarray(vector, dtype=np.float64))
