"""Centroid of a set of embedding vectors."""

from __future__ import annotations

from typing import Sequence

import numpy as np


def centroid(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Return the element-wise mean of the vectors.

    The first vector fixes the dimension; vectors of any other length are
    left out of both the sum and the count. Empty input gives [].
    """
    if not vectors:
        return []
    dims = len(vectors[0])
    included = [v for v in vectors if len(v) == dims]
    mean = np.asarray(included, dtype=np.float64).mean(axis=0)
    return mean.tolist()
