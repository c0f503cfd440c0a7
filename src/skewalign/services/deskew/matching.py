"""
Minimum-cost bipartite matching.
"""

import logging
from collections.abc import Sequence

import numpy as np
from scipy.optimize import linear_sum_assignment

logger = logging.getLogger(__name__)


def min_cost_assignment(
    cost: np.ndarray | Sequence[Sequence[float]],
    real_columns: int | None = None,
) -> list[int | None]:
    """Solve the assignment problem on a square cost matrix.

    Uses scipy's Hungarian-family solver, O(N³). Every row receives
    exactly one column in the perfect matching; columns at index
    ``real_columns`` or above are padding and are reported as None.

    Args:
        cost: N×N cost matrix
        real_columns: Number of leading columns that are real (default: all)

    Returns:
        One entry per row: the assigned column index, or None
    """
    matrix = np.asarray(cost, dtype=np.float64)
    if matrix.size == 0:
        return []
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise ValueError(f"cost matrix must be square, got shape {matrix.shape}")

    limit = matrix.shape[1] if real_columns is None else real_columns
    rows, cols = linear_sum_assignment(matrix)

    result: list[int | None] = [None] * matrix.shape[0]
    for row, col in zip(rows, cols, strict=True):
        result[int(row)] = int(col) if col < limit else None
    return result
