"""Small dense linear-algebra helpers for the learning engine.

The matrices here are tiny (one row/column per engineered feature, plus
the intercept), so the elimination routines below work row-wise on numpy
arrays rather than calling into LAPACK.  Two degenerate cases are
handled explicitly:

  * invert_matrix: a pivot with |p| < 1e-10 means the matrix is treated
    as singular and the identity is returned (Mahalanobis degrades to
    independent per-feature scoring, Bayesian precision stays usable).
  * solve_linear_system: a vanishing pivot (relative to the matrix scale)
    means the normal equations are rank-deficient, e.g. a feature column
    that is constant and therefore collinear with the intercept.  The
    minimum-norm least-squares solution from scipy is returned instead.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from scipy import linalg as sp_linalg

from constants import PIVOT_TOLERANCE

log = logging.getLogger("analytics.linalg")


def invert_matrix(matrix) -> np.ndarray:
    """Gauss-Jordan inverse with partial pivoting; identity if singular."""
    a = np.array(matrix, dtype=np.float64)
    n = a.shape[0]
    if a.shape != (n, n):
        raise ValueError(f"invert_matrix expects a square matrix, got {a.shape}")

    aug = np.hstack([a, np.eye(n)])
    for i in range(n):
        max_row = i + int(np.argmax(np.abs(aug[i:, i])))
        if max_row != i:
            aug[[i, max_row]] = aug[[max_row, i]]

        pivot = aug[i, i]
        if abs(pivot) < PIVOT_TOLERANCE:
            log.debug("Singular %dx%d matrix (pivot %.3g) -> identity", n, n, pivot)
            return np.eye(n)

        aug[i] = aug[i] / pivot
        for k in range(n):
            if k != i:
                aug[k] = aug[k] - aug[k, i] * aug[i]

    return aug[:, n:]


def solve_linear_system(a, b: Sequence[float]) -> np.ndarray:
    """Solve A x = b by Gaussian elimination with partial pivoting."""
    a = np.array(a, dtype=np.float64)
    b = np.array(b, dtype=np.float64)
    n = a.shape[0]
    if a.shape != (n, n) or b.shape != (n,):
        raise ValueError(f"Incompatible system shapes {a.shape} and {b.shape}")

    aug = np.hstack([a, b.reshape(-1, 1)])
    scale = max(1.0, float(np.abs(a).max())) if n else 1.0
    tol = PIVOT_TOLERANCE * scale

    for i in range(n):
        max_row = i + int(np.argmax(np.abs(aug[i:, i])))
        if max_row != i:
            aug[[i, max_row]] = aug[[max_row, i]]
        if abs(aug[i, i]) < tol:
            log.debug("Rank-deficient normal equations at column %d -> lstsq", i)
            x, *_ = sp_linalg.lstsq(a, b)
            return np.asarray(x, dtype=np.float64)
        factors = aug[i + 1:, i] / aug[i, i]
        aug[i + 1:, i:] -= np.outer(factors, aug[i, i:])

    x = np.zeros(n)
    for i in range(n - 1, -1, -1):
        x[i] = (aug[i, n] - aug[i, i + 1:n] @ x[i + 1:]) / aug[i, i]
    return x
