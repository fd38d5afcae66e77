"""Linear algebra routines for per-case least squares.

Pivoted QR solves with the rank tolerance used by R's ``lm.fit``. Explicit
matrix inversion is avoided; aliased columns receive ``NaN`` coefficients so
callers can detect rank deficiency the same way R reports ``NA``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
import scipy.linalg as sla

if TYPE_CHECKING:
    from numpy.typing import NDArray
else:
    NDArray = np.ndarray  # type: ignore[misc,assignment]

__all__ = [
    "R_LM_TOL",
    "dot",
    "qr",
    "qr_coef_r",
    "rank_from_diag",
    "to_dense",
]

# R lm.fit default: tol = 1e-7 (relative to max |diag(R)|)
R_LM_TOL: float = 1e-7

Matrix = Any


def to_dense(A: Matrix) -> NDArray[np.float64]:
    """Convert a matrix-like object (ndarray, DataFrame, list) to float64."""
    if hasattr(A, "to_numpy"):
        return np.asarray(A.to_numpy(), dtype=np.float64)
    return np.asarray(A, dtype=np.float64)


def qr(A: Matrix, *, mode: str = "economic"):
    """Compute a column-pivoted QR decomposition via SciPy.

    Returns ``(Q, R, P)`` trimmed to ``min(n, k)`` columns/rows.
    """
    Ad = to_dense(A)
    rcols = min(Ad.shape[0], Ad.shape[1])
    Q, R, P = sla.qr(Ad, mode=mode, pivoting=True)
    return Q[:, :rcols], R[:rcols, :], P


def rank_from_diag(diagR: NDArray[np.float64], *, tol: float = R_LM_TOL) -> int:
    """Numerical rank from the diagonal of a pivoted R factor.

    Uses ``tol * max|diag(R)|`` as in R ``lm.fit``.
    """
    d = np.abs(np.asarray(diagR, dtype=np.float64).reshape(-1))
    if d.size == 0:
        return 0
    thresh = float(tol) * float(np.max(d))
    return int(np.sum(d > thresh))


def qr_coef_r(
    A: Matrix, B: Matrix, *, tol: float = R_LM_TOL,
) -> tuple[NDArray[np.float64], int]:
    """Least squares via pivoted QR with R fill rules.

    Returns
    -------
    coef : ndarray, shape (k, m)
        Coefficients; columns beyond the numerical rank are ``NaN``.
    rank : int
        Numerical rank of ``A``.

    """
    Ad = to_dense(A)
    Bd = to_dense(B)
    Bd = Bd.reshape(-1, 1) if Bd.ndim == 1 else Bd
    n, k = Ad.shape
    coef = np.full((k, Bd.shape[1]), np.nan, dtype=np.float64)
    if n == 0 or k == 0:
        return coef, 0
    Q, R, P = qr(Ad)
    r = rank_from_diag(np.diag(R), tol=tol)
    if r > 0:
        QtB = Q.T @ Bd
        beta = sla.solve_triangular(R[:r, :r], QtB[:r, :], lower=False)
        coef[P[:r], :] = beta
    return coef, r


def dot(A: Matrix, B: Matrix) -> NDArray[np.float64]:
    """Dense matrix product returning float64."""
    return np.asarray(to_dense(A) @ to_dense(B), dtype=np.float64)
