"""Intercept column handling in the R ``model.matrix`` convention.

The intercept is named ``(Intercept)`` and always sits in the first column.
Patsy's own ``Intercept`` column is adopted and renamed; other constant
columns are left in place so that the least-squares fit reports them as
aliased, as R does.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = ["INTERCEPT_NAME", "PATSY_INTERCEPT_NAME", "add_constant"]

INTERCEPT_NAME = "(Intercept)"
PATSY_INTERCEPT_NAME = "Intercept"

_NDIM_2D = 2
_CONST_TOL = 1e-12


def add_constant(
    X: np.ndarray,
    var_names: Sequence[str] | None = None,
    *,
    include_intercept: bool = True,
    const_name: str = INTERCEPT_NAME,
    tol: float = _CONST_TOL,
) -> tuple[np.ndarray, list[str], str | None]:
    """Place the intercept column first under its R name.

    Parameters
    ----------
    X : np.ndarray, shape (n, k)
        Design matrix.
    var_names : Sequence[str] | None
        Column names; ``x0..x{k-1}`` when omitted.
    include_intercept : bool
        Whether the model has an intercept.
    const_name : str
        Name given to the intercept column.
    tol : float
        Tolerance for recognising an existing all-ones column.

    Returns
    -------
    X_out : np.ndarray
        Matrix with the intercept in column 0 (when requested).
    names_out : list[str]
        Column names.
    const_name_out : str | None
        Intercept name used, or ``None`` without an intercept.

    """
    X = np.asarray(X, dtype=np.float64, order="C")
    if X.ndim != _NDIM_2D:
        msg = "X must be 2D."
        raise ValueError(msg)
    n, k = X.shape
    names = _normalize_variable_names(var_names, k)
    _validate_unique_names(names)

    if not include_intercept:
        if const_name in names:
            msg = f"Column name '{const_name}' is reserved for the intercept."
            raise ValueError(msg)
        return X, names, None

    j = _find_intercept(X, names, const_name, tol)
    if j is None:
        if const_name in names:
            msg = f"Column '{const_name}' is not constant; the name is reserved for the intercept."
            raise ValueError(msg)
        X_out = np.column_stack([np.ones((n, 1), dtype=np.float64), X])
        return X_out, [const_name, *names], const_name

    order = [j, *(i for i in range(k) if i != j)]
    names_out = [const_name, *(names[i] for i in order[1:])]
    _validate_unique_names(names_out)
    return X[:, order], names_out, const_name


def _find_intercept(
    X: np.ndarray, names: list[str], const_name: str, tol: float,
) -> int | None:
    """Index of the column to adopt as intercept (by name, then all-ones check)."""
    for nm in (const_name, PATSY_INTERCEPT_NAME):
        if nm in names:
            j = names.index(nm)
            if _is_all_ones(X[:, j], tol):
                return j
    return None


def _normalize_variable_names(var_names: Sequence[str] | None, k: int) -> list[str]:
    """Normalize variable names to a list of strings."""
    if var_names is None:
        return [f"x{i}" for i in range(k)]

    names = [str(nm) for nm in var_names]
    if len(names) != k:
        msg = f"var_names length ({len(names)}) does not match X columns ({k})."
        raise ValueError(msg)
    return names


def _validate_unique_names(names: list[str]) -> None:
    """Ensure all variable names are unique."""
    seen: set[str] = set()
    for nm in names:
        if nm in seen:
            raise ValueError(
                f"Duplicate variable name in var_names: '{nm}'. Provide unique names.",
            )
        seen.add(nm)


def _is_all_ones(values: np.ndarray, tol: float) -> bool:
    """Check whether a column is all ones (an empty column counts)."""
    v = np.asarray(values, dtype=np.float64)
    return bool(v.size == 0 or np.all(np.abs(v - 1.0) <= tol))
