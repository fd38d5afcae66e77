"""Case partitioning and coefficient pooling.

Cases are the groups of rows sharing one case-key value. They are coded
``0..G-1`` in order of first appearance, which fixes the case order used by
the per-case fits, the coefficient table and the bootstrap resampling.
"""

# olstraj/core/cases.py
from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from olstraj.exceptions import DegenerateCase, InvalidInput

if TYPE_CHECKING:
    from numpy.typing import NDArray
else:
    NDArray = np.ndarray  # type: ignore[misc,assignment]

__all__ = [
    "MISSING_POLICIES",
    "MIN_CASES",
    "CasePartition",
    "PooledMeans",
    "normalize_missing_policy",
    "partition_cases",
    "pool_coefficients",
]

_LOGGER = logging.getLogger(__name__)

MISSING_POLICIES = frozenset({"skip", "fail"})

# A bootstrap standard error needs at least two distinct resampling units.
MIN_CASES: int = 2


def normalize_missing_policy(policy: str) -> str:
    """Validate and lower-case a missing-estimate policy."""
    p = str(policy).strip().lower()
    if p not in MISSING_POLICIES:
        msg = f"missing_policy must be one of {sorted(MISSING_POLICIES)}; got {policy!r}."
        raise InvalidInput(msg)
    return p


def _isna_like(z: Any) -> NDArray[np.bool_]:
    """Missing-key mask for numeric and object identifiers (None, NaN, NA, NaT)."""
    return np.asarray(pd.isna(np.asarray(z, dtype=object).reshape(-1)), dtype=bool)


@dataclass(slots=True)
class CasePartition:
    """Rows grouped by case key.

    Attributes
    ----------
    keys : list
        Distinct case keys in first-occurrence order.
    codes : np.ndarray
        Integer case code (index into ``keys``) for every row.
    positions : list[np.ndarray]
        Row positions belonging to each case, ascending.

    """

    keys: list[Any]
    codes: NDArray[np.int64]
    positions: list[NDArray[np.int64]] = field(default_factory=list)

    @property
    def n_cases(self) -> int:
        return len(self.keys)

    def sizes(self) -> NDArray[np.int64]:
        """Number of rows per case, in case order."""
        return np.bincount(self.codes, minlength=self.n_cases).astype(np.int64)

    def __iter__(self) -> Iterator[tuple[Any, NDArray[np.int64]]]:
        return iter(zip(self.keys, self.positions))


def partition_cases(keys: Sequence[Any] | pd.Series, *, label: str = "case") -> CasePartition:
    """Group row positions by exact case-key value in first-occurrence order.

    Raises
    ------
    InvalidInput
        If any key is missing or no rows are given.

    """
    arr = keys.to_numpy() if hasattr(keys, "to_numpy") else np.asarray(keys, dtype=object)
    arr = np.asarray(arr).reshape(-1)
    if arr.size == 0:
        raise InvalidInput("Cannot partition an empty dataset into cases.")
    na = _isna_like(arr)
    if np.any(na):
        where = np.flatnonzero(na)[:5].tolist()
        msg = f"Case key '{label}' has missing values at row positions {where}; clean case keys before fitting."
        raise InvalidInput(msg)
    codes, uniques = pd.factorize(arr, sort=False)
    codes = codes.astype(np.int64, copy=False)
    order = np.argsort(codes, kind="mergesort")
    bounds = np.cumsum(np.bincount(codes, minlength=len(uniques)))[:-1]
    positions = [np.asarray(p, dtype=np.int64) for p in np.split(order, bounds)]
    _LOGGER.debug("Partitioned %d rows into %d cases", arr.size, len(uniques))
    return CasePartition(keys=uniques.tolist(), codes=codes, positions=positions)


@dataclass(frozen=True)
class PooledMeans:
    """Per-term mean of case-level estimates.

    Attributes
    ----------
    means : pd.Series
        Mean estimate per term.
    n_cases : pd.Series
        Number of cases entering each term's mean.
    estimates : dict[str, np.ndarray]
        Usable case estimates per term, in case order (the bootstrap input).
    cases : dict[str, list]
        Case keys matching ``estimates``.

    """

    means: pd.Series
    n_cases: pd.Series
    estimates: dict[str, NDArray[np.float64]]
    cases: dict[str, list[Any]]

    @property
    def terms(self) -> list[str]:
        return list(self.means.index)


def pool_coefficients(coef_table: pd.DataFrame, *, missing_policy: str = "fail") -> PooledMeans:
    """Average per-case coefficients term by term.

    Parameters
    ----------
    coef_table : pd.DataFrame
        Cases x terms table of per-case estimates (index = case keys).
    missing_policy : {"fail", "skip"}
        ``"fail"`` raises on any missing estimate; ``"skip"`` drops missing
        estimates from that term only and reports the reduced case count.

    Raises
    ------
    DegenerateCase
        Missing estimate under ``"fail"``, or fewer than two usable cases for
        a term.

    """
    policy = normalize_missing_policy(missing_policy)
    if not isinstance(coef_table, pd.DataFrame) or coef_table.shape[1] == 0:
        raise InvalidInput("coef_table must be a non-empty DataFrame of cases x terms.")

    values = coef_table.to_numpy(dtype=np.float64)
    keys = list(coef_table.index)
    means: dict[str, float] = {}
    counts: dict[str, int] = {}
    estimates: dict[str, NDArray[np.float64]] = {}
    cases: dict[str, list[Any]] = {}
    for j, term in enumerate(coef_table.columns):
        col = values[:, j]
        ok = np.isfinite(col)
        if not np.all(ok):
            first = keys[int(np.flatnonzero(~ok)[0])]
            if policy == "fail":
                msg = (
                    f"Case {first!r} has a missing estimate for term '{term}'; "
                    "use missing_policy='skip' to exclude it from pooling."
                )
                raise DegenerateCase(msg, case=first)
            _LOGGER.debug(
                "Skipping %d missing estimate(s) for term '%s'", int(np.sum(~ok)), term,
            )
        usable = col[ok]
        if usable.size < MIN_CASES:
            msg = f"Term '{term}' has {usable.size} usable case estimate(s); at least {MIN_CASES} are required."
            raise DegenerateCase(msg, case=None)
        means[str(term)] = float(np.mean(usable))
        counts[str(term)] = int(usable.size)
        estimates[str(term)] = usable.copy()
        cases[str(term)] = [k for k, flag in zip(keys, ok) if flag]

    index = pd.Index([str(t) for t in coef_table.columns], name="term")
    return PooledMeans(
        means=pd.Series(means, index=index, name="mean", dtype=np.float64),
        n_cases=pd.Series(counts, index=index, name="n_cases", dtype=np.int64),
        estimates=estimates,
        cases=cases,
    )
