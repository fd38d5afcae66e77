"""Base classes and bootstrap configuration.

This module defines the abstract base estimator, the bootstrap configuration
shared by the estimators, and the containers for pooled case-by-case results.
"""

# olstraj/estimators/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from olstraj.core import bootstrap as bt
from olstraj.exceptions import IncompleteAggregation, InvalidInput

if TYPE_CHECKING:  # import-only typing
    from numpy.typing import NDArray

    from olstraj.estimators.ols import CaseFit
    from olstraj.utils.formula import FormulaSpec

__all__ = [
    "BaseEstimator",
    "BootConfig",
    "CaseByCaseResult",
    "PooledEstimate",
    "normalize_ci_level",
]


# Smallest value read as a percentage rather than a probability
PERCENT_LEVEL_MIN: float = 50.0


def normalize_ci_level(level: float | None, *, default: float = 0.95) -> float:
    """Normalize confidence level to a probability (0, 1)."""
    if not (0.0 < float(default) < 1.0):
        raise InvalidInput("default confidence level must lie in (0, 1)")
    if level is None:
        coerced = float(default)
    else:
        try:
            coerced = float(level)
        except (TypeError, ValueError) as e:
            msg = f"ci_level must be numeric; got {level!r}."
            raise InvalidInput(msg) from e
        # Accept percentage-style inputs (e.g., 90 for 90%)
        if PERCENT_LEVEL_MIN <= coerced < 100.0:
            coerced /= 100.0
    if not (0.0 < coerced < 1.0):
        raise InvalidInput("ci_level must be in (0, 1); supply e.g. 0.95, or a percentage in [50, 100) such as 95")
    return coerced


# ---------------------------------------------------------------------
# Bootstrap configuration (case resampling only)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootConfig:
    """Case-resampling bootstrap configuration shared by estimators.

    Notes
    -----
    - Replications: default is 4000 (project-wide).
    - Reproducibility: ``seed`` initializes the root random stream; each
      term receives an independent child stream spawned from it.
    - Parallelism: ``n_jobs`` threads for per-case fits and per-term
      resampling; ``None`` reads ``OLSTRAJ_N_JOBS`` (default 1).
    - Cancellation granularity: replicates are drawn ``chunk_size`` at a time.

    """

    n_boot: int = bt.DEFAULT_BOOTSTRAP_ITERATIONS
    seed: int | None = None
    ci_level: float = 0.95
    n_jobs: int | None = None
    chunk_size: int = bt.DEFAULT_CHUNK_SIZE

    def __post_init__(self) -> None:
        for name in ("n_boot", "chunk_size"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value < 1:
                msg = f"{name} must be a positive integer; got {value!r}."
                raise InvalidInput(msg)
        if self.seed is not None and (
            isinstance(self.seed, bool) or not isinstance(self.seed, (int, np.integer)) or self.seed < 0
        ):
            msg = f"seed must be a non-negative integer or None; got {self.seed!r}."
            raise InvalidInput(msg)
        if self.n_jobs is not None:
            bt.resolve_n_jobs(self.n_jobs)
        object.__setattr__(self, "ci_level", normalize_ci_level(self.ci_level))

    @property
    def alpha(self) -> float:
        return 1.0 - self.ci_level


# ---------------------------------------------------------------------
# Results containers
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PooledEstimate:
    """Pooled mean and bootstrap inference for one term.

    Attributes
    ----------
    term : str
        Coefficient name.
    mean : float
        Arithmetic mean of the case estimates.
    boot_mean : float
        Mean of the bootstrap replicate statistics.
    se : float
        Bootstrap standard error (``ddof=1``).
    ci_lower, ci_upper : float
        BCa interval bounds.
    ci_level : float
        Coverage probability of the interval.
    n_cases : int
        Cases entering the mean after the missing-value policy.
    replicates : np.ndarray
        Read-only bootstrap replicate statistics.

    """

    term: str
    mean: float
    boot_mean: float
    se: float
    ci_lower: float
    ci_upper: float
    ci_level: float
    n_cases: int
    replicates: NDArray[np.float64] = field(repr=False, compare=False)

    def __post_init__(self) -> None:
        reps = np.array(self.replicates, dtype=np.float64).reshape(-1)
        reps.flags.writeable = False
        object.__setattr__(self, "replicates", reps)

    @property
    def n_boot(self) -> int:
        return int(self.replicates.shape[0])

    def as_dict(self) -> dict[str, Any]:
        return {
            "mean": self.mean,
            "boot_mean": self.boot_mean,
            "se": self.se,
            "ci_lower": self.ci_lower,
            "ci_upper": self.ci_upper,
            "ci_level": self.ci_level,
            "n_cases": self.n_cases,
        }


@dataclass(frozen=True)
class CaseByCaseResult:
    """Aggregate of per-case fits and pooled bootstrap estimates.

    Validated on construction: every term of the per-case coefficient table
    has a pooled estimate carrying exactly ``boot.n_boot`` replicates.
    """

    estimates: dict[str, PooledEstimate]
    fits: dict[Any, CaseFit] = field(repr=False)
    spec: FormulaSpec
    case: str
    boot: BootConfig
    missing_policy: str = "fail"
    model_info: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check aggregation consistency; raise :class:`IncompleteAggregation`."""
        if not self.fits:
            raise IncompleteAggregation("Result holds no per-case fits.")
        table_terms = list(self.coef_table.columns)
        if list(self.estimates) != table_terms:
            missing = [t for t in table_terms if t not in self.estimates]
            extra = [t for t in self.estimates if t not in table_terms]
            msg = (
                "Pooled estimates do not match the per-case coefficient terms "
                f"(missing={missing}, unexpected={extra})."
            )
            raise IncompleteAggregation(msg)
        n_total = len(self.fits)
        for term, est in self.estimates.items():
            if est.n_boot != int(self.boot.n_boot):
                msg = f"Term '{term}' has {est.n_boot} replicates; expected {self.boot.n_boot}."
                raise IncompleteAggregation(msg)
            if not (0 < est.n_cases <= n_total):
                msg = f"Term '{term}' reports n_cases={est.n_cases} with {n_total} fitted cases."
                raise IncompleteAggregation(msg)

    # -- views ---------------------------------------------------------
    @property
    def terms(self) -> list[str]:
        return list(self.estimates)

    @property
    def cases(self) -> list[Any]:
        return list(self.fits)

    def _series(self, attr: str) -> pd.Series:
        return pd.Series(
            [getattr(self.estimates[t], attr) for t in self.terms],
            index=pd.Index(self.terms, name="term"),
            name=attr,
        )

    @property
    def mean_coef(self) -> pd.Series:
        return self._series("mean")

    @property
    def params(self) -> pd.Series:
        return self.mean_coef

    @property
    def boot_mean_coef(self) -> pd.Series:
        return self._series("boot_mean")

    @property
    def se_coef(self) -> pd.Series:
        return self._series("se")

    @property
    def se(self) -> pd.Series:
        return self.se_coef

    @property
    def ci_coef(self) -> pd.DataFrame:
        return pd.DataFrame(
            {"lower": self._series("ci_lower"), "upper": self._series("ci_upper")},
        )

    @property
    def n_cases(self) -> pd.Series:
        return self._series("n_cases")

    @property
    def n_obs(self) -> int:
        return int(sum(f.n_obs for f in self.fits.values()))

    @property
    def coef_table(self) -> pd.DataFrame:
        """Cases x terms table of per-case estimates."""
        table = pd.DataFrame([f.params for f in self.fits.values()])
        table.index = pd.Index(list(self.fits), name=self.case)
        table.columns.name = "term"
        return table

    def replicates(self, term: str) -> NDArray[np.float64]:
        if term not in self.estimates:
            msg = f"Unknown term '{term}'; available: {self.terms}."
            raise KeyError(msg)
        return self.estimates[term].replicates

    def summary_frame(self) -> pd.DataFrame:
        """One row per term with every pooled column."""
        frame = pd.DataFrame.from_dict(
            {t: self.estimates[t].as_dict() for t in self.terms}, orient="index",
        )
        frame.index.name = "term"
        return frame

    def glance(self) -> pd.DataFrame:
        """Per-case fit diagnostics, one row per case."""
        frame = pd.concat([f.glance() for f in self.fits.values()], ignore_index=True)
        frame.index = pd.Index(list(self.fits), name=self.case)
        return frame

    def __repr__(self) -> str:  # pragma: no cover - convenience only
        return (
            f"CaseByCaseResult(formula={self.spec.formula!r}, cases={len(self.fits)}, "
            f"terms={self.terms}, n_boot={self.boot.n_boot})"
        )


# ---------------------------------------------------------------------
# Base interface (no analytic critical values here)
# ---------------------------------------------------------------------
class BaseEstimator(ABC):
    """Abstract base class for all `olstraj` estimators.

    Principles
    ----------
    1) All linear algebra goes through `core.linalg`.
    2) Resampling goes through `core.bootstrap`; intervals through `core.inference`.
    3) No analytic p-values/critical values inside this class.
    """

    def __init__(self) -> None:
        self._results: Any = None

    @abstractmethod
    def fit(self, *args: Any, **kwargs: Any) -> Any:  # pragma: no cover - abstract
        """Fit the estimator and return its result container (abstract)."""
        ...

    # -- convenience accessors ----------------------------------------
    @property
    def results(self) -> Any:
        if self._results is None:
            msg = "Model has not been fitted yet. Call .fit() first."
            raise RuntimeError(msg)
        return self._results

    @property
    def params(self) -> pd.Series:
        return self.results.params

    @property
    def n_obs(self) -> int | None:
        return self.results.n_obs
