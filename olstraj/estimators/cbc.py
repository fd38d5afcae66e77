"""Case-by-case OLS with pooled bootstrap inference.

Every case (rows sharing one case-key value) receives its own OLS fit with a
common formula. Per-case coefficients are pooled by their arithmetic mean;
uncertainty comes from resampling cases with replacement, giving a bootstrap
mean, a bootstrap standard error and a BCa confidence interval per term.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import numpy as np
import pandas as pd

from olstraj.core import bootstrap as bt
from olstraj.core import cases as cs
from olstraj.core import inference as inf
from olstraj.exceptions import DegenerateCase, InvalidInput
from olstraj.utils.formula import FormulaSpec

from .base import BaseEstimator, BootConfig, CaseByCaseResult, PooledEstimate
from .ols import OLS, CaseFit

if TYPE_CHECKING:
    import threading

__all__ = ["CaseByCaseOLS", "fit_case_by_case", "pool_and_bootstrap"]

_LOGGER = logging.getLogger(__name__)


def _random_source(boot: BootConfig, rng: np.random.Generator | None) -> Any:
    if rng is None:
        return boot.seed
    if not isinstance(rng, np.random.Generator):
        msg = f"rng must be a numpy.random.Generator; got {type(rng).__name__}."
        raise InvalidInput(msg)
    if boot.seed is not None:
        raise InvalidInput("Provide either a seed or an rng, not both.")
    return rng


def pool_and_bootstrap(
    coef_table: pd.DataFrame,
    *,
    boot: BootConfig | None = None,
    missing_policy: str = "fail",
    rng: np.random.Generator | None = None,
    cancel: threading.Event | None = None,
) -> dict[str, PooledEstimate]:
    """Pool a cases x terms coefficient table and bootstrap every term.

    Parameters
    ----------
    coef_table : pd.DataFrame
        Per-case estimates, one row per case in fixed case order.
    boot : BootConfig, optional
        Replicates, seed, confidence level, workers and chunk size.
    missing_policy : {"fail", "skip"}
        See :func:`olstraj.core.cases.pool_coefficients`.
    rng : numpy.random.Generator, optional
        Root stream used instead of ``boot.seed``.
    cancel : threading.Event, optional
        Checked between replicate chunks.

    Returns
    -------
    dict
        ``term -> PooledEstimate`` in table column order.

    Raises
    ------
    DegenerateCase
        Missing estimates under ``"fail"`` or fewer than two usable cases.
    DegenerateBootstrap
        BCa interval undefined for a term.
    BootstrapCancelled
        ``cancel`` was set during resampling.

    """
    boot = BootConfig() if boot is None else boot
    source = _random_source(boot, rng)
    pooled = cs.pool_coefficients(coef_table, missing_policy=missing_policy)
    replicates = bt.bootstrap_terms(
        pooled.estimates,
        boot.n_boot,
        rng=source,
        n_jobs=boot.n_jobs,
        chunk_size=boot.chunk_size,
        cancel=cancel,
    )

    out: dict[str, PooledEstimate] = {}
    for term in pooled.terms:
        reps = replicates[term]
        theta = float(pooled.means[term])
        lower, upper = inf.bca_interval(
            reps, theta, pooled.estimates[term], boot.ci_level, term=term,
        )
        out[term] = PooledEstimate(
            term=term,
            mean=theta,
            boot_mean=float(bt.bootstrap_mean(reps)),
            se=float(bt.bootstrap_se(reps)),
            ci_lower=lower,
            ci_upper=upper,
            ci_level=boot.ci_level,
            n_cases=int(pooled.n_cases[term]),
            replicates=reps,
        )
    return out


class CaseByCaseOLS(BaseEstimator):
    """Case-by-case ordinary least squares.

    Parameters
    ----------
    data : pd.DataFrame
        Long-format panel, one row per observation. The index must be unique.
    formula : str or FormulaSpec
        Model shared by every case, e.g. ``"outs ~ vals"``.
    case : str
        Column holding the case key.

    Examples
    --------
    >>> from olstraj.estimators.cbc import CaseByCaseOLS
    >>> from olstraj.estimators.base import BootConfig
    >>> from olstraj.sim.montecarlo import simulate_trajectories
    >>> panel = simulate_trajectories(n_cases=30, coefs=(10.0, 2.0), case_sd=0.5)
    >>> model = CaseByCaseOLS.from_formula("y ~ time", panel, case="id")
    >>> res = model.fit(boot=BootConfig(n_boot=1000, seed=1))
    >>> res.terms
    ['(Intercept)', 'time']

    Notes
    -----
    - Cases are enumerated in order of first appearance.
    - Rows with a missing response or predictor are dropped per case.
    - A case with fewer usable rows than parameters, a rank-deficient case,
      or a case whose coefficient names differ from the others aborts the fit.
    - Inference is bootstrap-only; no analytic standard errors are computed.

    """

    def __init__(self, data: pd.DataFrame, formula: str | FormulaSpec, case: str) -> None:
        super().__init__()
        if not isinstance(data, pd.DataFrame):
            msg = f"data must be a pandas DataFrame; got {type(data).__name__}."
            raise InvalidInput(msg)
        if data.shape[0] == 0:
            raise InvalidInput("data has no rows.")
        if data.index.has_duplicates:
            raise InvalidInput("Input DataFrame index must be unique for deterministic row mapping.")
        if not isinstance(case, str) or case not in data.columns:
            msg = f"Case column {case!r} not found in data."
            raise InvalidInput(msg)
        self.spec = FormulaSpec.coerce(formula)
        if case in self.spec.variables:
            msg = f"Case column '{case}' cannot also appear in the formula."
            raise InvalidInput(msg)
        self.spec.validate(data)
        self.data = data
        self.case = case
        self.partition = cs.partition_cases(data[case], label=case)

    @classmethod
    def from_formula(
        cls, formula: str | FormulaSpec, data: pd.DataFrame, *, case: str,
    ) -> CaseByCaseOLS:
        """Build the estimator from a formula string or :class:`FormulaSpec`."""
        return cls(data, formula, case)

    @property
    def n_cases(self) -> int:
        return self.partition.n_cases

    # ------------------------------------------------------------------
    def _fit_one(self, key: Any, rows: np.ndarray) -> CaseFit:
        frame = self.data.iloc[rows]
        try:
            model = OLS.from_formula(self.spec, frame, case=key)
        except InvalidInput as e:
            msg = f"Case {key!r}: {e}"
            raise DegenerateCase(msg, case=key) from e
        return model.fit()

    def fit_cases(self, *, n_jobs: int | None = None) -> dict[Any, CaseFit]:
        """Fit every case; results keyed by case in first-occurrence order.

        Raises
        ------
        DegenerateCase
            Fewer than two cases, a case that cannot be fitted, or a case
            whose coefficient names differ from the first case's.

        """
        if self.n_cases < cs.MIN_CASES:
            msg = (
                f"Found {self.n_cases} case(s) in '{self.case}'; at least "
                f"{cs.MIN_CASES} are required for a bootstrap standard error."
            )
            only = self.partition.keys[0] if self.partition.keys else None
            raise DegenerateCase(msg, case=only)

        workers = min(bt.resolve_n_jobs(n_jobs), self.n_cases)
        items = list(self.partition)
        if workers == 1:
            fitted = [self._fit_one(key, rows) for key, rows in items]
        else:
            executor = ThreadPoolExecutor(max_workers=workers)
            try:
                futures = [executor.submit(self._fit_one, key, rows) for key, rows in items]
                # Collect in case order so the first failing case is reported.
                fitted = [f.result() for f in futures]
            finally:
                executor.shutdown(wait=True, cancel_futures=True)

        reference = fitted[0].terms
        for fit in fitted[1:]:
            if fit.terms != reference:
                msg = (
                    f"Case {fit.case!r} produces terms {fit.terms}, which differ from "
                    f"{reference} of case {fitted[0].case!r}."
                )
                raise DegenerateCase(msg, case=fit.case)
        return {fit.case: fit for fit in fitted}

    def fit(
        self,
        *,
        boot: BootConfig | None = None,
        missing_policy: str = "fail",
        rng: np.random.Generator | None = None,
        cancel: threading.Event | None = None,
    ) -> CaseByCaseResult:
        """Fit all cases, pool coefficients and bootstrap each term.

        Parameters
        ----------
        boot : BootConfig, optional
            Defaults to ``BootConfig()`` (4000 replicates, 95% level).
        missing_policy : {"fail", "skip"}
            Handling of missing per-case estimates during pooling.
        rng : numpy.random.Generator, optional
            Root random stream; mutually exclusive with ``boot.seed``.
        cancel : threading.Event, optional
            Cooperative cancellation flag checked between replicate chunks.

        Returns
        -------
        CaseByCaseResult

        """
        boot = BootConfig() if boot is None else boot
        policy = cs.normalize_missing_policy(missing_policy)
        _random_source(boot, rng)
        _LOGGER.info(
            "Case-by-case fit of %r: %d cases, %d replicates",
            self.spec.formula, self.n_cases, boot.n_boot,
        )
        fits = self.fit_cases(n_jobs=boot.n_jobs)
        table = pd.DataFrame([f.params for f in fits.values()])
        table.index = pd.Index(list(fits), name=self.case)
        estimates = pool_and_bootstrap(
            table, boot=boot, missing_policy=policy, rng=rng, cancel=cancel,
        )
        self._results = CaseByCaseResult(
            estimates=estimates,
            fits=fits,
            spec=self.spec,
            case=self.case,
            boot=boot,
            missing_policy=policy,
            model_info={
                "Estimator": "CaseByCaseOLS",
                "SE_Origin": "bootstrap",
                "CI": "bca",
                "B": int(boot.n_boot),
                "n_cases": len(fits),
            },
        )
        _LOGGER.info(
            "Case-by-case fit done: %d terms pooled over %d cases",
            len(estimates), len(fits),
        )
        return self._results


def fit_case_by_case(  # noqa: PLR0913
    data: pd.DataFrame,
    formula: str | FormulaSpec,
    case: str,
    n_bootstrap: int = bt.DEFAULT_BOOTSTRAP_ITERATIONS,
    ci_level: float = 0.95,
    missing_policy: str = "fail",
    random_seed: int | None = None,
    *,
    rng: np.random.Generator | None = None,
    n_jobs: int | None = None,
    cancel: threading.Event | None = None,
) -> CaseByCaseResult:
    """Fit ``formula`` separately for each case and pool the coefficients.

    Parameters
    ----------
    data : pd.DataFrame
        Long-format panel.
    formula : str or FormulaSpec
        Shared model, e.g. ``"outs ~ vals"``.
    case : str
        Case-key column.
    n_bootstrap : int, default 4000
        Case-resampling replicates per term.
    ci_level : float, default 0.95
        BCa coverage; ``95`` is read as ``0.95``.
    missing_policy : {"fail", "skip"}, default "fail"
        ``"skip"`` excludes missing per-case estimates from a term's pooling.
    random_seed : int, optional
        Seed of the root random stream.
    rng : numpy.random.Generator, optional
        Root random stream (instead of ``random_seed``).
    n_jobs : int, optional
        Worker threads; defaults to ``OLSTRAJ_N_JOBS`` or 1.
    cancel : threading.Event, optional
        Cooperative cancellation flag.

    Returns
    -------
    CaseByCaseResult

    Examples
    --------
    >>> from olstraj.sim.montecarlo import simulate_example_panel
    >>> panel = simulate_example_panel(seed=42)
    >>> res = fit_case_by_case(panel, "outs ~ vals", "ids", random_seed=42)
    >>> list(res.ci_coef.columns)
    ['lower', 'upper']

    """
    boot = BootConfig(n_boot=n_bootstrap, seed=random_seed, ci_level=ci_level, n_jobs=n_jobs)
    model = CaseByCaseOLS.from_formula(formula, data, case=case)
    return model.fit(boot=boot, missing_policy=missing_policy, rng=rng, cancel=cancel)
