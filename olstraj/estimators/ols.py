"""Ordinary Least Squares (OLS) estimator for a single case.

Pivoted-QR least squares with the rank tolerance of R's ``lm.fit``. A
rank-deficient design is an error rather than a silently dropped column, so
that every case reports the same coefficient set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Union

import numpy as np
import pandas as pd

from olstraj.core import linalg as la
from olstraj.exceptions import DegenerateCase, InvalidInput
from olstraj.utils.auto_constant import INTERCEPT_NAME, add_constant
from olstraj.utils.formula import FormulaSpec

from .base import BaseEstimator

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

__all__ = ["OLS", "CaseFit"]

_LOGGER = logging.getLogger(__name__)

ArrayLike = Union[pd.Series, np.ndarray]
MatrixLike = Union[pd.DataFrame, np.ndarray]


@dataclass(frozen=True)
class CaseFit:
    """OLS fit of one case.

    Attributes
    ----------
    case : Any
        Case key (``None`` for a stand-alone fit).
    params : pd.Series
        Coefficient estimates indexed by term, intercept first.
    fitted, resid : pd.Series
        Fitted values and residuals indexed by the original row labels.
    n_obs, rank, df_resid : int
        Observations used, numerical rank and residual degrees of freedom.
    sigma : float
        Residual standard error (``NaN`` without residual degrees of freedom).
    r_squared, adj_r_squared : float
        R-squared in the ``summary.lm`` convention (uncentred without intercept).

    """

    case: Any
    params: pd.Series
    fitted: pd.Series = field(repr=False)
    resid: pd.Series = field(repr=False)
    n_obs: int
    rank: int
    df_resid: int
    sigma: float
    r_squared: float
    adj_r_squared: float

    @property
    def terms(self) -> list[str]:
        return list(self.params.index)

    @property
    def index(self) -> pd.Index:
        return self.fitted.index

    def glance(self) -> pd.DataFrame:
        """One-row frame of fit diagnostics."""
        return pd.DataFrame(
            [
                {
                    "r_squared": self.r_squared,
                    "adj_r_squared": self.adj_r_squared,
                    "sigma": self.sigma,
                    "df_resid": self.df_resid,
                    "n_obs": self.n_obs,
                    "rank": self.rank,
                },
            ],
        )

    def augment(self) -> pd.DataFrame:
        """Fitted values and residuals per observation."""
        return pd.DataFrame({"fitted": self.fitted, "resid": self.resid})


class OLS(BaseEstimator):
    """Ordinary Least Squares regression for one case.

    Parameters
    ----------
    y : array-like, shape (n,) or (n, 1)
        Dependent variable.
    X : array-like, shape (n, p)
        Regressors. Can be numpy array or pandas DataFrame.
    add_const : bool, default=True
        If True, an ``(Intercept)`` column is placed FIRST (R convention).
    var_names : Sequence[str], optional
        Column names; defaults to ``X.columns`` or ``x0, x1, ...``.
    case : Any, optional
        Case key reported in errors and in the returned :class:`CaseFit`.
    index : pd.Index, optional
        Row labels for fitted values and residuals.

    Examples
    --------
    >>> import numpy as np
    >>> from olstraj.estimators.ols import OLS
    >>> x = np.arange(5.0)
    >>> fit = OLS(1.0 + 2.0 * x, x.reshape(-1, 1), var_names=["x"]).fit()
    >>> fit.params.round(6).tolist()
    [1.0, 2.0]

    """

    def __init__(  # noqa: PLR0913
        self,
        y: ArrayLike,
        X: MatrixLike,
        *,
        add_const: bool = True,
        var_names: Sequence[str] | None = None,
        case: Any = None,
        index: pd.Index | None = None,
    ) -> None:
        super().__init__()
        if var_names is None and isinstance(X, pd.DataFrame):
            var_names = list(X.columns)
        if index is None and isinstance(X, pd.DataFrame):
            index = X.index
        y_arr = np.asarray(y, dtype=np.float64).reshape(-1)
        X_arr = np.asarray(X, dtype=np.float64, order="C")
        if X_arr.ndim == 1:
            X_arr = X_arr.reshape(-1, 1)
        if X_arr.shape[0] != y_arr.shape[0]:
            msg = f"y has {y_arr.shape[0]} rows but X has {X_arr.shape[0]}."
            raise InvalidInput(msg)

        # Column ordering and names via add_constant (single source of truth)
        if add_const:
            X_aug, names_out, const_name = add_constant(X_arr, var_names)
        else:
            X_aug = X_arr
            names_out = (
                [str(v) for v in var_names]
                if var_names is not None
                else [f"x{i}" for i in range(X_arr.shape[1])]
            )
            if len(names_out) != X_arr.shape[1]:
                msg = f"var_names length ({len(names_out)}) does not match X columns ({X_arr.shape[1]})."
                raise InvalidInput(msg)
            const_name = INTERCEPT_NAME if INTERCEPT_NAME in names_out else None
        self._const_name = const_name
        self._var_names = list(names_out)
        self.case = case
        self.y_orig: NDArray[np.float64] = y_arr
        self.X_orig: NDArray[np.float64] = X_aug
        self._index = pd.RangeIndex(y_arr.shape[0]) if index is None else pd.Index(index)
        if len(self._index) != y_arr.shape[0]:
            raise InvalidInput("index length does not match the number of rows.")
        self._n_obs, self._n_features = self.X_orig.shape

    @classmethod
    def from_formula(
        cls,
        formula: str | FormulaSpec,
        data: pd.DataFrame,
        *,
        case: Any = None,
    ) -> OLS:
        """Build OLS model from formula; rows with missing values are dropped."""
        spec = FormulaSpec.coerce(formula)
        design = spec.design(data)
        model = cls(
            design.y,
            design.X,
            add_const=False,
            var_names=design.var_names,
            case=case,
            index=design.index,
        )
        return model

    @property
    def var_names(self) -> list[str]:
        return list(self._var_names)

    def _label(self) -> str:
        return "Design" if self.case is None else f"Case {self.case!r}"

    # ------------------------------------------------------------------
    def fit(self) -> CaseFit:
        """Fit by pivoted QR.

        Raises
        ------
        DegenerateCase
            Fewer observations than parameters, or a rank-deficient design.

        """
        n, k = self._n_obs, self._n_features
        if n < k or n == 0:
            msg = f"{self._label()} has {n} usable observation(s) for {k} parameter(s)."
            raise DegenerateCase(msg, case=self.case)
        if not (np.all(np.isfinite(self.X_orig)) and np.all(np.isfinite(self.y_orig))):
            msg = f"{self._label()} contains non-finite values (Inf/NaN) in y or X."
            raise InvalidInput(msg)

        coef, rank = la.qr_coef_r(self.X_orig, self.y_orig)
        beta = coef.reshape(-1)
        if rank < k:
            aliased = [nm for nm, b in zip(self._var_names, beta) if np.isnan(b)]
            msg = f"{self._label()} has a rank-deficient design (rank {rank} < {k}); aliased: {aliased}."
            raise DegenerateCase(msg, case=self.case)
        if not np.all(np.isfinite(beta)):
            _LOGGER.debug("%s produced non-finite estimates", self._label())

        fitted = la.dot(self.X_orig, beta.reshape(-1, 1)).reshape(-1)
        resid = self.y_orig - fitted
        df_resid = int(n - rank)
        rss = float(np.sum(resid * resid))
        sigma = float(np.sqrt(rss / df_resid)) if df_resid > 0 else float("nan")
        r2, adj_r2 = self._r_squared(fitted, rss, n, df_resid)

        self._results = CaseFit(
            case=self.case,
            params=pd.Series(beta, index=self._var_names, name="coef"),
            fitted=pd.Series(fitted, index=self._index, name="fitted"),
            resid=pd.Series(resid, index=self._index, name="resid"),
            n_obs=int(n),
            rank=int(rank),
            df_resid=df_resid,
            sigma=sigma,
            r_squared=r2,
            adj_r_squared=adj_r2,
        )
        _LOGGER.debug("%s: n=%d rank=%d sigma=%.6g", self._label(), n, rank, sigma)
        return self._results

    def _r_squared(
        self, fitted: NDArray[np.float64], rss: float, n: int, df_resid: int,
    ) -> tuple[float, float]:
        has_int = self._const_name is not None
        centred = fitted - float(np.mean(fitted)) if has_int else fitted
        mss = float(np.sum(centred * centred))
        total = mss + rss
        if not total > 0.0:
            return float("nan"), float("nan")
        r2 = mss / total
        if df_resid <= 0:
            return r2, float("nan")
        adj = 1.0 - (1.0 - r2) * ((n - int(has_int)) / df_resid)
        return r2, adj
