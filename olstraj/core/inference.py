"""Bias-corrected and accelerated (BCa) bootstrap intervals.

The interval follows the ``boot`` package conventions in R: the bias
correction is the normal quantile of the share of replicates strictly below
the estimate, the acceleration comes from leave-one-out jackknife deviations,
and the adjusted tail levels are mapped back onto the replicates with
normal-scale interpolation of order statistics.
"""

from __future__ import annotations

import logging
import warnings
from typing import TYPE_CHECKING

import numpy as np
from scipy.stats import norm

from olstraj.core.bootstrap import jackknife_means
from olstraj.exceptions import DegenerateBootstrap

if TYPE_CHECKING:
    from numpy.typing import NDArray

__all__ = [
    "acceleration",
    "bca_interval",
    "bca_levels",
    "bias_correction",
    "norm_inter",
]

_LOGGER = logging.getLogger(__name__)


def _term(term: str | None) -> str:
    return "" if term is None else f" for term '{term}'"


def bias_correction(
    replicates: NDArray[np.float64], theta_hat: float, *, term: str | None = None,
) -> float:
    """``z0 = Phi^-1(#{t* < theta_hat} / B)``.

    Raises
    ------
    DegenerateBootstrap
        If none or all of the replicates lie below ``theta_hat``.

    """
    t = np.asarray(replicates, dtype=np.float64).reshape(-1)
    if t.size == 0:
        raise ValueError("bias_correction requires at least one replicate.")
    p = float(np.count_nonzero(t < float(theta_hat))) / float(t.size)
    z0 = float(norm.ppf(p))
    if not np.isfinite(z0):
        msg = (
            f"Bias correction is infinite{_term(term)}: {p:.0%} of the replicates "
            "fall below the estimate."
        )
        raise DegenerateBootstrap(msg, term=term)
    return z0


def acceleration(jackknife: NDArray[np.float64], *, term: str | None = None) -> float:
    """Acceleration ``a = sum d^3 / (6 (sum d^2)^{3/2})``, ``d_i = mean - theta_(i)``.

    Raises
    ------
    DegenerateBootstrap
        If the jackknife values have no spread.

    """
    jack = np.asarray(jackknife, dtype=np.float64).reshape(-1)
    d = float(np.mean(jack)) - jack
    ss = float(np.sum(d * d))
    if not (ss > 0.0 and np.isfinite(ss)):
        msg = f"Acceleration is undefined{_term(term)}: jackknife estimates have zero variance."
        raise DegenerateBootstrap(msg, term=term)
    return float(np.sum(d**3)) / (6.0 * ss**1.5)


def bca_levels(
    z0: float, a: float, ci_level: float, *, term: str | None = None,
) -> tuple[float, float]:
    """Adjusted lower/upper tail probabilities ``Phi(z0 + (z0+z)/(1 - a(z0+z)))``.

    With ``z0 = a = 0`` these reduce to the percentile levels
    ``(1 - ci_level)/2`` and ``(1 + ci_level)/2``.
    """
    level = float(ci_level)
    if not (0.0 < level < 1.0):
        raise ValueError("ci_level must lie in (0, 1).")
    z = norm.ppf(np.array([(1.0 - level) / 2.0, (1.0 + level) / 2.0]))
    shifted = z0 + z
    denom = 1.0 - a * shifted
    if np.any(denom <= 0.0):
        msg = (
            f"BCa adjustment is not monotone{_term(term)} "
            f"(z0={z0:.4g}, a={a:.4g}, level={level:g})."
        )
        raise DegenerateBootstrap(msg, term=term)
    adj = norm.cdf(z0 + shifted / denom)
    return float(adj[0]), float(adj[1])


def norm_inter(
    replicates: NDArray[np.float64], alpha: NDArray[np.float64] | float,
) -> NDArray[np.float64]:
    """Quantiles of ``replicates`` at levels ``alpha`` on the normal scale.

    For ``B`` sorted replicates the rank is ``(B+1) * alpha``. Integer ranks
    use the order statistic directly; ranks below 1 or at/above ``B`` use the
    extreme order statistic (with a warning); otherwise the value is
    interpolated between neighbouring order statistics linearly in
    ``Phi^-1``.
    """
    t = np.asarray(replicates, dtype=np.float64).reshape(-1)
    t = np.sort(t[np.isfinite(t)])
    B = int(t.size)
    if B == 0:
        raise ValueError("norm_inter requires at least one finite replicate.")
    levels = np.atleast_1d(np.asarray(alpha, dtype=np.float64))
    rk = (B + 1) * levels
    if not np.all((rk > 1) & (rk < B)):
        warnings.warn(
            "extreme order statistics used as endpoints", RuntimeWarning, stacklevel=2,
        )
    k = np.trunc(rk).astype(np.int64)
    out = np.empty(levels.shape, dtype=np.float64)
    for i, (ki, ri, ai) in enumerate(zip(k, rk, levels)):
        if ki <= 0:
            out[i] = t[0]
        elif ki >= B:
            out[i] = t[B - 1]
        elif ki == ri:
            out[i] = t[ki - 1]
        else:
            lo = norm.ppf(ki / (B + 1))
            hi = norm.ppf((ki + 1) / (B + 1))
            tk, tk1 = t[ki - 1], t[ki]
            out[i] = tk + (norm.ppf(ai) - lo) / (hi - lo) * (tk1 - tk)
    return out


def bca_interval(
    replicates: NDArray[np.float64],
    theta_hat: float,
    estimates: NDArray[np.float64],
    ci_level: float = 0.95,
    *,
    term: str | None = None,
) -> tuple[float, float]:
    """BCa confidence interval for the mean of ``estimates``.

    Parameters
    ----------
    replicates : (B,) array
        Case-resampled means.
    theta_hat : float
        Mean of ``estimates`` (the pooled point estimate).
    estimates : (M,) array
        Case estimates; their leave-one-out means give the acceleration.
    ci_level : float
        Coverage probability in (0, 1).
    term : str, optional
        Term name for error messages.

    Returns
    -------
    (lower, upper), both within ``[min(replicates), max(replicates)]``.

    Raises
    ------
    DegenerateBootstrap
        Zero variance of the estimates, infinite bias correction, or a
        non-monotone adjustment.

    """
    x = np.asarray(estimates, dtype=np.float64).reshape(-1)
    if x.size < 2 or float(np.ptp(x)) == 0.0:
        msg = f"BCa interval is undefined{_term(term)}: case estimates have zero variance."
        raise DegenerateBootstrap(msg, term=term)
    z0 = bias_correction(replicates, theta_hat, term=term)
    a = acceleration(jackknife_means(x), term=term)
    lo_level, hi_level = bca_levels(z0, a, ci_level, term=term)
    lower, upper = norm_inter(replicates, np.array([lo_level, hi_level]))
    _LOGGER.debug(
        "BCa%s: z0=%.4g a=%.4g levels=(%.4g, %.4g)", _term(term), z0, a, lo_level, hi_level,
    )
    return float(lower), float(upper)
