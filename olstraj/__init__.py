"""olstraj: longitudinal trajectories by case-by-case OLS.

Each case in a long-format panel gets its own OLS fit; coefficients are
pooled by their mean, with case-resampling bootstrap standard errors and
BCa confidence intervals.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "0.1.0"

__all__ = [
    "OLS",
    "BaseEstimator",
    "BootConfig",
    "BootstrapCancelled",
    "CaseByCaseOLS",
    "CaseByCaseResult",
    "CaseFit",
    "DegenerateBootstrap",
    "DegenerateCase",
    "FormulaSpec",
    "IncompleteAggregation",
    "InvalidInput",
    "OlstrajError",
    "PooledEstimate",
    "fit_case_by_case",
    "simulate_trajectories",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseEstimator": ("olstraj.estimators.base", "BaseEstimator"),
    "BootConfig": ("olstraj.estimators.base", "BootConfig"),
    "CaseByCaseResult": ("olstraj.estimators.base", "CaseByCaseResult"),
    "PooledEstimate": ("olstraj.estimators.base", "PooledEstimate"),
    "OLS": ("olstraj.estimators.ols", "OLS"),
    "CaseFit": ("olstraj.estimators.ols", "CaseFit"),
    "CaseByCaseOLS": ("olstraj.estimators.cbc", "CaseByCaseOLS"),
    "fit_case_by_case": ("olstraj.estimators.cbc", "fit_case_by_case"),
    "FormulaSpec": ("olstraj.utils.formula", "FormulaSpec"),
    "simulate_trajectories": ("olstraj.sim.montecarlo", "simulate_trajectories"),
    "OlstrajError": ("olstraj.exceptions", "OlstrajError"),
    "InvalidInput": ("olstraj.exceptions", "InvalidInput"),
    "DegenerateCase": ("olstraj.exceptions", "DegenerateCase"),
    "DegenerateBootstrap": ("olstraj.exceptions", "DegenerateBootstrap"),
    "IncompleteAggregation": ("olstraj.exceptions", "IncompleteAggregation"),
    "BootstrapCancelled": ("olstraj.exceptions", "BootstrapCancelled"),
}


def __getattr__(name: str) -> Any:
    """Lazily import public estimators and utilities on first access."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'olstraj' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Ensure dir() exposes lazily imported names."""
    return sorted(set(globals()) | set(__all__))
