"""Estimator exports with lazy loading.

Public estimator classes and result containers. Uses lazy imports to avoid
circular dependencies.
"""
from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = [
    "OLS",
    "BaseEstimator",
    "BootConfig",
    "CaseByCaseOLS",
    "CaseByCaseResult",
    "CaseFit",
    "PooledEstimate",
    "fit_case_by_case",
    "pool_and_bootstrap",
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
    "pool_and_bootstrap": ("olstraj.estimators.cbc", "pool_and_bootstrap"),
}


def __getattr__(name: str) -> Any:
    """Lazily import estimator classes and shared containers."""
    if name in _LAZY_IMPORTS:
        module_name, attr_name = _LAZY_IMPORTS[name]
        module = import_module(module_name)
        attr = getattr(module, attr_name)
        globals()[name] = attr
        return attr
    raise AttributeError(f"module 'olstraj.estimators' has no attribute '{name}'")


def __dir__() -> list[str]:
    """Expose lazily loaded attributes to ``dir()``."""
    return sorted(set(globals()) | set(__all__))
