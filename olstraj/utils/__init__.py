# olstraj/utils/__init__.py
"""Utility functions module."""
from .auto_constant import INTERCEPT_NAME, add_constant
from .formula import CaseDesign, FormulaSpec, formula_variables

__all__ = [
    "INTERCEPT_NAME",
    "CaseDesign",
    "FormulaSpec",
    "add_constant",
    "formula_variables",
]
