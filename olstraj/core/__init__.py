# olstraj/core/__init__.py
"""Core computational modules for olstraj."""
from . import bootstrap, cases, inference, linalg

__all__ = ["bootstrap", "cases", "inference", "linalg"]
