"""Error taxonomy for case-by-case regression.

Every failure raised by the public entry points derives from
:class:`OlstrajError`. The concrete classes also inherit the builtin exception
closest in meaning so that callers catching ``ValueError`` or ``RuntimeError``
keep working.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "BootstrapCancelled",
    "DegenerateBootstrap",
    "DegenerateCase",
    "IncompleteAggregation",
    "InvalidInput",
    "OlstrajError",
]


class OlstrajError(Exception):
    """Base class for all olstraj errors."""


class InvalidInput(OlstrajError, ValueError):
    """Bad dataset, formula, column name or option value."""


class DegenerateCase(OlstrajError, ValueError):
    """A case (or the case set) cannot support the model.

    Parameters
    ----------
    message : str
        Human-readable description.
    case : Any, optional
        Key of the offending case, when one can be named.

    """

    def __init__(self, message: str, *, case: Any = None) -> None:
        super().__init__(message)
        self.case = case


class DegenerateBootstrap(OlstrajError, ArithmeticError):
    """The BCa interval for a term cannot be computed."""

    def __init__(self, message: str, *, term: str | None = None) -> None:
        super().__init__(message)
        self.term = term


class IncompleteAggregation(OlstrajError, RuntimeError):
    """Internal consistency failure while assembling the aggregate result."""


class BootstrapCancelled(OlstrajError, RuntimeError):
    """Cooperative cancellation was requested during resampling."""
