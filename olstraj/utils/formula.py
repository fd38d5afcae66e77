"""Formula handling for case-by-case regression.

Patsy-based parsing of R-style model formulas (``y ~ x``, ``y ~ 0 + x``,
``Ratio ~ Year + I(Year**2)``) and per-case design construction. Rows with a
missing response or predictor are dropped, as ``model.frame`` does in R, and
the intercept is named ``(Intercept)`` and placed first.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
import patsy
import patsy.builtins

from olstraj.exceptions import InvalidInput
from olstraj.utils.auto_constant import add_constant

if TYPE_CHECKING:  # pragma: no cover - typing only
    from collections.abc import Iterable

__all__ = ["CaseDesign", "FormulaSpec", "formula_variables"]

_LOGGER = logging.getLogger(__name__)

# Names that are resolved by patsy or the evaluation namespace rather than the data.
_NAMESPACE_NAMES = frozenset(patsy.builtins.__all__) | {"np", "numpy"}


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for it in items:
        if it not in seen:
            seen.add(it)
            out.append(it)
    return out


def formula_variables(code: str) -> list[str]:
    """Data columns referenced by one patsy factor expression.

    Function names, attribute bases (``np.log``) and patsy builtins are not
    columns; ``Q("odd name")`` contributes its quoted name.
    """
    try:
        tree = ast.parse(code.strip(), mode="eval")
    except SyntaxError as e:
        msg = f"Cannot parse formula expression {code!r}."
        raise InvalidInput(msg) from e
    callables: set[int] = set()
    quoted: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Call):
            callables.add(id(node.func))
            if isinstance(node.func, ast.Name) and node.func.id == "Q" and node.args:
                arg = node.args[0]
                if isinstance(arg, ast.Constant) and isinstance(arg.value, str):
                    quoted.append(arg.value)
        elif isinstance(node, ast.Attribute):
            callables.add(id(node.value))
    names = [
        node.id
        for node in ast.walk(tree)
        if isinstance(node, ast.Name)
        and id(node) not in callables
        and node.id not in _NAMESPACE_NAMES
    ]
    return _dedupe([*names, *quoted])


@dataclass(frozen=True)
class CaseDesign:
    """Response vector and design matrix for one set of rows."""

    y: np.ndarray
    X: np.ndarray
    var_names: list[str]
    index: pd.Index
    n_dropped: int = 0

    @property
    def n_obs(self) -> int:
        return int(self.X.shape[0])


@dataclass(frozen=True)
class FormulaSpec:
    """Model specification shared by every case.

    Attributes
    ----------
    response : str
        Response expression (usually a column name).
    terms : tuple[str, ...]
        Right-hand-side term names in formula order, excluding the intercept.
    include_intercept : bool
        Whether an ``(Intercept)`` column is fitted.
    formula : str
        Formula text; rebuilt from the other fields when not given.

    """

    response: str
    terms: tuple[str, ...] = ()
    include_intercept: bool = True
    formula: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not str(self.response).strip():
            raise InvalidInput("Formula response must be a non-empty expression.")
        object.__setattr__(self, "terms", tuple(str(t) for t in self.terms))
        if not self.terms and not self.include_intercept:
            raise InvalidInput("Formula has no predictors and no intercept; nothing to fit.")
        if not self.formula:
            object.__setattr__(self, "formula", f"{self.response} ~ {self.rhs}")

    # ------------------------------------------------------------------
    @classmethod
    def parse(cls, formula: str) -> FormulaSpec:
        """Parse an R/patsy formula string.

        Raises
        ------
        InvalidInput
            Missing ``~``, not exactly one response, or a patsy syntax error.

        """
        if not isinstance(formula, str) or "~" not in formula:
            msg = f"Formula must be a string containing '~'; got {formula!r}."
            raise InvalidInput(msg)
        try:
            desc = patsy.ModelDesc.from_formula(formula)
        except patsy.PatsyError as e:
            msg = f"Invalid formula {formula!r}: {e}"
            raise InvalidInput(msg) from e
        lhs = [t for t in desc.lhs_termlist if t != patsy.INTERCEPT]
        if len(lhs) != 1 or len(lhs[0].factors) != 1:
            msg = f"Formula {formula!r} must have exactly one response expression."
            raise InvalidInput(msg)
        response = lhs[0].factors[0].code
        terms = tuple(t.name() for t in desc.rhs_termlist if t != patsy.INTERCEPT)
        include_intercept = patsy.INTERCEPT in desc.rhs_termlist
        return cls(
            response=response,
            terms=terms,
            include_intercept=include_intercept,
            formula=formula.strip(),
        )

    @classmethod
    def coerce(cls, formula: str | FormulaSpec) -> FormulaSpec:
        if isinstance(formula, cls):
            return formula
        return cls.parse(formula)

    # ------------------------------------------------------------------
    @property
    def rhs(self) -> str:
        if not self.terms:
            return "1"
        body = " + ".join(self.terms)
        return body if self.include_intercept else f"0 + {body}"

    @property
    def variables(self) -> list[str]:
        """Every data column referenced by the response or the predictors."""
        try:
            desc = patsy.ModelDesc.from_formula(f"{self.response} ~ {self.rhs}")
        except patsy.PatsyError as e:
            msg = f"Invalid formula {self.formula!r}: {e}"
            raise InvalidInput(msg) from e
        found = formula_variables(self.response)
        for term in desc.rhs_termlist:
            for factor in term.factors:
                found.extend(formula_variables(factor.code))
        return _dedupe(found)

    def validate(self, data: pd.DataFrame) -> None:
        """Check that every referenced column exists and the design can be built.

        Raises
        ------
        InvalidInput
            Unknown columns or an expression patsy cannot evaluate.

        """
        missing = [v for v in self.variables if v not in data.columns]
        if missing:
            msg = f"Formula variables not found in data: {missing}."
            raise InvalidInput(msg)
        self.design(data)

    def design(self, frame: pd.DataFrame) -> CaseDesign:
        """Build ``(y, X)`` for ``frame`` with missing rows dropped.

        Raises
        ------
        InvalidInput
            If patsy fails to evaluate the formula on ``frame``.

        """
        na = patsy.NAAction(on_NA="drop")
        try:
            y_df, X_df = patsy.dmatrices(
                f"{self.response} ~ {self.rhs}", frame, NA_action=na, return_type="dataframe",
            )
        except (patsy.PatsyError, ValueError) as e:
            # A data column named "Intercept" collides with patsy's own column
            msg = f"Cannot build design for formula {self.formula!r}: {e}"
            raise InvalidInput(msg) from e
        if y_df.shape[1] != 1:
            msg = f"Response {self.response!r} must evaluate to a single numeric column."
            raise InvalidInput(msg)
        try:
            X, names, _ = add_constant(
                X_df.to_numpy(dtype=np.float64),
                list(X_df.columns),
                include_intercept=self.include_intercept,
            )
        except ValueError as e:
            msg = f"Cannot build design for formula {self.formula!r}: {e}"
            raise InvalidInput(msg) from e
        n_dropped = int(frame.shape[0] - X_df.shape[0])
        if n_dropped:
            _LOGGER.debug("Dropped %d row(s) with missing values", n_dropped)
        return CaseDesign(
            y=y_df.to_numpy(dtype=np.float64).reshape(-1),
            X=np.asarray(X, dtype=np.float64, order="C"),
            var_names=names,
            index=X_df.index,
            n_dropped=n_dropped,
        )
