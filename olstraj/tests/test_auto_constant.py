import numpy as np
import pytest

from olstraj.utils.auto_constant import add_constant


def test_reserved_name_conflict_for_non_constant_column() -> None:
    # First column is non-constant but uses R's reserved intercept name.
    X = np.column_stack(
        [np.arange(5, dtype=float), np.ones(5, dtype=float)],
    )

    with pytest.raises(ValueError, match="reserved"):
        add_constant(X, var_names=["(Intercept)", "z"])


def test_reserved_name_conflict_without_intercept() -> None:
    X = np.ones((5, 1))
    with pytest.raises(ValueError, match="reserved"):
        add_constant(X, var_names=["(Intercept)"], include_intercept=False)


def test_allows_reserved_name_if_it_is_the_constant() -> None:
    X = np.column_stack(
        [np.ones(5, dtype=float), np.arange(5, dtype=float)],
    )

    Xo, names, const_name = add_constant(X, var_names=["(Intercept)", "x"])

    assert const_name == "(Intercept)"
    assert names == ["(Intercept)", "x"]
    assert np.allclose(Xo[:, 0], 1.0)


def test_patsy_intercept_is_renamed_and_moved_first() -> None:
    X = np.column_stack(
        [np.arange(5, dtype=float), np.ones(5, dtype=float), np.arange(5, dtype=float) ** 2],
    )

    Xo, names, _ = add_constant(X, var_names=["x", "Intercept", "x2"])

    assert names == ["(Intercept)", "x", "x2"]
    np.testing.assert_array_equal(Xo[:, 0], np.ones(5))
    np.testing.assert_array_equal(Xo[:, 1], np.arange(5.0))


def test_new_intercept_added_in_front() -> None:
    X = np.arange(6, dtype=float).reshape(3, 2)
    Xo, names, const_name = add_constant(X)
    assert names == ["(Intercept)", "x0", "x1"]
    assert const_name == "(Intercept)"
    assert Xo.shape == (3, 3)


def test_other_constant_columns_are_kept() -> None:
    # R keeps a user constant; the fit reports it as aliased.
    X = np.column_stack([np.full(4, 2.0), np.arange(4, dtype=float)])
    Xo, names, _ = add_constant(X, var_names=["two", "x"])
    assert names == ["(Intercept)", "two", "x"]
    assert Xo.shape == (4, 3)


def test_no_intercept_passthrough() -> None:
    X = np.arange(4, dtype=float).reshape(2, 2)
    Xo, names, const_name = add_constant(X, var_names=["a", "b"], include_intercept=False)
    assert const_name is None
    assert names == ["a", "b"]
    np.testing.assert_array_equal(Xo, X)


def test_duplicate_names_rejected() -> None:
    with pytest.raises(ValueError, match="Duplicate"):
        add_constant(np.ones((2, 2)), var_names=["a", "a"])


def test_name_length_mismatch() -> None:
    with pytest.raises(ValueError, match="does not match"):
        add_constant(np.ones((2, 2)), var_names=["a"])
