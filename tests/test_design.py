"""
Design matrix construction and replay.
"""

import numpy as np
import pandas as pd
import pytest

from pyformula import DesignInfo, DesignMatrixBuilder
from pyformula.exceptions import (
    ColumnTypeError,
    DimensionMismatchError,
    UnseenLevelError,
)


@pytest.fixture
def grid():
    return pd.DataFrame(
        {
            "y": np.arange(9, dtype=float),
            "x": [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0],
            "f": ["a", "b", "c"] * 3,
            "g": ["x"] * 3 + ["y"] * 3 + ["z"] * 3,
            "dose": [1, 2, 3, 1, 2, 3, 1, 2, 3],
        }
    )


class TestColumns:
    """Column names and values."""

    def test_numeric_plus_factor(self, crickets):
        """Intercept, numeric column and k-1 indicators, in that order."""
        builder = DesignMatrixBuilder("rate ~ temp + species", reference={"species": "exclamationis"})
        design = builder.fit_transform(crickets)
        assert design.columns == ("(Intercept)", "temp", "species[niveus]")
        assert design.shape == (len(crickets), 3)
        np.testing.assert_array_equal(design.values[:, 0], 1.0)
        np.testing.assert_array_equal(design.values[:, 1], crickets["temp"].to_numpy())
        np.testing.assert_array_equal(
            design.values[:, 2], (crickets["species"] == "niveus").to_numpy(dtype=float)
        )

    def test_numeric_by_factor_interaction(self, crickets):
        """Numeric by factor gives one product per indicator."""
        design = DesignMatrixBuilder("rate ~ temp * species").fit_transform(crickets)
        assert design.columns == ("(Intercept)", "temp", "species[niveus]", "temp:species[niveus]")
        np.testing.assert_array_equal(design.values[:, 3], design.values[:, 1] * design.values[:, 2])
        assert design.term_slices["temp:species"] == slice(3, 4)

    def test_factor_by_factor_first_varies_fastest(self, grid):
        """Factor by factor columns vary the first factor fastest."""
        design = DesignMatrixBuilder("y ~ f:g").fit_transform(grid)
        assert design.columns == (
            "(Intercept)",
            "f[b]:g[y]",
            "f[c]:g[y]",
            "f[b]:g[z]",
            "f[c]:g[z]",
        )
        frame = design.to_frame()
        expected = ((grid["f"] == "c") & (grid["g"] == "z")).to_numpy(dtype=float)
        np.testing.assert_array_equal(frame["f[c]:g[z]"].to_numpy(), expected)

    def test_no_intercept(self, grid):
        """Removing the intercept removes its column only."""
        design = DesignMatrixBuilder("y ~ x - 1").fit_transform(grid)
        assert design.columns == ("x",)

    def test_identity_term(self, grid):
        """I() evaluates literal arithmetic."""
        design = DesignMatrixBuilder("y ~ I(x^2)").fit_transform(grid)
        np.testing.assert_allclose(design.values[:, 1], grid["x"].to_numpy() ** 2)

    def test_levels_make_numeric_categorical(self, grid):
        """Declared levels turn a numeric column into a factor."""
        design = DesignMatrixBuilder("y ~ dose", levels={"dose": [1, 2, 3]}).fit_transform(grid)
        assert design.columns == ("(Intercept)", "dose[2]", "dose[3]")

    def test_levels_for_unknown_variable(self, grid):
        """Reference levels for a variable the formula does not use are rejected."""
        with pytest.raises(DimensionMismatchError):
            DesignMatrixBuilder("y ~ x", reference={"f": "a"}).fit(grid)

    def test_log_of_factor(self, grid):
        """A transform of a categorical column is a type error."""
        with pytest.raises(ColumnTypeError) as excinfo:
            DesignMatrixBuilder("y ~ log(f)").fit(grid)
        assert excinfo.value.column == "f"

    def test_rank_deficiency_reported(self, grid):
        """Dependent columns are flagged, not silently kept."""
        data = grid.assign(x2=2.0 * grid["x"])
        design = DesignMatrixBuilder("y ~ x + x2").fit_transform(data)
        assert design.aliased == ("x2",)
        assert design.rank == 2

    def test_mapping_input(self):
        """A mapping of columns works like a DataFrame."""
        info = DesignMatrixBuilder("y ~ x").fit({"y": [1.0, 2.0, 4.0], "x": [0.0, 1.0, 2.0]})
        assert info.column_names == ("(Intercept)", "x")


class TestStatefulTransforms:
    """Transform parameters are learned once and replayed."""

    def test_scale_uses_fit_time_moments(self, grid):
        """scale() reuses the fit-time mean and deviation."""
        info = DesignMatrixBuilder("y ~ scale(x)").fit(grid)
        sd = np.std(grid["x"].to_numpy(), ddof=1)
        design = info.build({"x": [5.0, 14.0]})
        np.testing.assert_allclose(design.values[:, 1], [0.0, 9.0 / sd])

    def test_center(self, grid):
        """center() subtracts the fit-time mean."""
        info = DesignMatrixBuilder("y ~ center(x)").fit(grid)
        np.testing.assert_allclose(info.build({"x": [5.0]}).values[:, 1], [0.0])

    def test_poly_is_orthonormal_on_fit_data(self, grid):
        """poly() columns are orthonormal on the fit data."""
        design = DesignMatrixBuilder("y ~ poly(x, 2)").fit_transform(grid)
        assert design.columns == ("(Intercept)", "poly(x, 2)[1]", "poly(x, 2)[2]")
        Z = design.values[:, 1:]
        np.testing.assert_allclose(Z.T @ Z, np.eye(2), atol=1e-12)
        np.testing.assert_allclose(Z.sum(axis=0), 0.0, atol=1e-12)

    def test_poly_replay_matches_fit(self, grid):
        """poly() replays its recurrence on new data."""
        builder = DesignMatrixBuilder("y ~ poly(x, 3)")
        design = builder.fit_transform(grid)
        replay = builder.design_info_.build(grid.iloc[[2, 5]])
        np.testing.assert_allclose(replay.values, design.values[[2, 5]], atol=1e-12)

    def test_bspline_columns(self, grid):
        """bs() emits df columns from frozen knots."""
        design = DesignMatrixBuilder("y ~ bs(x, df = 5)").fit_transform(grid)
        assert design.shape == (9, 6)


class TestReplay:
    """DesignInfo.build on new tables."""

    def test_same_columns_on_subset_of_levels(self, crickets):
        """New data with fewer levels keeps every column."""
        info = DesignMatrixBuilder("rate ~ temp + species").fit(crickets)
        design = info.build({"temp": [20.0], "species": ["exclamationis"]})
        assert design.columns == info.column_names
        np.testing.assert_array_equal(design.values, [[1.0, 20.0, 0.0]])

    def test_missing_rows_are_kept_as_nan(self, crickets, new_crickets):
        """Rows with missing inputs become NaN rows."""
        info = DesignMatrixBuilder("rate ~ temp * species").fit(crickets)
        design = info.build(new_crickets)
        assert len(design) == len(new_crickets)
        assert list(design.index) == list(new_crickets.index)
        assert np.isnan(design.values[1, 1])
        assert np.isnan(design.values[1, 3])
        assert not np.isnan(design.values[1, 2])
        np.testing.assert_array_equal(info.missing_mask(new_crickets), [False, True, False, False, False, False])

    def test_unseen_level(self, crickets):
        """Unseen levels raise at build time."""
        info = DesignMatrixBuilder("rate ~ temp + species").fit(crickets)
        new = {"temp": [20.0], "species": ["fultoni"]}
        with pytest.raises(UnseenLevelError):
            info.build(new)
        np.testing.assert_array_equal(info.build(new, unseen="zero").values, [[1.0, 20.0, 0.0]])

    def test_missing_column(self, crickets):
        """A referenced column absent from the data is named."""
        info = DesignMatrixBuilder("rate ~ temp + species").fit(crickets)
        with pytest.raises(DimensionMismatchError) as excinfo:
            info.build({"temp": [20.0]})
        assert excinfo.value.missing_columns == ["species"]

    def test_values_are_read_only(self, crickets):
        """Design values cannot be modified."""
        design = DesignMatrixBuilder("rate ~ temp").fit_transform(crickets)
        with pytest.raises(ValueError):
            design.values[0, 0] = 2.0

    def test_dict_roundtrip(self, grid):
        """A DesignInfo rebuilt from its dict builds the same matrix."""
        info = DesignMatrixBuilder("y ~ poly(x, 2) + f:g", reference={"f": "c"}).fit(grid)
        restored = DesignInfo.from_dict(info.to_dict())
        assert restored.column_names == info.column_names
        assert restored.term_slices == info.term_slices
        np.testing.assert_array_equal(restored.build(grid).values, info.build(grid).values)
