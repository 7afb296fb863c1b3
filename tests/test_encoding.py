"""
Categorical encoding.
"""

import warnings

import numpy as np
import pandas as pd
import pytest

from pyformula import CategoricalEncoder, Factor
from pyformula._core.encoding import is_categorical
from pyformula.exceptions import UnseenLevelError


class TestFit:
    """Level sets and reference levels are frozen at fit time."""

    def test_first_appearance_order(self):
        """Levels follow first appearance; the first is the reference."""
        factor = CategoricalEncoder().fit(pd.Series(["b", "a", "b", "c"], name="g"))
        assert factor.levels == ("b", "a", "c")
        assert factor.reference == "b"
        assert factor.column_names == ("g[a]", "g[c]")

    def test_explicit_levels_and_reference(self):
        """Explicit levels and reference are used as given."""
        factor = CategoricalEncoder().fit(
            pd.Series(["b", "a", "c"]), levels=["a", "b", "c"], reference="c", name="g"
        )
        assert factor.levels == ("a", "b", "c")
        assert factor.indicator_levels == ("a", "b")

    def test_pandas_categories_drive_order(self):
        """Declared pandas categories set the order, unused ones dropped."""
        column = pd.Series(pd.Categorical(["lo", "hi", "lo"], categories=["hi", "mid", "lo"]), name="g")
        factor = CategoricalEncoder().fit(column)
        # unused 'mid' is dropped
        assert factor.levels == ("hi", "lo")

    def test_numpy_scalars_become_python(self):
        """Recorded levels are plain Python values."""
        factor = CategoricalEncoder().fit(pd.Series([3, 1, 3], name="dose"))
        assert factor.levels == (3, 1)
        assert all(type(level) is int for level in factor.levels)

    def test_observed_value_outside_levels(self):
        """Data outside the declared levels is rejected at fit time."""
        with pytest.raises(UnseenLevelError) as excinfo:
            CategoricalEncoder().fit(pd.Series(["a", "z"], name="g"), levels=["a", "b"])
        assert excinfo.value.levels == ["z"]

    def test_reference_must_be_a_level(self):
        """The reference must be one of the levels."""
        with pytest.raises(ValueError, match="Reference level"):
            CategoricalEncoder().fit(pd.Series(["a", "b"], name="g"), reference="q")

    def test_all_missing(self):
        """A column with no observed values cannot be encoded."""
        with pytest.raises(ValueError, match="no observed levels"):
            CategoricalEncoder().fit(pd.Series([None, None], name="g", dtype=object))


class TestEncode:
    """Indicator columns come from the frozen levels only."""

    def test_k_minus_one_columns_full_rank(self):
        """k-1 indicators plus intercept are full rank."""
        column = pd.Series(["x", "y", "z", "x", "z", "y"], name="g")
        encoder = CategoricalEncoder()
        factor = encoder.fit(column)
        indicators = factor.encode(column)
        assert indicators.shape == (6, 2)

        X = np.column_stack([np.ones(6), indicators])
        assert np.linalg.matrix_rank(X) == len(factor.levels)

    def test_reference_rows_are_zero(self):
        """Reference rows have no indicator set."""
        factor = Factor("g", ("x", "y", "z"), "y")
        np.testing.assert_array_equal(
            factor.encode(["y", "x", "z"]),
            [[0.0, 0.0], [1.0, 0.0], [0.0, 1.0]],
        )

    def test_missing_value_gives_nan_row(self):
        """Missing values encode to NaN rows."""
        factor = Factor("g", ("x", "y"), "x")
        out = factor.encode(pd.Series(["y", None, "x"], dtype=object))
        assert out[0, 0] == 1.0
        assert np.isnan(out[1, 0])
        assert out[2, 0] == 0.0

    def test_unseen_level_raises(self):
        """Unseen levels raise and are named."""
        factor = Factor("species", ("exclamationis", "niveus"), "exclamationis")
        with pytest.raises(UnseenLevelError) as excinfo:
            factor.encode(["niveus", "fultoni"])
        assert excinfo.value.column == "species"
        assert excinfo.value.levels == ["fultoni"]

    def test_unseen_level_zero(self):
        """The zero opt-in encodes unseen levels as zero rows."""
        factor = Factor("species", ("exclamationis", "niveus"), "exclamationis")
        out = factor.encode(["niveus", "fultoni"], unseen="zero")
        np.testing.assert_array_equal(out, [[1.0], [0.0]])

    def test_unseen_level_detection_emits_no_warnings(self):
        """Out-of-set values are looked up, never coerced into a categorical dtype."""
        factor = Factor("species", ("exclamationis", "niveus"), "exclamationis")
        with warnings.catch_warnings():
            warnings.simplefilter("error")
            out = factor.encode(["fultoni", None, "niveus"], unseen="zero")
            with pytest.raises(UnseenLevelError):
                factor.encode(["fultoni"])
        assert out[0, 0] == 0.0
        assert np.isnan(out[1, 0])
        assert out[2, 0] == 1.0

    def test_subset_of_levels_keeps_columns(self):
        """Column count does not depend on the levels present."""
        factor = Factor("g", ("a", "b", "c"), "a")
        assert factor.encode(["a", "a"]).shape == (2, 2)

    def test_apply_returns_named_frame(self):
        """apply returns named indicator columns on the input index."""
        encoder = CategoricalEncoder()
        encoder.fit(pd.Series(["a", "b", "a"], name="g"))
        frame = encoder.apply(pd.Series(["b", "a"], index=[10, 11]))
        assert frame.columns.tolist() == ["g[b]"]
        assert frame.index.tolist() == [10, 11]
        np.testing.assert_array_equal(frame["g[b]"].to_numpy(), [1.0, 0.0])

    def test_apply_before_fit(self):
        """apply needs a fitted encoder."""
        with pytest.raises(RuntimeError):
            CategoricalEncoder().apply(["a"])

    def test_boolean_levels(self):
        """Boolean columns are encoded as factors."""
        factor = CategoricalEncoder().fit(pd.Series([True, False, True], name="flag"))
        assert factor.levels == (True, False)
        np.testing.assert_array_equal(factor.encode([False, True]), [[1.0], [0.0]])


class TestFactorPayload:

    def test_dict_roundtrip(self):
        """A Factor survives a dict round trip."""
        factor = Factor("g", ("a", "b", "c"), "b")
        assert Factor.from_dict(factor.to_dict()) == factor


@pytest.mark.parametrize("values, expected", [
    (pd.Series(["a", "b"]), True),
    (pd.Series(pd.Categorical(["a"])), True),
    (pd.Series([True, False]), True),
    (pd.Series([1.0, 2.0]), False),
    (pd.Series([1, 2]), False),
    (["a", "b"], True),
])
def test_is_categorical(values, expected):
    """Non-numeric dtypes are treated as categorical."""
    assert is_categorical(values) is expected
