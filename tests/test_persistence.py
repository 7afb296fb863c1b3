"""
Model payloads survive a JSON round trip.
"""

import json
import warnings

import numpy as np
import pandas as pd
import pytest

from pyformula import FittedModel, glm, lm, predict
from pyformula.exceptions import RankDeficiencyWarning


def _roundtrip(model):
    return FittedModel.from_dict(json.loads(json.dumps(model.to_dict())))


class TestRoundTrip:

    def test_lm_predictions_identical(self, crickets, new_crickets):
        """A restored lm predicts and summarises exactly like the original."""
        model = lm("rate ~ poly(temp, 2) + scale(temp):species", crickets)
        restored = _roundtrip(model)

        assert restored.coefficient_names == model.coefficient_names
        np.testing.assert_array_equal(restored.coefficients, model.coefficients)
        pd.testing.assert_frame_equal(
            predict(restored, new_crickets, interval="prediction").frame,
            predict(model, new_crickets, interval="prediction").frame,
        )
        pd.testing.assert_frame_equal(restored.summarize(), model.summarize())

    def test_glm_with_response_levels(self, trials):
        """Binomial response levels survive the round trip."""
        model = glm("outcome ~ dose + group", trials, family="binomial", levels={"outcome": ["no", "yes"]})
        restored = _roundtrip(model)
        assert restored.response_levels == ("no", "yes")
        assert restored.kind == model.kind
        pd.testing.assert_frame_equal(predict(restored, trials).frame, predict(model, trials).frame)
        assert restored.aic == pytest.approx(model.aic)

    def test_aliased_coefficients(self, crickets):
        """Aliased NaN coefficients are stored as null and restored as NaN."""
        data = crickets.assign(temp_f=crickets["temp"] * 1.8 + 32.0)
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", RankDeficiencyWarning)
            model = lm("rate ~ temp + temp_f", data)

        payload = model.to_dict()
        assert payload["coefficients"][2] is None
        restored = _roundtrip(model)
        assert np.isnan(restored.coefficients[2])
        assert restored.aliased.tolist() == [False, False, True]
        np.testing.assert_allclose(
            predict(restored, data)["fit"].to_numpy(), model.fitted_values, rtol=1e-10
        )

    def test_fit_time_arrays_not_persisted(self, crickets):
        """Residuals and fitted values stay out of the payload."""
        restored = _roundtrip(lm("rate ~ temp", crickets))
        assert restored.residuals is None
        assert restored.fitted_values is None

    def test_restored_model_is_read_only(self, crickets):
        """Restored arrays are not writeable."""
        restored = _roundtrip(lm("rate ~ temp", crickets))
        with pytest.raises(ValueError):
            restored.coefficients[0] = 0.0


def test_unsupported_version(crickets):
    """Payloads from another version are rejected."""
    payload = lm("rate ~ temp", crickets).to_dict()
    payload["version"] = 99
    with pytest.raises(ValueError, match="version"):
        FittedModel.from_dict(payload)
