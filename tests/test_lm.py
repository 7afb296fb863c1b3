"""
Linear models from formulas, checked against closed-form least squares.
"""

import warnings

import numpy as np
import pytest
from scipy import stats

from pyformula import FitControl, lm
from pyformula.exceptions import (
    ColumnTypeError,
    DimensionMismatchError,
    MissingDataError,
    RankDeficiencyWarning,
    SingularFitError,
)


COEF_TOL = 1e-10


def _design(crickets):
    return np.column_stack([
        np.ones(len(crickets)),
        crickets["temp"].to_numpy(),
        (crickets["species"] == "niveus").to_numpy(dtype=float),
    ])


class TestCoefficients:
    """Estimates and their standard errors."""

    def test_matches_lstsq(self, crickets):
        """Coefficients, residuals and sigma match lstsq."""
        model = lm("rate ~ temp + species", crickets, reference={"species": "exclamationis"})
        assert model.coefficient_names == ("(Intercept)", "temp", "species[niveus]")

        X = _design(crickets)
        y = crickets["rate"].to_numpy()
        beta, *_ = np.linalg.lstsq(X, y, rcond=None)
        np.testing.assert_allclose(model.coefficients, beta, rtol=COEF_TOL, atol=COEF_TOL)

        resid = y - X @ beta
        np.testing.assert_allclose(model.residuals, resid, atol=1e-9)
        np.testing.assert_allclose(model.fitted_values, X @ beta, atol=1e-9)

        n, p = X.shape
        assert model.df_residual == n - p
        assert model.nobs == n
        assert model.rank == p
        np.testing.assert_allclose(model.sigma, np.sqrt(resid @ resid / (n - p)), rtol=1e-10)

    def test_standard_errors(self, crickets):
        """Standard errors, t values and p-values follow from cov_unscaled."""
        model = lm("rate ~ temp + species", crickets)
        X = _design(crickets)
        se = model.sigma * np.sqrt(np.diag(np.linalg.inv(X.T @ X)))

        table = model.summarize()
        assert list(table.columns) == ["Estimate", "Std. Error", "t value", "Pr(>|t|)"]
        np.testing.assert_allclose(table["Std. Error"].to_numpy(), se, rtol=1e-8)

        t = model.coefficients / se
        np.testing.assert_allclose(table["t value"].to_numpy(), t, rtol=1e-8)
        np.testing.assert_allclose(
            table["Pr(>|t|)"].to_numpy(), 2 * stats.t.sf(np.abs(t), model.df_residual), rtol=1e-8
        )

    def test_conf_int(self, crickets):
        """Confidence limits use the t quantile."""
        model = lm("rate ~ temp", crickets)
        ci = model.conf_int(alpha=0.1)
        table = model.summarize()
        crit = stats.t.ppf(0.95, model.df_residual)
        np.testing.assert_allclose(
            ci["upper"].to_numpy(), (table["Estimate"] + crit * table["Std. Error"]).to_numpy()
        )

    def test_goodness_of_fit(self, crickets):
        """R-squared and the overall F match their definitions."""
        model = lm("rate ~ temp + species", crickets)
        y = crickets["rate"].to_numpy()
        tss = np.sum((y - y.mean()) ** 2)
        rss = np.sum(model.residuals ** 2)
        np.testing.assert_allclose(model.deviance, rss, rtol=1e-10)
        np.testing.assert_allclose(model.r_squared, 1 - rss / tss, rtol=1e-10)

        f, df1, df2 = model.f_statistic
        assert (df1, df2) == (2, len(y) - 3)
        np.testing.assert_allclose(f, ((tss - rss) / 2) / (rss / df2), rtol=1e-10)
        assert 0 <= model.f_pvalue < 1e-6

    def test_named_coefficients(self, crickets):
        """coef is indexed by column name."""
        model = lm("rate ~ temp", crickets)
        assert model.coef.index.tolist() == ["(Intercept)", "temp"]
        assert model.coef["temp"] == model.coefficients[1]

    def test_no_intercept(self, crickets):
        """Without an intercept the fit goes through the origin."""
        model = lm("rate ~ temp - 1", crickets)
        x = crickets["temp"].to_numpy()
        y = crickets["rate"].to_numpy()
        np.testing.assert_allclose(model.coefficients, [x @ y / (x @ x)], rtol=1e-10)

    def test_weights(self, crickets):
        """Weighted fits match weighted lstsq."""
        w = np.linspace(0.5, 2.0, len(crickets))
        model = lm("rate ~ temp + species", crickets, weights=w)
        X = _design(crickets)
        sw = np.sqrt(w)
        beta, *_ = np.linalg.lstsq(X * sw[:, None], crickets["rate"].to_numpy() * sw, rcond=None)
        np.testing.assert_allclose(model.coefficients, beta, rtol=1e-9)

    def test_weights_by_column_name(self, crickets):
        """Weights may name a data column."""
        data = crickets.assign(w=np.linspace(0.5, 2.0, len(crickets)))
        by_name = lm("rate ~ temp", data, weights="w")
        by_value = lm("rate ~ temp", data, weights=data["w"].to_numpy())
        np.testing.assert_allclose(by_name.coefficients, by_value.coefficients)

    def test_missing_weight_excludes_row(self, crickets):
        """A missing weight drops its row like a missing predictor."""
        w = np.linspace(0.5, 2.0, len(crickets))
        w[3] = np.nan
        model = lm("rate ~ temp", crickets, weights=w, offset=np.zeros(len(crickets)))
        expected = lm("rate ~ temp", crickets.drop(index=3), weights=np.delete(w, 3))
        assert model.nobs == len(crickets) - 1
        np.testing.assert_allclose(model.coefficients, expected.coefficients, rtol=1e-10)

    def test_offset(self, crickets):
        """An offset of 3 * temp lowers the temp slope by 3."""
        offset = 3.0 * crickets["temp"].to_numpy()
        model = lm("rate ~ temp", crickets, offset=offset)
        plain = lm("rate ~ temp", crickets)
        np.testing.assert_allclose(model.coefficients[1], plain.coefficients[1] - 3.0, rtol=1e-9)


class TestAliasing:
    """Linearly dependent columns get NaN coefficients."""

    def test_rightmost_dependent_column_is_aliased(self, crickets):
        """The later of two dependent columns gets a NaN coefficient."""
        data = crickets.assign(temp_f=crickets["temp"] * 1.8 + 32.0)
        with pytest.warns(RankDeficiencyWarning, match="temp_f"):
            model = lm("rate ~ temp + temp_f + species", data)

        assert model.aliased.tolist() == [False, False, True, False]
        assert np.isnan(model.coef["temp_f"])
        assert model.rank == 3
        assert model.df_residual == len(data) - 3

        reference = lm("rate ~ temp + species", data)
        np.testing.assert_allclose(model.coefficients[[0, 1, 3]], reference.coefficients, rtol=1e-8)
        assert model.summarize().loc["temp_f"].isna().all()

    def test_full_rank_does_not_warn(self, crickets):
        """Full-rank designs emit no rank warning."""
        with warnings.catch_warnings():
            warnings.simplefilter("error", RankDeficiencyWarning)
            lm("rate ~ temp * species", crickets)


class TestInputs:
    """Missing data and invalid input at fit time."""

    def test_missing_rows_excluded(self, crickets):
        """Rows with missing values are dropped by default."""
        data = crickets.copy()
        data.loc[[2, 9], "temp"] = np.nan
        model = lm("rate ~ temp", data)
        assert model.nobs == len(data) - 2
        expected = lm("rate ~ temp", data.drop(index=[2, 9]))
        np.testing.assert_allclose(model.coefficients, expected.coefficients)

    def test_missing_fail(self, crickets):
        """missing='fail' names the columns and rows."""
        data = crickets.copy()
        data.loc[4, "rate"] = np.nan
        with pytest.raises(MissingDataError) as excinfo:
            lm("rate ~ temp", data, missing="fail")
        assert excinfo.value.columns == ["rate"]
        assert excinfo.value.rows == [4]

    def test_categorical_response(self, crickets):
        """lm needs a numeric response."""
        with pytest.raises(ColumnTypeError):
            lm("species ~ temp", crickets)

    def test_unknown_weight_column(self, crickets):
        """A weight column absent from the data is named."""
        with pytest.raises(DimensionMismatchError):
            lm("rate ~ temp", crickets, weights="w")

    def test_no_residual_df(self, crickets):
        """No residual degrees of freedom is a singular fit."""
        with pytest.raises(SingularFitError):
            lm("rate ~ temp + species", crickets.iloc[[0, 20, 21]])

    def test_control_tolerance(self, crickets):
        """The rank tolerance comes from FitControl."""
        model = lm("rate ~ temp", crickets, control=FitControl(tol=1e-9))
        assert model.rank == 2


def test_summary_prints_table(crickets, capsys):
    """The printed summary shows the coefficient table."""
    model = lm("rate ~ temp + species", crickets)
    model.summary()
    out = capsys.readouterr().out
    assert "LINEAR REGRESSION RESULTS" in out
    assert "species[niveus]" in out
    assert "Residual standard error" in out
