"""
Shared fixtures.
"""

import numpy as np
import pandas as pd
import pytest

from pyformula.config import reset_config


ENV_VARS = (
    "PYFORMULA_BACKEND",
    "PYFORMULA_MAXIT",
    "PYFORMULA_MISSING_POLICY",
    "PYFORMULA_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """Every test starts from the built-in defaults."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def crickets():
    """Chirp rate against temperature for two cricket species."""
    rng = np.random.default_rng(20240917)
    species = np.array(["exclamationis"] * 14 + ["niveus"] * 17)
    temp = np.round(rng.uniform(17.0, 31.0, len(species)), 1)
    rate = -7.2 + 3.6 * temp - 10.1 * (species == "niveus") + rng.normal(0.0, 2.5, len(species))
    return pd.DataFrame({"rate": rate, "temp": temp, "species": species})


@pytest.fixture
def new_crickets():
    """Six rows to predict; the second has no temperature."""
    return pd.DataFrame(
        {
            "temp": [20.0, np.nan, 24.5, 27.0, 18.2, 30.1],
            "species": ["niveus", "exclamationis", "exclamationis", "niveus", "niveus", "exclamationis"],
        },
        index=list("abcdef"),
    )


@pytest.fixture
def trials():
    """Binary outcome with one numeric and one categorical predictor."""
    rng = np.random.default_rng(7)
    n = 200
    dose = rng.uniform(0.0, 4.0, n)
    group = rng.choice(["control", "treated"], size=n)
    eta = -2.0 + 0.9 * dose + 0.7 * (group == "treated")
    p = 1.0 / (1.0 + np.exp(-eta))
    outcome = rng.uniform(size=n) < p
    return pd.DataFrame(
        {
            "outcome": np.where(outcome, "yes", "no"),
            "died": outcome.astype(float),
            "dose": dose,
            "group": group,
        }
    )


@pytest.fixture
def counts():
    """Poisson counts with an exposure column."""
    rng = np.random.default_rng(11)
    n = 120
    x = rng.normal(size=n)
    site = rng.choice(["north", "south", "west"], size=n)
    exposure = rng.uniform(1.0, 3.0, n)
    mu = exposure * np.exp(0.4 + 0.5 * x - 0.3 * (site == "south") + 0.2 * (site == "west"))
    return pd.DataFrame(
        {"y": rng.poisson(mu).astype(float), "x": x, "site": site, "log_exposure": np.log(exposure)}
    )
