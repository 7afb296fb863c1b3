"""
GLM family definitions.

Defines link functions, variance functions, deviance and AIC, following
R's family objects (gaussian(), binomial(), poisson()).
"""

import numpy as np
from abc import ABC, abstractmethod
from typing import Union

from scipy import stats


def _ylogy(y: np.ndarray, mu: np.ndarray) -> np.ndarray:
    """y * log(y / mu), taken as 0 where y == 0."""
    out = np.zeros_like(y, dtype=np.float64)
    pos = y > 0
    out[pos] = y[pos] * np.log(y[pos] / mu[pos])
    return out


class Family(ABC):
    """Base class for GLM families."""

    # Dispersion fixed at 1 (binomial, poisson) or estimated (gaussian)
    dispersion_known: bool = True

    @property
    @abstractmethod
    def name(self) -> str:
        """Family name."""
        pass

    @property
    @abstractmethod
    def link(self) -> str:
        """Link name."""
        pass

    @abstractmethod
    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        """Link function: η = g(μ)"""
        pass

    @abstractmethod
    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        """Inverse link: μ = g⁻¹(η)"""
        pass

    @abstractmethod
    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        """Derivative: dμ/dη"""
        pass

    @abstractmethod
    def variance(self, mu: np.ndarray) -> np.ndarray:
        """Variance function: V(μ)"""
        pass

    @abstractmethod
    def dev_resids(self, y: np.ndarray, mu: np.ndarray, wt: np.ndarray) -> np.ndarray:
        """Squared deviance residuals (unit deviances times weights)."""
        pass

    @abstractmethod
    def aic(self, y: np.ndarray, mu: np.ndarray, wt: np.ndarray, dev: float) -> float:
        """-2 log-likelihood (R's family$aic, before adding 2 * rank)."""
        pass

    @abstractmethod
    def mustart(self, y: np.ndarray, wt: np.ndarray) -> np.ndarray:
        """Starting values for μ (R's family$initialize)."""
        pass

    def check_response(self, y: np.ndarray) -> None:
        """Raise ValueError if y is outside the family's support."""

    def validmu(self, mu: np.ndarray) -> bool:
        """Check if μ values are valid."""
        return bool(np.all(np.isfinite(mu)))

    def __repr__(self):
        return f"{type(self).__name__}(link={self.link!r})"


class Gaussian(Family):
    """Gaussian family with identity link."""

    dispersion_known = False

    @property
    def name(self) -> str:
        return "gaussian"

    @property
    def link(self) -> str:
        return "identity"

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        return mu

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        return eta

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        return np.ones_like(eta)

    def variance(self, mu: np.ndarray) -> np.ndarray:
        return np.ones_like(mu)

    def dev_resids(self, y, mu, wt):
        return wt * (y - mu) ** 2

    def aic(self, y, mu, wt, dev):
        nobs = len(y)
        pos = wt > 0
        return nobs * (np.log(2 * np.pi * dev / nobs) + 1) + 2 - np.sum(np.log(wt[pos]))

    def mustart(self, y, wt):
        return y.astype(np.float64)


class Binomial(Family):
    """
    Binomial family with logit link.

    Replicates R's binomial() family, including the thresholding at ±30
    to prevent overflow. The response is a proportion in [0, 1]; with
    prior weights it is the fraction of successes out of ``wt`` trials.
    """

    # Thresholds from R's family.c
    THRESH = 30.0
    MTHRESH = -30.0
    EPS = np.finfo(np.float64).eps

    @property
    def name(self) -> str:
        return "binomial"

    @property
    def link(self) -> str:
        return "logit"

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        return np.log(mu / (1 - mu))

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        eta = np.asarray(eta, dtype=np.float64)
        mu = np.empty_like(eta)
        mu[eta < self.MTHRESH] = self.EPS
        mu[eta > self.THRESH] = 1 - self.EPS
        mask = (eta >= self.MTHRESH) & (eta <= self.THRESH)
        mu[mask] = 1.0 / (1.0 + np.exp(-eta[mask]))
        # NaN stays NaN (missing rows at prediction time)
        mu[np.isnan(eta)] = np.nan
        return mu

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        d = np.empty_like(eta)
        outside = (eta < self.MTHRESH) | (eta > self.THRESH)
        d[outside] = self.EPS
        inside = ~outside
        exp_eta = np.exp(eta[inside])
        d[inside] = exp_eta / (1.0 + exp_eta) ** 2
        return d

    def variance(self, mu: np.ndarray) -> np.ndarray:
        return mu * (1 - mu)

    def dev_resids(self, y, mu, wt):
        return 2 * wt * (_ylogy(y, mu) + _ylogy(1 - y, 1 - mu))

    def aic(self, y, mu, wt, dev):
        # prior weights are the numbers of trials
        m = wt
        used = (m > 0).astype(np.float64)
        return -2 * np.sum(used * stats.binom.logpmf(np.round(m * y), np.round(m), mu))

    def mustart(self, y, wt):
        return (wt * y + 0.5) / (wt + 1)

    def check_response(self, y):
        if np.any((y < 0) | (y > 1)):
            raise ValueError("y values must be 0 <= y <= 1 for the binomial family")

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all((mu > 0) & (mu < 1)))


class Poisson(Family):
    """Poisson family with log link."""

    _eps = np.finfo(np.float64).eps

    @property
    def name(self) -> str:
        return "poisson"

    @property
    def link(self) -> str:
        return "log"

    def linkfun(self, mu: np.ndarray) -> np.ndarray:
        return np.log(mu)

    def linkinv(self, eta: np.ndarray) -> np.ndarray:
        return np.maximum(np.exp(eta), self._eps)

    def mu_eta(self, eta: np.ndarray) -> np.ndarray:
        return np.maximum(np.exp(eta), self._eps)

    def variance(self, mu: np.ndarray) -> np.ndarray:
        return mu

    def dev_resids(self, y, mu, wt):
        return 2 * wt * (_ylogy(y, mu) - (y - mu))

    def aic(self, y, mu, wt, dev):
        return -2 * np.sum(stats.poisson.logpmf(y, mu) * wt)

    def mustart(self, y, wt):
        return y + 0.1

    def check_response(self, y):
        if np.any(y < 0):
            raise ValueError("negative values not allowed for the poisson family")

    def validmu(self, mu):
        return bool(np.all(np.isfinite(mu)) and np.all(mu > 0))


FAMILIES = {
    "gaussian": Gaussian,
    "binomial": Binomial,
    "poisson": Poisson,
}


def get_family(family: Union[str, Family, None]) -> Family:
    """
    Resolve a family given by name or instance.

    ``None`` means gaussian.
    """
    if family is None:
        return Gaussian()
    if isinstance(family, Family):
        return family
    if isinstance(family, type) and issubclass(family, Family):
        return family()
    key = str(family).lower()
    if key not in FAMILIES:
        raise ValueError(
            f"Unknown family '{family}'. Available: {', '.join(FAMILIES)}"
        )
    return FAMILIES[key]()


__all__ = ["Family", "Gaussian", "Binomial", "Poisson", "FAMILIES", "get_family"]
