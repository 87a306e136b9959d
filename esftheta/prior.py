"Prior distributions over θ."

from typing import NamedTuple, Union

import numpy as np
import scipy.stats

from .errors import InvalidParameter


class GammaPrior(NamedTuple):
    """Gamma prior with shape `shape` and rate `rate`; mean `shape / rate`.

    Example:
        >>> GammaPrior(2.0, 20.0).mean
        0.1
    """

    shape: float = 1.0
    rate: float = 1.0

    def validate(self) -> "GammaPrior":
        if not (np.isfinite(self.shape) and self.shape > 0 and np.isfinite(self.rate) and self.rate > 0):
            raise InvalidParameter("gamma prior needs shape > 0 and rate > 0", shape=self.shape, rate=self.rate)
        return self

    @property
    def dist(self) -> "scipy.stats.rv_continuous":
        return scipy.stats.gamma(a=self.shape, scale=1.0 / self.rate)

    @property
    def mean(self) -> float:
        return self.shape / self.rate

    def logpdf(self, theta):
        return self.dist.logpdf(theta)

    def ppf(self, q):
        return self.dist.ppf(q)

    def rvs(self, size=None, random_state=None):
        return self.dist.rvs(size=size, random_state=random_state)


class LogNormalPrior(NamedTuple):
    """Log-normal prior: `log θ ~ Normal(mu, sigma)`."""

    mu: float = 0.0
    sigma: float = 1.0

    def validate(self) -> "LogNormalPrior":
        if not (np.isfinite(self.mu) and np.isfinite(self.sigma) and self.sigma > 0):
            raise InvalidParameter("log-normal prior needs finite mu and sigma > 0", mu=self.mu, sigma=self.sigma)
        return self

    @property
    def dist(self) -> "scipy.stats.rv_continuous":
        return scipy.stats.lognorm(s=self.sigma, scale=np.exp(self.mu))

    @property
    def mean(self) -> float:
        return float(np.exp(self.mu + self.sigma ** 2 / 2))

    def logpdf(self, theta):
        return self.dist.logpdf(theta)

    def ppf(self, q):
        return self.dist.ppf(q)

    def rvs(self, size=None, random_state=None):
        return self.dist.rvs(size=size, random_state=random_state)


Prior = Union[GammaPrior, LogNormalPrior]


def parse_prior(family: str, a: float, b: float) -> Prior:
    """Build a prior from a family name and its two hyperparameters.

    Args:
        family: "gamma" (`a` = shape, `b` = rate) or "lognormal" (`a` = mu, `b` = sigma).
    """
    families = {"gamma": GammaPrior, "lognormal": LogNormalPrior}
    try:
        cls = families[family.lower()]
    except KeyError:
        raise InvalidParameter("unknown prior family", family=family) from None
    return cls(a, b).validate()
