"""Bayesian estimation of θ: model specification, posterior samplers and posterior summaries.

A posterior-sampling engine is any object with a method

    sample(spec: PosteriorSpec, num_draws: int, rng) -> np.ndarray

returning draws of θ. Two engines are provided: :class:`GridSampler` draws exactly from the posterior discretised on
a log-spaced grid, and :class:`MetropolisSampler` runs a random-walk Metropolis chain on log θ.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Sequence, Union

import numpy as np
from scipy.special import logsumexp

from .errors import InvalidParameter, PosteriorUnavailable
from .estimators import Estimate, Estimator
from .likelihood import (
    Conditioning,
    log_esf,
    log_esf_conditional,
    log_esf_multilocus,
    log_tavare,
)
from .prior import GammaPrior, LogNormalPrior, Prior
from .spectrum import AlleleSpectrum, SpectrumSet

logger = logging.getLogger(__name__)


class ModelChoice(enum.Enum):
    ESF = "esf"
    CONDITIONAL_ESF = "esf_conditional"
    MULTILOCUS_ESF = "esf_multilocus"
    TAVARE = "tavare"

    @property
    def estimator(self) -> Estimator:
        return {
            ModelChoice.ESF: Estimator.BAYES_UNCONDITIONAL,
            ModelChoice.MULTILOCUS_ESF: Estimator.BAYES_UNCONDITIONAL,
            ModelChoice.CONDITIONAL_ESF: Estimator.BAYES_CONDITIONAL,
            ModelChoice.TAVARE: Estimator.TAVARE,
        }[self]


@dataclass
class PosteriorSpec:
    """Everything a posterior-sampling engine needs to target :math:`p(\\theta \\mid \\text{data})`.

    Args:
        model: Likelihood to use.
        data: An :class:`AlleleSpectrum` for `ESF`; a :class:`SpectrumSet` for `MULTILOCUS_ESF`; either for
            `CONDITIONAL_ESF`; a segregating-site count (or one count per locus) for `TAVARE`.
        prior: Prior over θ.
        n: Sample size. Required for `TAVARE`, inferred from the spectra otherwise.
        conditioning: Combination rule for `CONDITIONAL_ESF`.
    """

    model: ModelChoice
    data: Union[AlleleSpectrum, SpectrumSet, int, Sequence[int]]
    prior: Prior
    n: int = None
    conditioning: Conditioning = Conditioning.DIFFERENCE

    def __post_init__(self):
        self.model = ModelChoice(self.model)
        self.conditioning = Conditioning(self.conditioning)
        if not isinstance(self.prior, (GammaPrior, LogNormalPrior)):
            raise InvalidParameter("prior must be a GammaPrior or LogNormalPrior", prior=self.prior)
        self.prior.validate()
        if self.model is ModelChoice.ESF:
            if not isinstance(self.data, AlleleSpectrum):
                raise InvalidParameter("ESF model needs a single spectrum", data=type(self.data).__name__)
            self.data = self.data.validate()
        elif self.model is ModelChoice.MULTILOCUS_ESF:
            if isinstance(self.data, AlleleSpectrum):
                self.data = SpectrumSet((self.data,))
            self.data = SpectrumSet(tuple(self.data)).validate()
        elif self.model is ModelChoice.CONDITIONAL_ESF:
            if isinstance(self.data, AlleleSpectrum):
                self.data = self.data.validate()
            else:
                self.data = SpectrumSet(tuple(self.data)).validate()
        else:
            if self.n is None or self.n < 2:
                raise InvalidParameter("Tavare model needs the sample size n >= 2", n=self.n)
        if self.model is not ModelChoice.TAVARE:
            self.n = self.data.n

    def log_likelihood(self, theta):
        if self.model is ModelChoice.ESF:
            return log_esf(self.data, theta)
        if self.model is ModelChoice.MULTILOCUS_ESF:
            return log_esf_multilocus(self.data, theta)
        if self.model is ModelChoice.CONDITIONAL_ESF:
            return log_esf_conditional(self.data, theta, self.conditioning)
        return log_tavare(self.data, self.n, theta)

    def log_density(self, theta):
        "Unnormalised log posterior density of θ."
        return self.prior.logpdf(theta) + self.log_likelihood(theta)


# Range of θ the grid may cover; Tavaré's series is not summable to full precision far above the ceiling.
_MIN_THETA = 1e-300
_MAX_THETA = 1e8


@dataclass
class GridSampler:
    """Sample θ exactly from the posterior discretised on a log-spaced grid.

    The grid starts at the prior quantiles `[tail, 1 - tail]`. While the log posterior at an end of the grid is
    within `cutoff` of its maximum, that end is pushed outwards (doubling the log-span), so data in conflict
    with the prior are not cut off. The grid is then re-laid over the region where the log posterior is within
    `cutoff` of the maximum.

    Args:
        num_points: Grid size.
        tail: Prior tail probability excluded at each end of the initial grid.
        cutoff: Log posterior drop, relative to the maximum, treated as negligible.
        max_expansions: Maximum number of times the grid is widened.
    """

    num_points: int = 512
    tail: float = 1e-8
    cutoff: float = 40.0
    max_expansions: int = 20

    def grid(self, prior: Prior) -> np.ndarray:
        "Initial grid over the prior's quantile range, clamped to positive finite θ."
        lo, hi = prior.ppf([self.tail, 1.0 - self.tail])
        lo = min(max(lo, _MIN_THETA), _MAX_THETA / 10.0)
        hi = max(min(hi, _MAX_THETA), lo * 10.0)
        return np.geomspace(lo, hi, self.num_points)

    @staticmethod
    def _log_weight(spec, log_t):
        # density with respect to log θ
        return np.asarray(spec.log_density(np.exp(log_t))) + log_t

    def support(self, spec: PosteriorSpec):
        """Log-θ grid covering the posterior, with the log posterior (w.r.t. log θ) at each point."""
        t = self.grid(spec.prior)
        lo, hi = t[0], t[-1]
        log_t = np.log(t)
        lp = self._log_weight(spec, log_t)
        for _ in range(self.max_expansions):
            ok = np.isfinite(lp)
            if not ok.any():
                return log_t, lp
            top = lp[ok].max()
            grow_lo = np.isfinite(lp[0]) and lp[0] > top - self.cutoff and lo > _MIN_THETA
            grow_hi = np.isfinite(lp[-1]) and lp[-1] > top - self.cutoff and hi < _MAX_THETA
            if not (grow_lo or grow_hi):
                break
            span = hi / lo
            if grow_lo:
                lo = max(lo / span, _MIN_THETA)
            if grow_hi:
                hi = min(hi * span, _MAX_THETA)
            log_t = np.linspace(np.log(lo), np.log(hi), self.num_points)
            lp = self._log_weight(spec, log_t)
        ok = np.isfinite(lp)
        if not ok.any():
            return log_t, lp
        top = lp[ok].max()
        if (np.isfinite(lp[0]) and lp[0] > top - self.cutoff) or (np.isfinite(lp[-1]) and lp[-1] > top - self.cutoff):
            logger.warning(
                "posterior mass reaches the grid edge (theta in [%g, %g]); draws are truncated there",
                np.exp(log_t[0]),
                np.exp(log_t[-1]),
            )
            return log_t, lp
        # re-lay the grid over the support
        keep = np.flatnonzero(lp > top - self.cutoff)
        i, j = max(keep[0] - 1, 0), min(keep[-1] + 1, len(log_t) - 1)
        log_t = np.linspace(log_t[i], log_t[j], self.num_points)
        return log_t, self._log_weight(spec, log_t)

    def sample(self, spec: PosteriorSpec, num_draws: int, rng=None) -> np.ndarray:
        rng = np.random.default_rng(rng)
        log_t, lp = self.support(spec)
        ok = np.isfinite(lp)
        if not ok.any():
            return np.full(num_draws, np.nan)
        w = np.zeros_like(lp)
        w[ok] = np.exp(lp[ok] - logsumexp(lp[ok]))
        w /= w.sum()
        i = rng.choice(len(log_t), size=num_draws, p=w)
        h = log_t[1] - log_t[0]
        return np.exp(log_t[i] + rng.uniform(-h / 2, h / 2, size=num_draws))


@dataclass
class MetropolisSampler:
    """Random-walk Metropolis on log θ.

    Args:
        step: Standard deviation of the normal proposal on log θ.
        burn_in: Number of initial iterations discarded.
        thin: Keep every `thin`-th iteration after burn-in.
    """

    step: float = 0.5
    burn_in: int = 1000
    thin: int = 1

    def _log_target(self, spec, x):
        if not -700.0 < x < 700.0:  # exp(x) must stay a positive finite double
            return -np.inf
        lp = spec.log_density(np.exp(x)) + x
        return lp if np.isfinite(lp) else -np.inf

    def sample(self, spec: PosteriorSpec, num_draws: int, rng=None) -> np.ndarray:
        rng = np.random.default_rng(rng)
        x = np.log(spec.prior.mean)
        lp = self._log_target(spec, x)
        ret = np.empty(num_draws)
        accepted = 0
        total = self.burn_in + num_draws * self.thin
        for it in range(total):
            y = x + self.step * rng.standard_normal()
            lq = self._log_target(spec, y)
            if np.log(rng.uniform()) < lq - lp:
                x, lp = y, lq
                accepted += 1
            k = it - self.burn_in
            if k >= 0 and k % self.thin == 0:
                ret[k // self.thin] = np.exp(x) if np.isfinite(lp) else np.nan
        logger.debug("Metropolis acceptance rate %.3f", accepted / total)
        return ret


def summarize(draws: np.ndarray, estimator: Estimator) -> Estimate:
    """Reduce posterior draws to the posterior mean and a 95% equal-tailed credible interval.

    Raises:
        PosteriorUnavailable: if there are no finite draws.
    """
    d = np.asarray(draws, dtype=np.float64).reshape(-1)
    ok = d[np.isfinite(d)]
    if ok.size == 0:
        raise PosteriorUnavailable("no usable posterior draws", num_draws=d.size, estimator=estimator.value)
    lo, hi = np.percentile(ok, [2.5, 97.5])
    return Estimate(estimator=estimator, value=float(ok.mean()), interval=(float(lo), float(hi)))


def infer(
    spec: PosteriorSpec,
    engine=None,
    num_draws: int = 1000,
    rng=None,
    estimator: Estimator = None,
) -> Estimate:
    """Draw from the posterior described by `spec` and summarise the draws.

    Args:
        spec: Posterior specification.
        engine: Posterior-sampling engine; defaults to :class:`GridSampler`.
        num_draws: Number of posterior draws requested.
        rng: Seed or `numpy.random.Generator`.
        estimator: Label for the resulting estimate; defaults to the one implied by `spec.model`.
    """
    if engine is None:
        engine = GridSampler()
    if estimator is None:
        estimator = spec.model.estimator
    draws = engine.sample(spec, num_draws, rng)
    return summarize(draws, estimator)
