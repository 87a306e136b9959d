r"""Log-likelihoods of θ under the Ewens sampling formula.

For a spectrum :math:`a = (a_1, \dots, a_n)` the ESF is

.. math::

    P(a \mid \theta) = \frac{n!}{\theta (\theta + 1) \cdots (\theta + n - 1)}
        \prod_{j=1}^n \frac{(\theta / j)^{a_j}}{a_j!}

Everything is computed in log space; every function below accepts a scalar θ or an array of θ values and
returns a value of the same shape.
"""

import enum
import logging
import math
import warnings
from typing import Sequence, Union

import numpy as np
from mpmath.ctx_mp import MPContext
from scipy.special import gammaln

from .errors import InvalidParameter, MalformedSpectrum, NumericalInstability
from .spectrum import AlleleSpectrum, SpectrumSet

logger = logging.getLogger(__name__)

Theta = Union[float, np.ndarray]


class Conditioning(enum.Enum):
    """How the polymorphism-conditioned likelihood combines its two log terms.

    `DIFFERENCE` is :math:`\\log P(a \\mid \\theta) - \\log P(\\text{polymorphic} \\mid \\theta)`.
    `RATIO` divides the two logs instead; it reproduces an older formulation and is only kept so the two can be
    compared.
    """

    DIFFERENCE = "difference"
    RATIO = "ratio"


def _as_theta(theta: Theta) -> np.ndarray:
    t = np.asarray(theta, dtype=np.float64)
    if t.size == 0 or not np.all(np.isfinite(t)) or np.any(t <= 0.0):
        raise InvalidParameter("theta must be positive and finite", theta=_describe(t))
    return t


def _describe(t):
    t = np.asarray(t)
    if t.size == 1:
        return float(t.reshape(-1)[0])
    return "array[%d] in [%g, %g]" % (t.size, np.nanmin(t), np.nanmax(t)) if t.size else "[]"


def _result(x: np.ndarray, what: str, theta: np.ndarray, **params) -> Theta:
    if not np.all(np.isfinite(x)):
        raise NumericalInstability(
            "non-finite %s" % what, theta=_describe(theta[~np.isfinite(x)] if x.shape else theta), **params
        )
    return float(x) if x.ndim == 0 else x


def _spectrum(spectrum) -> AlleleSpectrum:
    if isinstance(spectrum, AlleleSpectrum):
        return spectrum.validate()
    if isinstance(spectrum, SpectrumSet):
        raise MalformedSpectrum("expected a single locus, got a spectrum set", num_loci=spectrum.num_loci)
    return AlleleSpectrum(np.asarray(spectrum)).validate()


def _spectra(spectra) -> SpectrumSet:
    if isinstance(spectra, SpectrumSet):
        return spectra.validate()
    if isinstance(spectra, AlleleSpectrum):
        return SpectrumSet((spectra,)).validate()
    return SpectrumSet(tuple(_spectrum(s) for s in spectra)).validate()


def _log_rising(t: np.ndarray, n: int) -> np.ndarray:
    r"log((θ + 1) (θ + 2) ... (θ + n - 1))"
    i = np.arange(1, n, dtype=np.float64)
    return np.log(t[..., None] + i).sum(axis=-1)


def log_esf(spectrum: AlleleSpectrum, theta: Theta) -> Theta:
    "Log probability of `spectrum` under the Ewens sampling formula."
    a = _spectrum(spectrum).counts
    t = _as_theta(theta)
    n = a.size
    j = np.arange(1, n + 1, dtype=np.float64)
    K = a.sum()
    const = gammaln(n + 1) - (a * np.log(j)).sum() - gammaln(a + 1).sum()
    ret = const + (K - 1) * np.log(t) - _log_rising(t, n)
    return _result(ret, "ESF log-likelihood", t, n=n)


def log_esf_multilocus(spectra: Union[SpectrumSet, Sequence[AlleleSpectrum]], theta: Theta) -> Theta:
    "Joint log probability of independent loci sharing one θ: the sum of per-locus terms."
    ss = _spectra(spectra)
    t = _as_theta(theta)
    ret = sum(np.asarray(log_esf(s, t)) for s in ss)
    return _result(np.asarray(ret), "multilocus ESF log-likelihood", t, n=ss.n, num_loci=ss.num_loci)


def log_p_monomorphic(n: int, theta: Theta) -> Theta:
    r"""Log probability that a sample of size `n` carries a single allele:

    .. math:: \log P(a_n = 1 \mid \theta) = -\sum_{i=1}^{n-1} \log(1 + \theta / i)
    """
    if n < 1:
        raise InvalidParameter("sample size must be positive", n=n)
    t = _as_theta(theta)
    i = np.arange(1, n, dtype=np.float64)
    ret = -np.log1p(t[..., None] / i).sum(axis=-1)
    return _result(ret, "log P(monomorphic)", t, n=n)


def log1mexp(x: np.ndarray) -> np.ndarray:
    """Compute `log(1 - exp(x))` for `x <= 0` without cancellation.

    Notes:
        Maechler (2012): use `log(-expm1(x))` near zero and `log1p(-exp(x))` in the tail.
    """
    x = np.asarray(x, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        return np.where(x > -math.log(2.0), np.log(-np.expm1(x)), np.log1p(-np.exp(x)))


def log_p_polymorphic(n: int, theta: Theta) -> Theta:
    "Log probability that a sample of size `n` has at least two alleles."
    if n < 2:
        raise InvalidParameter("a sample needs n >= 2 to be polymorphic", n=n)
    t = _as_theta(theta)
    ret = log1mexp(log_p_monomorphic(n, t))
    return _result(np.asarray(ret), "log P(polymorphic)", t, n=n)


def log_esf_conditional(
    spectrum: Union[AlleleSpectrum, SpectrumSet],
    theta: Theta,
    conditioning: Conditioning = Conditioning.DIFFERENCE,
) -> Theta:
    """Log probability of `spectrum` given that the sample is polymorphic.

    Args:
        spectrum: A single spectrum, or a spectrum set (per-locus conditional terms are summed).
        theta: Scaled mutation rate(s).
        conditioning: See :class:`Conditioning`.

    Raises:
        InvalidParameter: if any locus is monomorphic, which has probability zero under the conditioning.
    """
    ss = _spectra(spectrum)
    t = _as_theta(theta)
    for i, s in enumerate(ss):
        if s.is_monomorphic:
            raise InvalidParameter("conditional likelihood is undefined for a monomorphic locus", locus=i, n=s.n)
    conditioning = Conditioning(conditioning)
    denom = np.asarray(log_p_polymorphic(ss.n, t))
    if conditioning is Conditioning.RATIO:
        warnings.warn(
            "Conditioning.RATIO divides log-probabilities; use Conditioning.DIFFERENCE for P(a | polymorphic)",
            stacklevel=2,
        )
        ret = sum(np.asarray(log_esf(s, t)) / denom for s in ss)
    else:
        ret = sum(np.asarray(log_esf(s, t)) for s in ss) - ss.num_loci * denom
    return _result(np.asarray(ret), "conditional ESF log-likelihood", t, n=ss.n, conditioning=conditioning.value)


# Digits kept beyond the cancellation estimate, and how far _tavare1 may escalate precision.
_GUARD_DIGITS = 20
_MAX_DPS = 4000


def _tavare1(ctx: MPContext, s: int, n: int, theta: float, binoms: Sequence[int]) -> float:
    """log P(S = s) for one θ, summing the alternating series in extended precision.

    Working precision starts at the size of the largest binomial coefficient and is doubled until the
    cancellation loss leaves at least `_GUARD_DIGITS` digits.
    """
    dps = _GUARD_DIGITS + int(math.log10(max(binoms))) + 1
    while dps <= _MAX_DPS:
        ctx.dps = dps
        th = ctx.mpf(theta)
        total = ctx.mpf(0)
        biggest = ctx.mpf(0)
        for j in range(1, n):
            term = binoms[j - 1] * (th / (j + th)) ** (s + 1)
            biggest = max(biggest, term)
            total += term if j % 2 == 1 else -term
        if total > 0:
            lost = ctx.log10(biggest / total)
            if lost < dps - _GUARD_DIGITS:
                return float(ctx.log(n - 1) - ctx.log(th) + ctx.log(total))
        dps *= 2
    raise NumericalInstability("Tavare series did not converge", s=s, n=n, theta=theta, dps=dps)


def log_tavare(segregating_sites: Union[int, Sequence[int]], n: int, theta: Theta) -> Theta:
    r"""Log probability of the number of segregating sites (Tavaré 1984):

    .. math::

        P(S = s \mid \theta) = \frac{n-1}{\theta} \sum_{j=1}^{n-1} (-1)^{j-1} \binom{n-2}{j-1}
            \left(\frac{\theta}{j + \theta}\right)^{s+1}

    Args:
        segregating_sites: Count `s`, or a sequence of counts for independent loci (log-probabilities are summed).
        n: Sample size.
        theta: Scaled mutation rate(s).

    Notes:
        The alternating sum loses about `log10(C(n-2, n/2))` digits to cancellation, more when θ is large, so it is
        evaluated with mpmath at a precision that grows with the observed loss. This is exact but slow for large
        `n`; expect roughly linear cost in `n` per θ value.

        The bare alternating sum, without the leading :math:`(n-1)/\theta`, is sometimes quoted as the
        distribution. It equals :math:`\theta P(S = s) / (n - 1)`, sums to :math:`\theta / (n - 1)` over `s`,
        and so gives a different posterior for θ. The factor is included here so the result is a probability.
    """
    if n < 2:
        raise InvalidParameter("Tavare's formula needs n >= 2", n=n)
    s_all = np.atleast_1d(np.asarray(segregating_sites))
    if s_all.size == 0 or np.any(s_all < 0) or not np.all(np.equal(np.mod(s_all, 1), 0)):
        raise InvalidParameter("segregating site counts must be non-negative integers", S=s_all.tolist())
    t = _as_theta(theta)
    binoms = [math.comb(n - 2, j - 1) for j in range(1, n)]
    ctx = MPContext()  # private to this call, so concurrent callers do not share a precision setting
    ret = np.zeros(t.shape)
    for s in s_all.astype(int):
        flat = np.array([_tavare1(ctx, int(s), n, float(x), binoms) for x in t.reshape(-1)])
        ret = ret + flat.reshape(t.shape)
    return _result(ret, "Tavare log-likelihood", t, n=n)
