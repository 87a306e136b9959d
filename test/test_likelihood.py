import math
import warnings

import numpy as np
import pytest
from scipy.special import logsumexp

from esftheta.errors import InvalidParameter, MalformedSpectrum
from esftheta.estimators import harmonic_sum
from esftheta.likelihood import (
    Conditioning,
    log1mexp,
    log_esf,
    log_esf_conditional,
    log_esf_multilocus,
    log_p_monomorphic,
    log_p_polymorphic,
    log_tavare,
)
from esftheta.spectrum import AlleleSpectrum, SpectrumSet


def partitions(n, largest=None):
    "Integer partitions of n as lists of parts."
    if largest is None:
        largest = n
    if n == 0:
        yield []
        return
    for k in range(min(n, largest), 0, -1):
        for p in partitions(n - k, k):
            yield [k] + p


def all_spectra(n):
    return [AlleleSpectrum.from_multiplicities(p) for p in partitions(n)]


@pytest.fixture(params=[0.01, 0.5, 1.0, 7.3, 250.0])
def theta(request):
    return request.param


@pytest.mark.parametrize("n", [1, 2, 4, 5, 8])
def test_esf_normalization(n, theta):
    lp = [log_esf(a, theta) for a in all_spectra(n)]
    np.testing.assert_allclose(logsumexp(lp), 0.0, atol=1e-10)


def test_esf_vectorized():
    a = AlleleSpectrum.from_multiplicities([3, 1, 1])
    t = np.array([0.1, 1.0, 10.0])
    np.testing.assert_allclose(log_esf(a, t), [log_esf(a, x) for x in t])
    assert isinstance(log_esf(a, 1.0), float)


def test_esf_known_value():
    # n = 2: P(two alleles) = theta / (1 + theta)
    a = AlleleSpectrum.from_multiplicities([1, 1])
    np.testing.assert_allclose(log_esf(a, 0.5), np.log(0.5 / 1.5))


def test_esf_large_n():
    n = 5000
    a = AlleleSpectrum.from_multiplicities([n - 100] + [1] * 100)
    for t in (1e-3, 1.0, 1e3):
        assert np.isfinite(log_esf(a, t))


def test_multilocus_additivity():
    loci = [
        AlleleSpectrum.from_multiplicities([4, 1]),
        AlleleSpectrum.monomorphic(5),
        AlleleSpectrum.from_multiplicities([2, 2, 1]),
    ]
    t = np.geomspace(0.01, 10, 7)
    np.testing.assert_allclose(log_esf_multilocus(loci, t), sum(log_esf(a, t) for a in loci))
    np.testing.assert_allclose(
        log_esf_multilocus(SpectrumSet.from_loci(loci), 2.0), sum(log_esf(a, 2.0) for a in loci)
    )


def test_multilocus_mixed_sizes():
    with pytest.raises(MalformedSpectrum):
        log_esf_multilocus([AlleleSpectrum.monomorphic(3), AlleleSpectrum.monomorphic(4)], 1.0)


@pytest.mark.parametrize("n", [1, 2, 10, 250])
def test_monomorphic_matches_esf(n, theta):
    np.testing.assert_allclose(log_p_monomorphic(n, theta), log_esf(AlleleSpectrum.monomorphic(n), theta))


def test_polymorphic_stable():
    n = 50
    # P(monomorphic) underflows: log P(polymorphic) -> 0
    assert log_p_polymorphic(n, 1e4) == pytest.approx(0.0, abs=1e-12)
    assert np.isfinite(log_p_polymorphic(n, 1e6))
    # P(polymorphic) ~ theta * a_n for small theta
    t = 1e-12
    np.testing.assert_allclose(log_p_polymorphic(n, t), np.log(t * harmonic_sum(n)), rtol=1e-6)


def test_polymorphic_needs_two_sequences():
    with pytest.raises(InvalidParameter) as e:
        log_p_polymorphic(1, 1.0)
    assert e.value.params == {"n": 1}


def test_log1mexp():
    x = np.array([-1e-20, -1e-5, -0.5, -1.0, -50.0, -800.0])
    with np.errstate(divide="ignore"):
        naive = np.log(1 - np.exp(x[2:4]))
    np.testing.assert_allclose(log1mexp(x[2:4]), naive)
    np.testing.assert_allclose(log1mexp(x[:1]), np.log(1e-20))
    assert np.all(np.isfinite(log1mexp(x)))


@pytest.mark.parametrize("mults", [[1, 1], [3, 1, 1], [2, 2, 1, 1, 1], [9, 1]])
def test_conditioning(mults, theta):
    a = AlleleSpectrum.from_multiplicities(mults)
    lhs = log_esf_conditional(a, theta) + log_p_polymorphic(a.n, theta)
    np.testing.assert_allclose(lhs, log_esf(a, theta))


@pytest.mark.parametrize("n", [2, 4, 5])
def test_conditional_normalization(n, theta):
    lp = [log_esf_conditional(a, theta) for a in all_spectra(n) if not a.is_monomorphic]
    np.testing.assert_allclose(logsumexp(lp), 0.0, atol=1e-10)


def test_conditional_multilocus():
    loci = [AlleleSpectrum.from_multiplicities([3, 1]), AlleleSpectrum.from_multiplicities([2, 1, 1])]
    ss = SpectrumSet.from_loci(loci)
    np.testing.assert_allclose(log_esf_conditional(ss, 0.7), sum(log_esf_conditional(a, 0.7) for a in loci))


def test_conditional_monomorphic():
    with pytest.raises(InvalidParameter):
        log_esf_conditional(AlleleSpectrum.monomorphic(6), 1.0)


def test_conditional_ratio_form():
    a = AlleleSpectrum.from_multiplicities([3, 1, 1])
    t = np.array([0.1, 1.0, 5.0])
    with pytest.warns(UserWarning):
        ratio = log_esf_conditional(a, t, Conditioning.RATIO)
    np.testing.assert_allclose(ratio, log_esf(a, t) / log_p_polymorphic(a.n, t))
    diff = log_esf_conditional(a, t, Conditioning.DIFFERENCE)
    np.testing.assert_allclose(diff, log_esf(a, t) - log_p_polymorphic(a.n, t))
    assert not np.allclose(ratio, diff)
    # the difference form is a log-probability, the ratio form is not
    assert np.all(diff <= 0)
    assert np.all(ratio > 0)


def test_default_conditioning_is_silent():
    a = AlleleSpectrum.from_multiplicities([1, 1])
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        log_esf_conditional(a, 1.0)


@pytest.mark.parametrize("bad", [0.0, -1.0, np.nan, np.inf, [1.0, 0.0]])
def test_invalid_theta(bad):
    a = AlleleSpectrum.from_multiplicities([1, 1])
    for f in (
        lambda: log_esf(a, bad),
        lambda: log_esf_conditional(a, bad),
        lambda: log_p_monomorphic(2, bad),
        lambda: log_tavare(1, 2, bad),
    ):
        with pytest.raises(InvalidParameter):
            f()


def test_malformed_input():
    with pytest.raises(MalformedSpectrum):
        log_esf(AlleleSpectrum(np.array([2, 1])), 1.0)
    with pytest.raises(MalformedSpectrum):
        log_esf([0, 0, 2], 1.0)


def test_tavare_n2_geometric():
    t = 0.7
    for s in range(6):
        expected = np.log(1 / (1 + t)) + s * np.log(t / (1 + t))
        np.testing.assert_allclose(log_tavare(s, 2, t), expected)


@pytest.mark.parametrize("n", [3, 5, 12])
def test_tavare_normalization(n):
    t = 0.8
    lp = [log_tavare(s, n, t) for s in range(400)]
    np.testing.assert_allclose(logsumexp(lp), 0.0, atol=1e-8)


@pytest.mark.parametrize("n", [2, 10, 60])
def test_tavare_zero_sites_is_monomorphic(n, theta):
    np.testing.assert_allclose(log_tavare(0, n, theta), log_p_monomorphic(n, theta), rtol=1e-9)


def test_tavare_prefactor():
    # without the leading (n - 1) / theta the alternating sum is theta / (n - 1) times the probability
    n, t = 7, 1.3
    for s in range(5):
        bare = sum(
            (-1) ** (j - 1) * math.comb(n - 2, j - 1) * (t / (j + t)) ** (s + 1) for j in range(1, n)
        )
        np.testing.assert_allclose(log_tavare(s, n, t), np.log(bare) + np.log((n - 1) / t), rtol=1e-9)
    bare_total = np.exp(logsumexp([log_tavare(s, n, t) for s in range(400)])) * t / (n - 1)
    np.testing.assert_allclose(bare_total, t / (n - 1), rtol=1e-8)


def test_tavare_mean():
    # E[S] = theta * a_n
    n, t = 6, 1.5
    s = np.arange(300)
    p = np.exp([log_tavare(k, n, t) for k in s])
    np.testing.assert_allclose((s * p).sum(), t * harmonic_sum(n), rtol=1e-6)


def test_tavare_large_n():
    # the alternating sum cancels to many digits here
    for t in (0.01, 1.0, 50.0):
        assert np.isfinite(log_tavare(1, 150, t))


def test_tavare_multilocus():
    t = np.array([0.5, 2.0])
    np.testing.assert_allclose(log_tavare([1, 3], 8, t), log_tavare(1, 8, t) + log_tavare(3, 8, t))


def test_tavare_invalid():
    with pytest.raises(InvalidParameter):
        log_tavare(1, 1, 1.0)
    with pytest.raises(InvalidParameter):
        log_tavare(-1, 5, 1.0)


def test_non_finite_is_reported():
    from esftheta.errors import NumericalInstability
    from esftheta.likelihood import _result

    with pytest.raises(NumericalInstability) as e:
        _result(np.array([-1.0, np.nan]), "test value", np.array([1.0, 2.0]), n=5)
    assert e.value.params == {"theta": 2.0, "n": 5}
