import itertools

import msprime as msp
import numpy as np
import pytest

from esftheta.errors import InsufficientSampleSize, InvalidParameter
from esftheta.estimators import (
    Estimate,
    Estimator,
    harmonic_sum,
    mean_pairwise_differences,
    nucleotide_diversity,
    watterson,
    watterson_ts,
)


def test_harmonic_sum():
    assert harmonic_sum(1) == 0.0
    assert harmonic_sum(2) == 1.0
    np.testing.assert_allclose(harmonic_sum(10), 7129 / 2520, atol=1e-6)
    assert round(harmonic_sum(10), 6) == 2.828968
    with pytest.raises(InvalidParameter):
        harmonic_sum(0)


def test_watterson():
    np.testing.assert_allclose(watterson(10, 10), 10 / 2.8289682539682537)
    np.testing.assert_allclose(watterson(10, 10, sequence_length=100), 0.1 / 2.8289682539682537)
    assert watterson(0, 5) == 0.0


@pytest.mark.parametrize("n", [0, 1])
def test_watterson_small_sample(n):
    with pytest.raises(InsufficientSampleSize):
        watterson(3, n)


def test_watterson_ts():
    ts = msp.simulate(sample_size=10, length=100, mutation_rate=0.01, random_seed=2)
    np.testing.assert_allclose(watterson_ts(ts), ts.num_sites / harmonic_sum(10) / 100)


def _brute_force(seqs):
    pairs = list(itertools.combinations(seqs, 2))
    return np.mean([sum(a != b for a, b in zip(x, y)) for x, y in pairs])


def test_mean_pairwise_differences():
    rng = np.random.default_rng(1)
    for n in (2, 3, 7, 20):
        seqs = ["".join(rng.choice(list("ACGT"), size=30)) for _ in range(n)]
        np.testing.assert_allclose(mean_pairwise_differences(seqs), _brute_force(seqs))


def test_nucleotide_diversity():
    seqs = ["AAAA", "AAAT", "AATT"]
    # pairwise differences 1, 2, 1
    np.testing.assert_allclose(nucleotide_diversity(seqs), (4 / 3) / 4)
    np.testing.assert_allclose(nucleotide_diversity(seqs, sequence_length=100), (4 / 3) / 100)


def test_nucleotide_diversity_monomorphic():
    assert nucleotide_diversity(["ACGT"] * 5) == 0.0


def test_nucleotide_diversity_errors():
    with pytest.raises(InsufficientSampleSize):
        nucleotide_diversity(["ACGT"])
    with pytest.raises(InvalidParameter):
        nucleotide_diversity(["", ""])


def test_estimate_covers():
    e = Estimate(Estimator.BAYES_UNCONDITIONAL, 0.1, (0.05, 0.2))
    assert e.covers(0.1)
    assert not e.covers(0.3)
    assert Estimate(Estimator.WATTERSON, 0.1).covers(0.1) is None
    assert Estimator.TAVARE.is_bayesian
    assert not Estimator.WATTERSON.is_bayesian
