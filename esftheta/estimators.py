"Classical point estimators of θ and the estimate container shared with the Bayesian estimators."

import enum
import functools
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np

from .errors import InsufficientSampleSize, InvalidParameter
from .spectrum import alignment_array


class Estimator(enum.Enum):
    WATTERSON = "watterson"
    NUCLEOTIDE_DIVERSITY = "pi"
    BAYES_UNCONDITIONAL = "esf"
    BAYES_CONDITIONAL = "esf_conditional"
    TAVARE = "tavare"

    @property
    def is_bayesian(self) -> bool:
        return self in (Estimator.BAYES_UNCONDITIONAL, Estimator.BAYES_CONDITIONAL, Estimator.TAVARE)


class Estimate(NamedTuple):
    """A point estimate of θ.

    Args:
        estimator: Which estimator produced this value.
        value: Point estimate (posterior mean for the Bayesian estimators).
        interval: 95% equal-tailed credible interval, or None for the classical estimators.
    """

    estimator: Estimator
    value: float
    interval: Optional[Tuple[float, float]] = None

    def covers(self, theta: float) -> Optional[bool]:
        "Whether `theta` lies inside the credible interval; None if there is no interval."
        if self.interval is None:
            return None
        lo, hi = self.interval
        return lo <= theta <= hi


@functools.lru_cache(maxsize=None)
def harmonic_sum(n: int) -> float:
    r"""Watterson's normalising constant for a sample of size `n`:

    .. math:: a_n = \sum_{i=1}^{n-1} 1/i

    Notes:
        `harmonic_sum(1) == 0`. Values are cached per sample size.
    """
    if n < 1:
        raise InvalidParameter("harmonic sum is undefined for n < 1", n=n)
    return float((1.0 / np.arange(1, n)).sum())


def _check_sample_size(n: int):
    if n < 2:
        raise InsufficientSampleSize("at least two sequences are required", n=n)


def watterson(num_segregating_sites: int, n: int, sequence_length: float = None) -> float:
    """Watterson's estimator `S / a_n`.

    Args:
        num_segregating_sites: Number of segregating sites `S` in the sample.
        n: Sample size.
        sequence_length: If given, the estimate is expressed per unit of sequence.
    """
    _check_sample_size(n)
    if num_segregating_sites < 0:
        raise InvalidParameter("number of segregating sites must be non-negative", S=num_segregating_sites)
    ret = num_segregating_sites / harmonic_sum(n)
    if sequence_length is not None:
        if sequence_length <= 0:
            raise InvalidParameter("sequence length must be positive", sequence_length=sequence_length)
        ret /= sequence_length
    return ret


def watterson_ts(ts: "tskit.TreeSequence") -> float:
    "Returns Watterson's estimate of `4 * N0 * mu` computed from tree sequence."
    return watterson(ts.get_num_sites(), ts.get_sample_size(), ts.get_sequence_length())


def mean_pairwise_differences(sequences: Sequence[str]) -> float:
    """Mean number of differing sites over all `n(n-1)/2` pairs of sequences.

    Notes:
        Computed exactly from the symbol counts in each column: a column with counts
        :math:`c_1, \\dots, c_m` contributes :math:`\\binom{n}{2} - \\sum_i \\binom{c_i}{2}` differing pairs.
    """
    X = alignment_array(list(sequences))
    n = X.shape[0]
    _check_sample_size(n)
    pairs = n * (n - 1) / 2
    if X.shape[1] == 0:
        return 0.0
    same = 0
    for symbol in np.unique(X):
        c = (X == symbol).sum(axis=0)
        same += (c * (c - 1) // 2).sum()
    return float(X.shape[1] * pairs - same) / pairs


def nucleotide_diversity(sequences: Sequence[str], sequence_length: float = None) -> float:
    """Nucleotide diversity: mean pairwise differences divided by sequence length.

    Args:
        sequences: Aligned sample.
        sequence_length: Length to normalise by; defaults to the alignment width. Pass this when
            the alignment holds only the variable sites of a longer sequence.
    """
    sequences = list(sequences)
    _check_sample_size(len(sequences))
    if sequence_length is None:
        sequence_length = len(sequences[0])
    if sequence_length <= 0:
        raise InvalidParameter("sequence length must be positive", sequence_length=sequence_length)
    return mean_pairwise_differences(sequences) / sequence_length
