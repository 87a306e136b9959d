"Allele-frequency spectra under the infinite-alleles model."

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Hashable, Iterable, NamedTuple, Sequence, Tuple

import numpy as np

from .errors import InvalidParameter, MalformedSpectrum

logger = logging.getLogger(__name__)


def alignment_array(sequences: Sequence[str]) -> np.ndarray:
    """Return an `(n, L)` array of byte codes for an aligned sample.

    Raises:
        MalformedSpectrum: if the sequences do not all have the same length.
    """
    lengths = {len(s) for s in sequences}
    if len(lengths) > 1:
        raise MalformedSpectrum("sequences are not aligned", lengths=sorted(lengths))
    width = lengths.pop() if lengths else 0
    if not width:
        return np.zeros((len(sequences), 0), dtype=np.uint8)
    buf = "".join(sequences).encode("ascii")
    return np.frombuffer(buf, dtype=np.uint8).reshape(len(sequences), width)


def segregating_sites(sequences: Sequence[str]) -> int:
    "Number of alignment columns carrying more than one distinct symbol."
    X = alignment_array(sequences)
    if X.shape[0] == 0 or X.shape[1] == 0:
        return 0
    return int(np.any(X != X[:1], axis=0).sum())


class AlleleSpectrum(NamedTuple):
    r"""Counts of allelic classes by multiplicity:

    .. math:: a_k = \#\{\text{alleles observed exactly } k \text{ times}\},\quad \sum_k k a_k = n

    Args:
        counts: vector of length `n`; `counts[k - 1]` is :math:`a_k`.
    """

    counts: np.ndarray

    @property
    def n(self) -> int:
        return len(self.counts)

    @property
    def num_alleles(self) -> int:
        return int(self.counts.sum())

    @property
    def is_monomorphic(self) -> bool:
        return self.n > 0 and self.counts[-1] == 1

    def validate(self) -> "AlleleSpectrum":
        "Check the spectrum invariant and return a copy backed by an integer array."
        a = np.asarray(self.counts)
        if a.ndim != 1 or a.size == 0:
            raise MalformedSpectrum("spectrum must be a non-empty vector", shape=a.shape)
        if not np.issubdtype(a.dtype, np.integer):
            if not np.all(np.equal(np.mod(a, 1), 0)):
                raise MalformedSpectrum("spectrum entries must be integers", counts=a.tolist())
        if np.any(a < 0):
            raise MalformedSpectrum("spectrum entries must be non-negative", counts=a.tolist())
        total = int((np.arange(1, a.size + 1) * a).sum())
        if total != a.size:
            raise MalformedSpectrum(
                "sum of k * a[k] does not equal the sample size",
                n=a.size,
                total=total,
            )
        return self._replace(counts=a.astype(np.int64))

    @classmethod
    def monomorphic(cls, n: int) -> "AlleleSpectrum":
        "The spectrum of a sample with no variation: a[n] = 1, all else 0."
        if n < 1:
            raise InvalidParameter("sample size must be positive", n=n)
        a = np.zeros(n, dtype=np.int64)
        a[-1] = 1
        return cls(a)

    @classmethod
    def from_multiplicities(cls, multiplicities: Iterable[int]) -> "AlleleSpectrum":
        """Build a spectrum from the sizes of the allelic classes.

        Example:
            >>> AlleleSpectrum.from_multiplicities([3, 1, 1]).counts.tolist()
            [2, 0, 1, 0, 0]
        """
        m = [int(k) for k in multiplicities]
        if not m:
            raise InvalidParameter("sample is empty")
        if min(m) < 1:
            raise MalformedSpectrum("allele multiplicities must be positive", multiplicities=m)
        n = sum(m)
        a = np.zeros(n, dtype=np.int64)
        for k, c in Counter(m).items():
            a[k - 1] = c
        return cls(a)

    @classmethod
    def from_alleles(cls, alleles: Iterable[Hashable]) -> "AlleleSpectrum":
        "Build a spectrum from a list of allele labels, one per sampled gene."
        return cls.from_multiplicities(Counter(alleles).values())

    @classmethod
    def from_sequences(cls, sequences: Sequence[str]) -> "AlleleSpectrum":
        """Build a spectrum by grouping aligned sequences on exact identity.

        Notes:
            A sample without segregating sites collapses into a single class, so the result is
            `a[n] = 1`. This holds for zero-width alignments as well.
        """
        sequences = list(sequences)
        if not sequences:
            raise InvalidParameter("sample is empty")
        alignment_array(sequences)  # checks alignment
        return cls.from_alleles(sequences)

    @classmethod
    def from_ts(cls, ts: "tskit.TreeSequence") -> "AlleleSpectrum":
        "Build a spectrum from the sample haplotypes of a tree sequence."
        return cls.from_sequences(list(ts.haplotypes()))


@dataclass(frozen=True)
class SpectrumSet:
    """Spectra of `L` loci sampled from the same `n` individuals and sharing one θ.

    Args:
        spectra: tuple of per-locus spectra.
    """

    spectra: Tuple[AlleleSpectrum, ...]

    @property
    def n(self) -> int:
        return self.spectra[0].n

    @property
    def num_loci(self) -> int:
        return len(self.spectra)

    def __iter__(self):
        return iter(self.spectra)

    def __len__(self):
        return len(self.spectra)

    def validate(self) -> "SpectrumSet":
        if not self.spectra:
            raise MalformedSpectrum("spectrum set is empty")
        sizes = set()
        loci = []
        for i, s in enumerate(self.spectra):
            if not isinstance(s, AlleleSpectrum):
                raise MalformedSpectrum("locus is not an allele spectrum", locus=i)
            loci.append(s.validate())
            sizes.add(s.n)
        if len(sizes) > 1:
            raise MalformedSpectrum("loci have different sample sizes", sizes=sorted(sizes))
        return SpectrumSet(tuple(loci))

    @classmethod
    def from_loci(cls, loci: Iterable[AlleleSpectrum]) -> "SpectrumSet":
        return cls(tuple(loci)).validate()
