"""Simulated samples for calibration runs.

Time is in msprime's legacy units with `Ne = 1`, so that a mutation rate of `theta / 4` per unit of sequence gives a
locus with scaled mutation parameter `theta` and `E[S] = theta * a_n`.
"""

import logging
from dataclasses import dataclass, field
from typing import List, NamedTuple

import msprime as msp
import numpy as np

from .errors import InvalidParameter
from .spectrum import AlleleSpectrum, segregating_sites

logger = logging.getLogger(__name__)


def seed(rng: np.random.Generator) -> int:
    "Draw a seed acceptable to msprime."
    return int(rng.integers(1, np.iinfo(np.int32).max))


class LocusSample(NamedTuple):
    """One simulated locus.

    Args:
        sequences: Aligned sample. Under infinite sites these are the 0/1 haplotypes over the segregating sites.
        sequence_length: Length of the locus; the alignment may hold only its variable sites.
        num_segregating_sites: Number of segregating sites in the alignment.
        spectrum: Allele-frequency spectrum of the sample.
    """

    sequences: List[str]
    sequence_length: float
    num_segregating_sites: int
    spectrum: AlleleSpectrum

    @property
    def n(self) -> int:
        return len(self.sequences)

    @classmethod
    def from_sequences(cls, sequences: List[str], sequence_length: float) -> "LocusSample":
        sequences = list(sequences)
        return cls(
            sequences=sequences,
            sequence_length=sequence_length,
            num_segregating_sites=segregating_sites(sequences),
            spectrum=AlleleSpectrum.from_sequences(sequences),
        )


@dataclass
class CoalescentSimulator:
    "Kingman coalescent genealogies for a single non-recombining locus (msprime)."

    Ne: float = 1.0

    def genealogy(self, n: int, rng: np.random.Generator, length: float = 1.0) -> "tskit.TreeSequence":
        "Simulate a genealogy without mutations."
        return msp.simulate(sample_size=n, Ne=self.Ne, length=length, random_seed=seed(rng))

    def mutated(self, n: int, theta: float, rng: np.random.Generator) -> "tskit.TreeSequence":
        "Simulate a genealogy with infinite-sites mutations at total scaled rate `theta`."
        return msp.simulate(
            sample_size=n, Ne=self.Ne, length=1.0, mutation_rate=theta / (4 * self.Ne), random_seed=seed(rng)
        )


@dataclass
class MsprimeSequenceGenerator:
    """Paint HKY substitutions onto a genealogy and return the full alignment.

    Args:
        kappa: Transition/transversion rate ratio.
    """

    kappa: float = 2.0

    def __call__(self, genealogy: "tskit.TreeSequence", theta: float, rng: np.random.Generator) -> List[str]:
        L = int(genealogy.sequence_length)
        ts = msp.sim_mutations(
            genealogy,
            rate=theta / (4 * L),
            model=msp.HKY(kappa=self.kappa),
            discrete_genome=True,
            random_seed=seed(rng),
        )
        reference = "".join(rng.choice(list("ACGT"), size=L))
        return list(ts.alignments(reference_sequence=reference))


@dataclass
class InfiniteSitesSimulator:
    "Samples under the infinite-sites model; the locus has unit length."

    coalescent: CoalescentSimulator = field(default_factory=CoalescentSimulator)

    def __call__(self, n: int, theta: float, rng: np.random.Generator) -> LocusSample:
        ts = self.coalescent.mutated(n, theta, rng)
        return LocusSample.from_sequences(list(ts.haplotypes()), ts.get_sequence_length())


@dataclass
class FiniteSitesSimulator:
    """Samples of `sequence_length` sites with HKY substitutions.

    Args:
        sequence_length: Number of sites.
        kappa: Transition/transversion rate ratio, used when `generator` is not given.
        generator: Callable `(genealogy, theta, rng) -> sequences`; defaults to :class:`MsprimeSequenceGenerator`.
    """

    sequence_length: int
    kappa: float = 2.0
    generator: object = None
    coalescent: CoalescentSimulator = field(default_factory=CoalescentSimulator)

    def __post_init__(self):
        if self.sequence_length < 1 or int(self.sequence_length) != self.sequence_length:
            raise InvalidParameter("sequence length must be a positive integer", sequence_length=self.sequence_length)
        self.sequence_length = int(self.sequence_length)
        if self.kappa <= 0:
            raise InvalidParameter("kappa must be positive", kappa=self.kappa)
        if self.generator is None:
            self.generator = MsprimeSequenceGenerator(kappa=self.kappa)

    def __call__(self, n: int, theta: float, rng: np.random.Generator) -> LocusSample:
        genealogy = self.coalescent.genealogy(n, rng, length=self.sequence_length)
        sequences = self.generator(genealogy, theta, rng)
        return LocusSample.from_sequences(sequences, self.sequence_length)
