"""Monte-Carlo calibration of θ estimators.

Each replicate is a pure function of the run parameters and its own seed: simulate a sample (retrying until it passes
the ascertainment filter), compute every requested estimator, and return a :class:`ReplicationRecord`. :func:`run`
executes replicates on a thread pool and aggregates bias, RMSE and coverage over the completed replicates. Replicates
whose posterior is unavailable, or whose ascertainment loop hits its retry cap, are recorded as failures and excluded
from the aggregates.
"""

import concurrent.futures
import enum
import itertools
import logging
import os
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import AscertainmentRetryExceeded, InvalidParameter, PosteriorUnavailable
from .estimators import Estimate, Estimator, nucleotide_diversity, watterson
from .likelihood import Conditioning
from .posterior import GridSampler, ModelChoice, PosteriorSpec, infer
from .prior import GammaPrior, LogNormalPrior, Prior
from .simulate import FiniteSitesSimulator, InfiniteSitesSimulator, LocusSample
from .spectrum import AlleleSpectrum, SpectrumSet

logger = logging.getLogger(__name__)


class Ascertainment(enum.Enum):
    NONE = "none"
    POLYMORPHIC = "polymorphic"  # at least one segregating site
    SINGLETON_SITE = "one-site"  # exactly one segregating site

    def accepts(self, num_segregating_sites: int) -> bool:
        if self is Ascertainment.POLYMORPHIC:
            return num_segregating_sites >= 1
        if self is Ascertainment.SINGLETON_SITE:
            return num_segregating_sites == 1
        return True


@dataclass
class SimulationParams:
    """Configuration of a calibration run.

    Args:
        n: Sample size.
        theta: True scaled mutation parameter of each locus.
        num_replicates: Number of simulated trials.
        num_loci: Number of independent loci per trial, sharing `theta`.
        sequence_length: Number of sites per locus under the finite-sequence model; None for infinite sites.
        kappa: Transition/transversion ratio of the finite-sequence model.
        prior: Prior over θ for the Bayesian estimators.
        ascertainment: Filter applied to every simulated locus.
        max_retries: Cap on simulation attempts per locus under ascertainment; None for no cap.
        estimators: Estimators to compute. Defaults to Watterson, nucleotide diversity and unconditional ESF, plus
            conditional ESF under ascertainment and Tavaré under single-site ascertainment.
        conditioning: Combination rule for the conditional ESF.
        num_draws: Posterior draws per Bayesian estimate.
        fail_fast: Raise the first per-replicate failure instead of recording it.
        retain_records: Keep every :class:`ReplicationRecord` on the result.
        num_workers: Thread pool size; defaults to the number of CPUs.
        time_budget: Wall-clock budget in seconds; replicates not started by then are skipped.
        seed: Root seed. Replicate seeds are spawned from it.

    Notes:
        All estimates are expressed per locus. The finite-sequence nucleotide diversity is therefore multiplied by
        the sequence length before it is compared with `theta`.
    """

    n: int
    theta: float
    num_replicates: int = 100
    num_loci: int = 1
    sequence_length: Optional[int] = None
    kappa: float = 2.0
    prior: Prior = field(default_factory=GammaPrior)
    ascertainment: Ascertainment = Ascertainment.NONE
    max_retries: Optional[int] = 1000
    estimators: Tuple[Estimator, ...] = None
    conditioning: Conditioning = Conditioning.DIFFERENCE
    num_draws: int = 1000
    fail_fast: bool = False
    retain_records: bool = False
    num_workers: Optional[int] = None
    time_budget: Optional[float] = None
    seed: Optional[int] = None

    def __post_init__(self):
        if self.n < 2:
            raise InvalidParameter("sample size must be at least 2", n=self.n)
        if not (np.isfinite(self.theta) and self.theta > 0):
            raise InvalidParameter("theta must be positive", theta=self.theta)
        if self.num_replicates < 1:
            raise InvalidParameter("need at least one replicate", num_replicates=self.num_replicates)
        if self.num_loci < 1:
            raise InvalidParameter("need at least one locus", num_loci=self.num_loci)
        if self.sequence_length is not None and self.sequence_length < 1:
            raise InvalidParameter("sequence length must be positive", sequence_length=self.sequence_length)
        if self.kappa <= 0:
            raise InvalidParameter("kappa must be positive", kappa=self.kappa)
        if self.max_retries is not None and self.max_retries < 1:
            raise InvalidParameter("max_retries must be positive or None", max_retries=self.max_retries)
        if self.num_draws < 1:
            raise InvalidParameter("num_draws must be positive", num_draws=self.num_draws)
        if not isinstance(self.prior, (GammaPrior, LogNormalPrior)):
            raise InvalidParameter("prior must be a GammaPrior or LogNormalPrior", prior=self.prior)
        self.prior.validate()
        self.ascertainment = Ascertainment(self.ascertainment)
        self.conditioning = Conditioning(self.conditioning)
        if self.estimators is None:
            self.estimators = self.default_estimators()
        self.estimators = tuple(Estimator(e) for e in self.estimators)
        if Estimator.BAYES_CONDITIONAL in self.estimators and self.ascertainment is Ascertainment.NONE:
            raise InvalidParameter(
                "the conditional ESF estimator needs ascertained (polymorphic) samples",
                ascertainment=self.ascertainment.value,
            )

    def default_estimators(self) -> Tuple[Estimator, ...]:
        ret = [Estimator.WATTERSON, Estimator.NUCLEOTIDE_DIVERSITY, Estimator.BAYES_UNCONDITIONAL]
        if self.ascertainment is not Ascertainment.NONE:
            ret.append(Estimator.BAYES_CONDITIONAL)
        if self.ascertainment is Ascertainment.SINGLETON_SITE:
            ret.append(Estimator.TAVARE)
        return tuple(ret)

    def simulator(self) -> Callable[[int, float, np.random.Generator], LocusSample]:
        if self.sequence_length is None:
            return InfiniteSitesSimulator()
        return FiniteSitesSimulator(sequence_length=self.sequence_length, kappa=self.kappa)


class ReplicationRecord(NamedTuple):
    """The outcome of one simulated trial.

    Args:
        index: Position of the replicate in the run.
        seed: Seed the replicate was run with; passing it back to :func:`replicate` reproduces the record.
        n: Sample size.
        theta: True θ.
        num_loci: Number of loci.
        sequence_length: Sites per locus, or None under infinite sites.
        spectra: Per-locus allele-frequency spectra.
        segregating_sites: Per-locus segregating-site counts.
        attempts: Total number of simulations needed to pass ascertainment, over all loci.
        estimates: Estimate for each requested estimator.
    """

    index: int
    seed: object
    n: int
    theta: float
    num_loci: int
    sequence_length: Optional[int]
    spectra: SpectrumSet
    segregating_sites: Tuple[int, ...]
    attempts: int
    estimates: Dict[Estimator, Estimate]

    @property
    def spectrum(self) -> AlleleSpectrum:
        "Spectrum of the first locus."
        return self.spectra.spectra[0]


class ReplicateFailure(NamedTuple):
    index: int
    seed: object
    error: Exception


ReplicateResult = Union[ReplicationRecord, ReplicateFailure]


def simulate_locus(
    params: SimulationParams, simulator, rng: np.random.Generator
) -> Tuple[LocusSample, int]:
    """Simulate one locus, retrying until it passes the ascertainment filter.

    Returns:
        The accepted sample and the number of attempts it took.

    Raises:
        AscertainmentRetryExceeded: if `params.max_retries` attempts all fail the filter.
    """
    attempts = itertools.count(1) if params.max_retries is None else range(1, params.max_retries + 1)
    for attempt in attempts:
        sample = simulator(params.n, params.theta, rng)
        if params.ascertainment.accepts(sample.num_segregating_sites):
            return sample, attempt
    raise AscertainmentRetryExceeded(
        "no acceptable sample",
        ascertainment=params.ascertainment.value,
        max_retries=params.max_retries,
        n=params.n,
        theta=params.theta,
    )


def _bayes(params, model, data, engine, rng, estimator) -> Estimate:
    spec = PosteriorSpec(model=model, data=data, prior=params.prior, n=params.n, conditioning=params.conditioning)
    return infer(spec, engine=engine, num_draws=params.num_draws, rng=rng, estimator=estimator)


def _estimate(
    estimator: Estimator,
    params: SimulationParams,
    loci: Sequence[LocusSample],
    spectra: SpectrumSet,
    engine,
    rng: np.random.Generator,
) -> Estimate:
    S = [locus.num_segregating_sites for locus in loci]
    if estimator is Estimator.WATTERSON:
        return Estimate(estimator, float(np.mean([watterson(s, params.n) for s in S])))
    if estimator is Estimator.NUCLEOTIDE_DIVERSITY:
        # per-site diversity rescaled to the whole locus
        pi = [nucleotide_diversity(x.sequences, x.sequence_length) * x.sequence_length for x in loci]
        return Estimate(estimator, float(np.mean(pi)))
    if estimator is Estimator.BAYES_UNCONDITIONAL:
        if spectra.num_loci == 1:
            return _bayes(params, ModelChoice.ESF, spectra.spectra[0], engine, rng, estimator)
        return _bayes(params, ModelChoice.MULTILOCUS_ESF, spectra, engine, rng, estimator)
    if estimator is Estimator.BAYES_CONDITIONAL:
        data = spectra.spectra[0] if spectra.num_loci == 1 else spectra
        return _bayes(params, ModelChoice.CONDITIONAL_ESF, data, engine, rng, estimator)
    return _bayes(params, ModelChoice.TAVARE, S, engine, rng, estimator)


def replicate(
    params: SimulationParams,
    index: int = 0,
    seed=None,
    simulator=None,
    engine=None,
) -> ReplicationRecord:
    """Run one simulate-estimate cycle.

    Args:
        params: Run configuration.
        index: Replicate index, copied to the record.
        seed: Anything accepted by `numpy.random.default_rng`.
        simulator: Callable `(n, theta, rng) -> LocusSample`; defaults to `params.simulator()`.
        engine: Posterior-sampling engine; defaults to :class:`GridSampler`.
    """
    rng = np.random.default_rng(seed)
    if simulator is None:
        simulator = params.simulator()
    if engine is None:
        engine = GridSampler()
    loci = []
    attempts = 0
    for _ in range(params.num_loci):
        sample, k = simulate_locus(params, simulator, rng)
        loci.append(sample)
        attempts += k
    spectra = SpectrumSet.from_loci(x.spectrum for x in loci)
    estimates = {e: _estimate(e, params, loci, spectra, engine, rng) for e in params.estimators}
    logger.debug("replicate %d: S=%s after %d attempts", index, [x.num_segregating_sites for x in loci], attempts)
    return ReplicationRecord(
        index=index,
        seed=seed,
        n=params.n,
        theta=params.theta,
        num_loci=params.num_loci,
        sequence_length=params.sequence_length,
        spectra=spectra,
        segregating_sites=tuple(x.num_segregating_sites for x in loci),
        attempts=attempts,
        estimates=estimates,
    )


class Summary(NamedTuple):
    """Aggregate statistics of one estimator over the completed replicates.

    `coverage` is nan for estimators that do not produce an interval.
    """

    estimator: Estimator
    n: int
    mean: float
    sd: float
    bias: float
    rmse: float
    coverage: float


def summarize_estimates(estimator: Estimator, estimates: Sequence[Estimate], theta: float) -> Summary:
    "Summarise `estimates` against the true `theta`, over the whole sequence at once."
    x = np.array([e.value for e in estimates], dtype=np.float64)
    if x.size == 0:
        return Summary(estimator, 0, np.nan, np.nan, np.nan, np.nan, np.nan)
    err = x - theta
    covered = [c for c in (e.covers(theta) for e in estimates) if c is not None]
    return Summary(
        estimator=estimator,
        n=x.size,
        mean=float(x.mean()),
        sd=float(x.std(ddof=1)) if x.size > 1 else np.nan,
        bias=float(err.mean()),
        rmse=float(np.sqrt(np.mean(err ** 2))),
        coverage=float(np.mean(covered)) if covered else np.nan,
    )


def aggregate(records: Sequence[ReplicationRecord], theta: float = None) -> Dict[Estimator, Summary]:
    """Summarise a sequence of records, one :class:`Summary` per estimator.

    Args:
        records: Completed replicates.
        theta: True θ; defaults to the value stored on the records.
    """
    by_estimator: Dict[Estimator, List[Estimate]] = {}
    for r in records:
        if theta is None:
            theta = r.theta
        for e, est in r.estimates.items():
            by_estimator.setdefault(e, []).append(est)
    return {e: summarize_estimates(e, v, theta) for e, v in by_estimator.items()}


@dataclass
class CalibrationResult:
    """Outcome of :func:`run`.

    Args:
        params: Run configuration.
        estimates: Per-estimator estimates from the completed replicates, in replicate order.
        failures: Replicates excluded from the aggregates, in replicate order.
        records: Completed replicates in order; empty unless `params.retain_records`.
        num_skipped: Replicates never started because the time budget ran out.
    """

    params: SimulationParams
    estimates: Dict[Estimator, List[Estimate]]
    failures: List[ReplicateFailure]
    records: List[ReplicationRecord] = field(default_factory=list)
    num_skipped: int = 0

    @property
    def num_completed(self) -> int:
        return max((len(v) for v in self.estimates.values()), default=0)

    def failure_counts(self) -> Dict[str, int]:
        "Number of excluded replicates by error type."
        return dict(Counter(type(f.error).__name__ for f in self.failures))

    def summary(self) -> Dict[Estimator, Summary]:
        return {e: summarize_estimates(e, v, self.params.theta) for e, v in self.estimates.items()}


def log_progress(result: ReplicateResult, completed: int, total: int):
    "Observer for :func:`run` that logs progress roughly every tenth of the run."
    if completed == total or completed % max(1, total // 10) == 0:
        logger.info("%d/%d replicates done", completed, total)
    if isinstance(result, ReplicateFailure):
        logger.debug("replicate %d failed: %s", result.index, result.error)


def _guarded(params, index, seed, simulator, engine) -> ReplicateResult:
    try:
        return replicate(params, index, seed, simulator, engine)
    except (PosteriorUnavailable, AscertainmentRetryExceeded) as e:
        if params.fail_fast:
            raise
        return ReplicateFailure(index=index, seed=seed, error=e)


def run(
    params: SimulationParams,
    simulator=None,
    engine=None,
    observer: Callable[[ReplicateResult, int, int], None] = None,
) -> CalibrationResult:
    """Run `params.num_replicates` replicates in parallel and collect the results.

    Args:
        params: Run configuration.
        simulator: Passed to :func:`replicate`; shared by all workers.
        engine: Passed to :func:`replicate`; shared by all workers.
        observer: Called as `observer(result, completed, total)` after each replicate finishes.

    Notes:
        Replicates finish in arbitrary order; the returned estimates, records and failures are sorted by replicate
        index so that aggregation does not depend on scheduling.
    """
    if simulator is None:
        simulator = params.simulator()
    if engine is None:
        engine = GridSampler()
    seeds = np.random.SeedSequence(params.seed).spawn(params.num_replicates)
    total = params.num_replicates
    results: List[ReplicateResult] = []
    logger.info(
        "Calibrating %d estimators: n=%d theta=%g loci=%d replicates=%d ascertainment=%s",
        len(params.estimators),
        params.n,
        params.theta,
        params.num_loci,
        total,
        params.ascertainment.value,
    )

    def collect(f):
        res = f.result()
        results.append(res)
        if observer is not None:
            observer(res, len(results), total)

    num_skipped = 0
    start = time.monotonic()
    with concurrent.futures.ThreadPoolExecutor(max_workers=params.num_workers or os.cpu_count()) as p:
        futs = [p.submit(_guarded, params, i, s, simulator, engine) for i, s in enumerate(seeds)]
        done = set()
        try:
            try:
                for f in concurrent.futures.as_completed(futs, timeout=params.time_budget):
                    done.add(f)
                    collect(f)
            except concurrent.futures.TimeoutError:
                num_skipped = sum(f.cancel() for f in futs)
                logger.warning("Time budget of %gs exhausted; skipping %d replicates", params.time_budget, num_skipped)
                for f in futs:
                    if f not in done and not f.cancelled():
                        collect(f)
        except Exception:
            for f in futs:
                f.cancel()
            raise

    results.sort(key=lambda r: r.index)
    records = [r for r in results if isinstance(r, ReplicationRecord)]
    failures = [r for r in results if isinstance(r, ReplicateFailure)]
    estimates = {e: [r.estimates[e] for r in records] for e in params.estimators}
    if failures:
        logger.warning(
            "%d of %d replicates excluded: %s",
            len(failures),
            total,
            dict(Counter(type(f.error).__name__ for f in failures)),
        )
    logger.info("Finished %d replicates in %.1fs", len(records), time.monotonic() - start)
    return CalibrationResult(
        params=params,
        estimates=estimates,
        failures=failures,
        records=records if params.retain_records else [],
        num_skipped=num_skipped,
    )
