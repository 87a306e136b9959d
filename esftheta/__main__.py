"""Command line front end: run a calibration and print per-estimator bias, RMSE and coverage.

Example:

    python -m esftheta -n 25 --theta 0.1 --replicates 100 --ascertainment polymorphic
"""
import argparse
import logging
import sys

import numpy as np

from .errors import InvalidParameter
from .estimators import Estimator
from .harness import Ascertainment, SimulationParams, log_progress, run
from .likelihood import Conditioning
from .posterior import GridSampler, MetropolisSampler
from .prior import parse_prior
from .simulate import FiniteSitesSimulator
from .supporting.seqgen import SeqGen

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="esftheta", description=__doc__.splitlines()[0])
    parser.add_argument("-n", "--sample-size", type=int, required=True, help="number of sampled sequences")
    parser.add_argument("--theta", type=float, required=True, help="true scaled mutation parameter per locus")
    parser.add_argument("--replicates", type=int, default=100)
    parser.add_argument("--loci", type=int, default=1, help="independent loci per replicate")
    parser.add_argument("--length", type=int, default=None, help="sites per locus (omit for infinite sites)")
    parser.add_argument("--kappa", type=float, default=2.0, help="transition/transversion ratio")
    parser.add_argument(
        "--sequence-generator",
        choices=["msprime", "seq-gen"],
        default="msprime",
        help="substitution simulator for finite sequences (seq-gen is found via SEQGEN_PATH)",
    )
    parser.add_argument("--prior", choices=["gamma", "lognormal"], default="gamma")
    parser.add_argument(
        "--prior-params",
        type=float,
        nargs=2,
        default=(1.0, 1.0),
        metavar=("A", "B"),
        help="shape and rate (gamma) or mu and sigma (lognormal)",
    )
    parser.add_argument("--ascertainment", choices=[a.value for a in Ascertainment], default="none")
    parser.add_argument("--max-retries", type=int, default=1000)
    parser.add_argument(
        "--estimators",
        nargs="+",
        choices=[e.value for e in Estimator],
        default=None,
        help="estimators to compute (default depends on --ascertainment)",
    )
    parser.add_argument("--conditioning", choices=[c.value for c in Conditioning], default="difference")
    parser.add_argument("--engine", choices=["grid", "metropolis"], default="grid")
    parser.add_argument("--draws", type=int, default=1000, help="posterior draws per estimate")
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--time-budget", type=float, default=None, help="wall-clock budget in seconds")
    parser.add_argument("--fail-fast", action="store_true")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def format_summary(result) -> str:
    rows = ["%-16s %6s %10s %10s %10s %10s %9s" % ("estimator", "n", "mean", "sd", "bias", "rmse", "coverage")]
    for e, s in result.summary().items():
        rows.append(
            "%-16s %6d %10.4g %10.4g %10.4g %10.4g %9s"
            % (e.value, s.n, s.mean, s.sd, s.bias, s.rmse, "-" if np.isnan(s.coverage) else "%.3f" % s.coverage)
        )
    counts = result.failure_counts()
    rows.append("failed: %d %s" % (len(result.failures), counts if counts else ""))
    if result.num_skipped:
        rows.append("skipped: %d" % result.num_skipped)
    return "\n".join(rows)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger("esftheta").setLevel(logging.DEBUG)
    params = SimulationParams(
        n=args.sample_size,
        theta=args.theta,
        num_replicates=args.replicates,
        num_loci=args.loci,
        sequence_length=args.length,
        kappa=args.kappa,
        prior=parse_prior(args.prior, *args.prior_params),
        ascertainment=Ascertainment(args.ascertainment),
        max_retries=args.max_retries,
        estimators=None if args.estimators is None else tuple(Estimator(e) for e in args.estimators),
        conditioning=Conditioning(args.conditioning),
        num_draws=args.draws,
        fail_fast=args.fail_fast,
        num_workers=args.workers,
        time_budget=args.time_budget,
        seed=args.seed,
    )
    engine = GridSampler() if args.engine == "grid" else MetropolisSampler()
    simulator = None
    if args.sequence_generator == "seq-gen":
        if args.length is None:
            raise InvalidParameter("seq-gen needs a finite --length")
        simulator = FiniteSitesSimulator(
            sequence_length=args.length, kappa=args.kappa, generator=SeqGen(kappa=args.kappa)
        )
    result = run(params, simulator=simulator, engine=engine, observer=log_progress)
    print(format_summary(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
