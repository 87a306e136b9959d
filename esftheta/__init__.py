import logging

from .errors import (
    AscertainmentRetryExceeded,
    EsfThetaError,
    InsufficientSampleSize,
    InvalidParameter,
    MalformedSpectrum,
    NumericalInstability,
    PosteriorUnavailable,
)
from .estimators import Estimate, Estimator, harmonic_sum, nucleotide_diversity, watterson
from .harness import Ascertainment, CalibrationResult, SimulationParams, replicate, run
from .likelihood import (
    Conditioning,
    log_esf,
    log_esf_conditional,
    log_esf_multilocus,
    log_p_monomorphic,
    log_p_polymorphic,
    log_tavare,
)
from .posterior import GridSampler, MetropolisSampler, ModelChoice, PosteriorSpec, infer, summarize
from .prior import GammaPrior, LogNormalPrior
from .spectrum import AlleleSpectrum, SpectrumSet

logging.basicConfig(
    format="%(asctime)s %(levelname)s %(name)s %(threadName)s %(message)s"
)
logging.getLogger(__name__).setLevel(logging.INFO)

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("esftheta")
except PackageNotFoundError:
    # package is not installed
    pass
