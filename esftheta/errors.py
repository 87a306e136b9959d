"Exceptions raised by esftheta."


class EsfThetaError(Exception):
    """Base class for errors raised by this package.

    Args:
        msg: Human readable description.
        **params: The offending parameters, kept on `.params` so that a failure can be reproduced.
    """

    def __init__(self, msg: str, **params):
        self.params = params
        if params:
            msg = "%s (%s)" % (msg, ", ".join("%s=%r" % kv for kv in sorted(params.items())))
        super().__init__(msg)


class InvalidParameter(EsfThetaError, ValueError):
    "A parameter is out of its domain: θ <= 0, n < 2, bad prior hyperparameters, ..."


class InsufficientSampleSize(InvalidParameter):
    "An estimator was given a sample of fewer than two sequences."


class MalformedSpectrum(EsfThetaError, ValueError):
    "An allele-frequency spectrum violates sum(k * a[k]) == n."


class NumericalInstability(EsfThetaError, ArithmeticError):
    "A likelihood evaluation produced a non-finite value for valid input."


class PosteriorUnavailable(EsfThetaError, RuntimeError):
    "The posterior-sampling engine returned no usable draws."


class AscertainmentRetryExceeded(EsfThetaError, RuntimeError):
    "The ascertainment loop hit its retry cap without producing an acceptable sample."
