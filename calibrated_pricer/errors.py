"""Error taxonomy of the calibration and sensitivity engine.

All errors are fatal for the valuation that raised them: the engine does not
retry and never returns a partially calibrated parameter set.
"""


class PricingError(Exception):
    """Base class for the errors raised by the pricing engines."""


class BasketConstructionError(PricingError):
    """The calibration basket cannot be derived from the target instrument."""


class CalibrationDidNotConvergeError(PricingError):
    """A calibration period did not reach its tolerance within the iteration budget."""

    def __init__(self, message, period=None, residuals=None):
        super().__init__(message)
        self.period = period
        self.residuals = residuals


class SingularCalibrationJacobianError(PricingError):
    """The calibration Jacobian ``df/dPhi`` cannot be inverted."""


class RootNotBracketedError(PricingError):
    """No sign change could be bracketed for a root search."""
