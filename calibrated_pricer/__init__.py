"""Calibrated pricer package (QuantLib / numpy / scipy).

This package provides:
- Market inputs (QuantLib discount curves, SABR surface, CSV loaders)
- Swaptions priced in an LMM displaced diffusion calibrated to SABR, with
  sensitivities through the calibration (implicit function theorem)
- Bond futures priced in Hull-White with the cheapest-to-deliver option, with
  curve sensitivities by an adjoint sweep
- Reporting helpers (CSV / JSON / optional figures)
"""

from .basket import SwaptionBasketBuilder
from .calibration import SuccessiveLeastSquareLMMDDCalibrationEngine, SuccessiveRootFinderLMMDDCalibrationEngine
from .config import AppConfig
from .errors import (
    BasketConstructionError,
    CalibrationDidNotConvergeError,
    PricingError,
    RootNotBracketedError,
    SingularCalibrationJacobianError,
)
from .instruments import BondFuture, FixedBond, Swaption, SwaptionSpec
from .market import CurveProvider, HullWhiteMarket, MarketLoader, SABRMarket, SABRSurface
from .models import HullWhiteOneFactorModel, HullWhiteParameters, LMMParameters
from .pricer import BondFuturesHullWhitePricer, SwaptionSABRLMMPricer, value_portfolio
from .sensitivity import CurveSensitivity, SABRSensitivity, SensitivityResult
