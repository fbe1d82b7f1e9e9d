from .base import ReferenceModelPricer, TargetModelPricer
from .ctd import BondFuturesHullWhiteEngine, CheapestToDeliverState, normal_grid
from .lmm import LMMDDSwaptionEngine, LMMSensitivity
from .sabr import SABRSwaptionEngine, hagan_volatility_adjoint

__all__ = [
    "ReferenceModelPricer",
    "TargetModelPricer",
    "BondFuturesHullWhiteEngine",
    "CheapestToDeliverState",
    "normal_grid",
    "LMMDDSwaptionEngine",
    "LMMSensitivity",
    "SABRSwaptionEngine",
    "hagan_volatility_adjoint",
]
