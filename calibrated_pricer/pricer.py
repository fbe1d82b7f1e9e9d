import logging
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .basket import SwaptionBasketBuilder
from .calibration import SuccessiveLeastSquareLMMDDCalibrationEngine
from .config import AppConfig
from .engines.ctd import BondFuturesHullWhiteEngine
from .engines.lmm import LMMDDSwaptionEngine
from .engines.sabr import SABRSwaptionEngine
from .sensitivity import CalibrationPartials, ImplicitFunctionPropagator, SensitivityResult

logger = logging.getLogger(__name__)


def effective_risk(pricer, instrument, market, bump_bps=1.0):
    """Return (pv, effective duration, effective convexity) by parallel bump-and-reprice.

    All the curves of ``market`` are shifted by ``+/- bump_bps`` (continuously
    compounded zero rates); the pricer must expose
    ``present_value(instrument, market)``.
    """
    p0 = float(pricer.present_value(instrument, market))
    dy = float(bump_bps) / 10000.0
    if abs(p0) <= 1e-12 or abs(dy) < 1e-12:
        return p0, 0.0, 0.0
    p_up = float(pricer.present_value(instrument, market.with_curves(market.curves.bumped(dy))))
    p_dn = float(pricer.present_value(instrument, market.with_curves(market.curves.bumped(-dy))))
    dur = (p_dn - p_up) / (2.0 * p0 * dy)
    conv = (p_up + p_dn - 2.0 * p0) / (p0 * dy ** 2)
    return p0, float(dur), float(conv)


class SwaptionSABRLMMPricer:
    """Physical swaption priced in an LMM DD calibrated to SABR.

    For each valuation:

    1. the calibration basket is built from the swaption (one vanilla per fixed
       period and per strike moneyness),
    2. a copy of ``parameters_init`` is calibrated period by period,
    3. the swaption is priced with the calibrated LMM,
    4. when sensitivities are requested, the LMM sensitivities are pushed
       through the calibration with the implicit function theorem.

    The pricer holds no state between valuations: the seed parameters are
    never modified and one instance can value several swaptions concurrently.

    Parameters
    ----------
    strike_moneyness : sequence of float
        Offsets added to the period fixed rate; at least two.
    parameters_init : LMMParameters
        Seed of every calibration.
    cfg : AppConfig, optional
    """

    def __init__(self, strike_moneyness, parameters_init, cfg=None, reference_pricer=None,
                 target_pricer=None, propagator=None):
        self.strike_moneyness = tuple(float(m) for m in strike_moneyness)
        self.parameters_init = parameters_init
        self.cfg = cfg or AppConfig()
        self.reference_pricer = reference_pricer or SABRSwaptionEngine()
        self.target_pricer = target_pricer or LMMDDSwaptionEngine()
        self.propagator = propagator or ImplicitFunctionPropagator(self.cfg.singular_condition_limit)

    def calibrate(self, swaption, market):
        """Return the calibration engine after calibrating to the basket of ``swaption``."""
        basket = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, self.strike_moneyness)
        engine = SuccessiveLeastSquareLMMDDCalibrationEngine(
            self.parameters_init, len(self.strike_moneyness), self.target_pricer, self.cfg
        )
        engine.add_instrument(basket, self.reference_pricer)
        engine.calibrate(market)
        return engine

    def present_value(self, swaption, market):
        engine = self.calibrate(swaption, market)
        return float(self.target_pricer.price(swaption, engine.parameters, market))

    def calibration_partials(self, swaption, market, engine=None):
        """Collect the Jacobian blocks needed by the implicit function propagator.

        The derivatives with respect to the volatility factor of a period are
        taken at the calibrated point, i.e. along the calibrated volatilities.
        """
        engine = engine or self.calibrate(swaption, market)
        parameters = engine.parameters
        nb_periods = engine.nb_periods
        nb_strikes = engine.nb_strikes
        ranges = [engine.period_range(loopp) for loopp in range(nb_periods)]

        def phi_gradient(sens):
            grad = np.zeros(2 * nb_periods)
            for loopp, (start, end) in enumerate(ranges):
                grad[loopp] = np.sum(sens.volatility[start:end, :] * parameters.volatility[start:end, :])
                grad[nb_periods + loopp] = np.sum(sens.displacement[start:end])
            return grad

        sens = self.target_pricer.sensitivity(swaption, parameters, market)
        nb_cal = len(engine.basket)
        pv_cal_dphi = np.zeros((nb_cal, 2 * nb_periods))
        pv_cal_dtheta = np.zeros((nb_cal, 3 * nb_periods))
        cal_reference_curve = []
        cal_target_curve = []
        for loopcal, instrument in enumerate(engine.basket):
            target = self.target_pricer.sensitivity(instrument, parameters, market)
            reference = engine.reference_pricers[loopcal].sensitivity(instrument, market)
            pv_cal_dphi[loopcal] = phi_gradient(target)
            period = loopcal // nb_strikes
            key = (instrument.expiry_time, instrument.maturity_time)
            pv_cal_dtheta[loopcal, period] = reference.sabr.alpha[key]
            pv_cal_dtheta[loopcal, nb_periods + period] = reference.sabr.rho[key]
            pv_cal_dtheta[loopcal, 2 * nb_periods + period] = reference.sabr.nu[key]
            cal_reference_curve.append(reference.curve)
            cal_target_curve.append(target.curve)

        period_keys = [
            (engine.basket[loopp * nb_strikes].expiry_time, engine.basket[loopp * nb_strikes].maturity_time)
            for loopp in range(nb_periods)
        ]
        return CalibrationPartials(
            present_value=sens.present_value,
            pv_dphi=phi_gradient(sens),
            pv_cal_dphi=pv_cal_dphi,
            pv_cal_dtheta=pv_cal_dtheta,
            period_keys=period_keys,
            direct_curve=sens.curve,
            cal_reference_curve=cal_reference_curve,
            cal_target_curve=cal_target_curve,
        )

    def present_value_and_sensitivity(self, swaption, market):
        """Present value with its SABR and curve sensitivities (``SensitivityResult``)."""
        return self.propagator.propagate(self.calibration_partials(swaption, market))

    def present_value_sabr_sensitivity(self, swaption, market):
        return self.present_value_and_sensitivity(swaption, market).sabr

    def present_value_curve_sensitivity(self, swaption, market):
        return self.present_value_and_sensitivity(swaption, market).curve

    def metrics(self, swaption, market, bump_bps=1.0):
        """Return (pv, effective duration, effective convexity)."""
        return effective_risk(self, swaption, market, bump_bps)


class BondFuturesHullWhitePricer:
    """Bond futures priced in Hull-White with the cheapest-to-deliver option.

    Thin orchestrator over ``BondFuturesHullWhiteEngine`` exposing the same
    entry points as ``SwaptionSABRLMMPricer``.
    """

    def __init__(self, cfg=None, nb_points=None):
        self.cfg = cfg or AppConfig()
        self.engine = BondFuturesHullWhiteEngine(self.cfg, nb_points)

    def price(self, future, market):
        return self.engine.price(future, market)

    def present_value(self, future, market):
        return self.engine.present_value(future, market)

    def present_value_curve_sensitivity(self, future, market):
        return self.engine.present_value_curve_sensitivity(future, market)

    def present_value_and_sensitivity(self, future, market):
        state = self.engine.forward_state(future, market)
        result = self.engine.propagator.propagate(state)
        return SensitivityResult(result.present_value * future.notional, result.curve.multiplied_by(future.notional))

    def metrics(self, future, market, bump_bps=1.0):
        """Return (pv, effective duration, effective convexity)."""
        return effective_risk(self, future, market, bump_bps)


def value_portfolio(pricer, instruments, market, max_workers=None):
    """Present values of independent instruments, computed in a thread pool.

    The pricer must be stateless across valuations (both pricers of this
    module are). The results keep the order of ``instruments``.
    """
    instruments = list(instruments)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        values = list(executor.map(lambda ins: float(pricer.present_value(ins, market)), instruments))
    logger.debug("Valued %d instruments", len(values))
    return values
