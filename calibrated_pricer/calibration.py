import logging

import numpy as np
from scipy import optimize

from .config import AppConfig
from .engines.lmm import LMMDDSwaptionEngine
from .errors import BasketConstructionError, CalibrationDidNotConvergeError
from .utils import ridder_root

logger = logging.getLogger(__name__)

# Share of the lowest rate a displacement shift may remove.
_DISPLACEMENT_MARGIN = 0.95


class _SuccessiveLMMDDCalibrationEngine:
    """Bookkeeping shared by the successive LMM DD calibrations.

    Instruments are calibrated in the order they are added. Each one is tied to
    the LMM Ibor period ending at its maturity: ``instrument_index[i + 1]`` is
    the index of that Ibor time, ``instrument_index[0]`` is 0.

    The engine works on a private copy of ``parameters``; the instance given by
    the caller is never modified.
    """

    def __init__(self, parameters, target_pricer=None, cfg=None):
        self.parameters = parameters.copy()
        self.target_pricer = target_pricer or LMMDDSwaptionEngine()
        self.cfg = cfg or AppConfig()
        self.basket = []
        self.reference_pricers = []
        self.calibration_prices = []
        self.instrument_index = [0]

    def add_instrument(self, instruments, reference_pricer):
        """Add one instrument or a sequence of instruments priced with ``reference_pricer``."""
        if not isinstance(instruments, (list, tuple)):
            instruments = [instruments]
        for instrument in instruments:
            self.basket.append(instrument)
            self.reference_pricers.append(reference_pricer)
            self.instrument_index.append(self.parameters.index_of(instrument.maturity_time))

    def compute_calibration_prices(self, market):
        self.calibration_prices = [
            float(pricer.price(instrument, market))
            for instrument, pricer in zip(self.basket, self.reference_pricers)
        ]
        return self.calibration_prices

    def residuals(self, market):
        """Target minus reference price of each calibration instrument, per unit notional."""
        if not self.calibration_prices:
            self.compute_calibration_prices(market)
        return np.array([
            (self.target_pricer.price(instrument, self.parameters, market) - price) / instrument.notional
            for instrument, price in zip(self.basket, self.calibration_prices)
        ])


class SuccessiveLeastSquareLMMDDCalibrationEngine(_SuccessiveLMMDDCalibrationEngine):
    """Calibrate an LMM DD to a basket, one period at a time, on volatility and displacement.

    The basket is made of ``nb_strikes`` consecutive instruments per period. The
    period ``p`` owns the Ibor periods
    ``[instrument_index[p * nb_strikes], instrument_index[(p + 1) * nb_strikes])``;
    on them the volatilities are multiplied by a factor and the displacements
    shifted by a constant. The two unknowns are found by Levenberg-Marquardt
    with the analytic Jacobian of the target pricer, solved in the coordinates
    (log of the price level, log of the displacement margin): the displaced
    rates stay positive at every trial point and each period starts from the
    solution of the previous one.

    With two strikes the system is square and is solved to machine precision;
    each price must then match its reference within ``cfg.calibration_tolerance``
    per unit notional. With more strikes the least-square optimum is accepted
    when every residual is within ``cfg.least_square_tolerance``.

    Parameters
    ----------
    parameters : LMMParameters
        Seed parameters (copied).
    nb_strikes : int
        Number of instruments per period; at least 2.
    target_pricer : TargetModelPricer, optional
    cfg : AppConfig, optional
    """

    def __init__(self, parameters, nb_strikes, target_pricer=None, cfg=None):
        super().__init__(parameters, target_pricer, cfg)
        self.nb_strikes = int(nb_strikes)
        if self.nb_strikes < 2:
            raise ValueError("The least-square calibration needs at least two strikes per period.")
        self.period_solutions = []

    @property
    def nb_periods(self):
        return len(self.basket) // self.nb_strikes

    def period_range(self, period):
        """``(start, end)`` of the LMM Ibor periods owned by calibration period ``period``."""
        return (
            self.instrument_index[period * self.nb_strikes],
            self.instrument_index[(period + 1) * self.nb_strikes],
        )

    def period_instruments(self, period):
        return self.basket[period * self.nb_strikes:(period + 1) * self.nb_strikes]

    def calibrate(self, market):
        """Calibrate every period in order and return the calibrated parameters.

        Raises
        ------
        BasketConstructionError
            If the basket is empty, not a multiple of ``nb_strikes`` or a period
            owns no LMM Ibor period.
        CalibrationDidNotConvergeError
            If a period does not converge.
        """
        if not self.basket or len(self.basket) % self.nb_strikes != 0:
            raise BasketConstructionError(
                f"Basket of {len(self.basket)} instruments is not a multiple of {self.nb_strikes} strikes."
            )
        self.compute_calibration_prices(market)
        self.period_solutions = []
        for loopp in range(self.nb_periods):
            self._calibrate_period(loopp, market)

        worst = float(np.max(np.abs(self.residuals(market))))
        logger.info("LMM calibration of %d periods done, worst residual %.3e", self.nb_periods, worst)
        return self.parameters

    def _displacement_bounds(self, start, end, instruments, market):
        """Return ``(floor, level)`` of the displacements owned by a period.

        ``floor`` is the largest downward shift of the displacements that keeps
        every displaced forward and basket strike positive (with a margin);
        ``level`` is the average displaced forward of the seed.
        """
        curves = market.curves
        name = curves.curve_name(instruments[0].currency)
        p = curves.discount_factors(name, self.parameters.ibor_times[start:end + 1])
        forwards = (p[:-1] / p[1:] - 1.0) / self.parameters.accrual_factors[start:end]
        disp = self.parameters.displacement[start:end]
        rate = min(float(np.min(forwards)), min(float(np.min(ins.fixed_rates)) for ins in instruments))
        floor = float(np.min(disp)) + _DISPLACEMENT_MARGIN * rate
        level = float(np.mean(forwards + disp))
        return floor, level

    def _calibrate_period(self, period, market):
        start, end = self.period_range(period)
        if end <= start:
            raise BasketConstructionError(f"Calibration period {period} owns no LMM Ibor period.")
        instruments = self.period_instruments(period)
        prices = self.calibration_prices[period * self.nb_strikes:(period + 1) * self.nb_strikes]
        base_vol = self.parameters.volatility[start:end, :].copy()
        base_disp = self.parameters.displacement[start:end].copy()
        floor, level = self._displacement_bounds(start, end, instruments, market)
        if floor <= 0.0:
            raise CalibrationDidNotConvergeError(
                f"Seed displacements of period {period} give non-positive displaced rates.", period=period
            )

        # Unknowns y = (log g, log(shift + floor)); the vol factor is g * level / (level + shift),
        # so g moves the price level and the second unknown the skew.
        def natural(y):
            shift = np.exp(y[1]) - floor
            return np.exp(y[0]) * level / (level + shift), shift

        def apply(y):
            factor, shift = natural(y)
            self.parameters.volatility[start:end, :] = base_vol * factor
            self.parameters.displacement[start:end] = base_disp + shift
            return factor, shift

        def fun(y):
            apply(y)
            return np.array([
                (self.target_pricer.price(ins, self.parameters, market) - pr) / ins.notional
                for ins, pr in zip(instruments, prices)
            ])

        def jac(y):
            factor, shift = apply(y)
            rows = []
            for ins in instruments:
                s = self.target_pricer.sensitivity(ins, self.parameters, market)
                d_factor = np.sum(s.volatility[start:end, :] * base_vol) / ins.notional
                d_shift = np.sum(s.displacement[start:end]) / ins.notional
                rows.append([
                    d_factor * factor,
                    (shift + floor) * (d_shift - d_factor * factor / (level + shift)),
                ])
            return np.array(rows)

        # Warm start from the previous period when it is admissible here.
        factor0, shift0 = self.period_solutions[-1] if self.period_solutions else (1.0, 0.0)
        if shift0 <= -floor:
            factor0, shift0 = 1.0, 0.0
        y0 = np.array([np.log(factor0 * (level + shift0) / level), np.log(shift0 + floor)])

        try:
            result = optimize.least_squares(
                fun,
                y0,
                jac=jac,
                method="lm",
                x_scale="jac",
                ftol=1.0e-14,
                xtol=1.0e-14,
                gtol=1.0e-14,
                max_nfev=self.cfg.calibration_max_iterations,
            )
        except ValueError as exc:
            raise CalibrationDidNotConvergeError(
                f"Calibration of period {period} failed: {exc}", period=period
            ) from exc

        residuals = fun(result.x)
        factor, shift = natural(result.x)
        if result.status <= 0 or not np.all(np.isfinite(residuals)):
            raise CalibrationDidNotConvergeError(
                f"Calibration of period {period} did not converge: {result.message}",
                period=period,
                residuals=residuals,
            )
        tolerance = self.cfg.calibration_tolerance if self.nb_strikes == 2 else self.cfg.least_square_tolerance
        if np.any(np.abs(residuals) > tolerance):
            raise CalibrationDidNotConvergeError(
                f"Calibration of period {period} stopped with residuals {residuals}.",
                period=period,
                residuals=residuals,
            )
        if self.nb_strikes > 2:
            logger.info("Period %d least-square residuals %s", period, residuals)
        logger.debug(
            "Period %d: vol factor %.10f, displacement shift %.10f (%d evaluations)",
            period, factor, shift, result.nfev,
        )
        self.period_solutions.append((float(factor), float(shift)))


class SuccessiveRootFinderLMMDDCalibrationEngine(_SuccessiveLMMDDCalibrationEngine):
    """Calibrate an LMM DD volatility level to one instrument at a time.

    Instrument ``i`` owns the Ibor periods
    ``[instrument_index[i], instrument_index[i + 1])``, whose volatilities are
    multiplied by ``exp(x)``; ``x`` is found by bracketing and Ridder's method.
    The displacements are left unchanged.
    """

    def __init__(self, parameters, target_pricer=None, cfg=None):
        super().__init__(parameters, target_pricer, cfg)
        self.factors = []

    def calibrate(self, market):
        if not self.basket:
            raise BasketConstructionError("No instrument to calibrate.")
        self.compute_calibration_prices(market)
        self.factors = []
        for loopins, (instrument, price) in enumerate(zip(self.basket, self.calibration_prices)):
            start, end = self.instrument_index[loopins], self.instrument_index[loopins + 1]
            if end <= start:
                raise BasketConstructionError(f"Instrument {loopins} owns no LMM Ibor period.")
            base_vol = self.parameters.volatility[start:end, :].copy()

            def objective(x, instrument=instrument, price=price, start=start, end=end, base_vol=base_vol):
                self.parameters.volatility[start:end, :] = base_vol * np.exp(x)
                return (self.target_pricer.price(instrument, self.parameters, market) - price) / instrument.notional

            x = ridder_root(
                objective,
                -0.5,
                0.5,
                accuracy=self.cfg.root_accuracy,
                max_iterations=self.cfg.root_max_iterations,
                bracket_iterations=self.cfg.bracket_max_iterations,
                bracket_ratio=self.cfg.bracket_ratio,
            )
            self.parameters.volatility[start:end, :] = base_vol * np.exp(x)
            self.factors.append(float(np.exp(x)))
            logger.debug("Instrument %d: vol factor %.10f", loopins, np.exp(x))
        return self.parameters
