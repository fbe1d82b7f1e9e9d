import numpy as np
import pytest

from calibrated_pricer import (
    SABRMarket,
    SABRSurface,
    SuccessiveLeastSquareLMMDDCalibrationEngine,
    SuccessiveRootFinderLMMDDCalibrationEngine,
    SwaptionBasketBuilder,
)
from calibrated_pricer.engines.lmm import LMMDDSwaptionEngine
from calibrated_pricer.engines.sabr import SABRSwaptionEngine
from calibrated_pricer.errors import BasketConstructionError, CalibrationDidNotConvergeError


def _engine(swaption, lmm_parameters, moneyness, cfg):
    basket = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, moneyness)
    engine = SuccessiveLeastSquareLMMDDCalibrationEngine(lmm_parameters, len(moneyness), LMMDDSwaptionEngine(), cfg)
    engine.add_instrument(basket, SABRSwaptionEngine())
    return engine


def test_instrument_index_and_period_ranges(swaption, lmm_parameters, moneyness, cfg):
    engine = _engine(swaption, lmm_parameters, moneyness, cfg)
    assert engine.instrument_index == [0, 2, 2, 4, 4, 6, 6, 8, 8, 10, 10]
    assert [engine.period_range(p) for p in range(engine.nb_periods)] == [(0, 2), (2, 4), (4, 6), (6, 8), (8, 10)]


def test_exact_match_to_machine_precision(swaption, lmm_parameters, moneyness, cfg, sabr_market):
    engine = _engine(swaption, lmm_parameters, moneyness, cfg)
    calibrated = engine.calibrate(sabr_market)
    residuals = engine.residuals(sabr_market)
    assert residuals.shape == (10,)
    assert np.max(np.abs(residuals)) < 1e-12
    assert len(engine.period_solutions) == 5
    # The calibrated model reprices every basket swaption.
    lmm = LMMDDSwaptionEngine()
    sabr = SABRSwaptionEngine()
    for instrument in engine.basket:
        assert lmm.price(instrument, calibrated, sabr_market) == pytest.approx(
            sabr.price(instrument, sabr_market), abs=cfg.calibration_tolerance * instrument.notional
        )


def test_clone_invariant(swaption, lmm_parameters, moneyness, cfg, sabr_market):
    seed_before = lmm_parameters.copy()
    first = _engine(swaption, lmm_parameters, moneyness, cfg).calibrate(sabr_market)
    second = _engine(swaption, lmm_parameters, moneyness, cfg).calibrate(sabr_market)
    assert lmm_parameters == seed_before
    assert first == second
    assert first != lmm_parameters


def test_over_determined_basket_accepts_least_square_optimum(swaption, lmm_parameters, cfg, sabr_market):
    engine = _engine(swaption, lmm_parameters, [-0.005, 0.0, 0.005], cfg)
    engine.calibrate(sabr_market)
    assert len(engine.period_solutions) == 5
    # Not exact, but much closer than the uncalibrated seed.
    seed = _engine(swaption, lmm_parameters, [-0.005, 0.0, 0.005], cfg)
    assert np.max(np.abs(engine.residuals(sabr_market))) < 0.1 * np.max(np.abs(seed.residuals(sabr_market)))


def test_non_convergence_raises(swaption, lmm_parameters, moneyness, cfg, sabr_market):
    cfg.calibration_max_iterations = 1
    engine = _engine(swaption, lmm_parameters, moneyness, cfg)
    with pytest.raises(CalibrationDidNotConvergeError) as info:
        engine.calibrate(sabr_market)
    assert info.value.period == 0


def test_invalid_baskets(swaption, lmm_parameters, cfg, sabr_market):
    with pytest.raises(ValueError):
        SuccessiveLeastSquareLMMDDCalibrationEngine(lmm_parameters, 1)
    engine = SuccessiveLeastSquareLMMDDCalibrationEngine(lmm_parameters, 2, cfg=cfg)
    with pytest.raises(BasketConstructionError):
        engine.calibrate(sabr_market)
    basket = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, [0.0])
    engine.add_instrument(basket, SABRSwaptionEngine())
    with pytest.raises(BasketConstructionError):
        engine.calibrate(sabr_market)


def test_root_finder_calibration(swaption, lmm_parameters, cfg, sabr_market):
    basket = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, [0.0])
    engine = SuccessiveRootFinderLMMDDCalibrationEngine(lmm_parameters, cfg=cfg)
    engine.add_instrument(list(basket), SABRSwaptionEngine())
    seed_before = lmm_parameters.copy()
    calibrated = engine.calibrate(sabr_market)
    assert lmm_parameters == seed_before
    assert np.max(np.abs(engine.residuals(sabr_market))) < 1e-8
    assert len(engine.factors) == 5
    np.testing.assert_array_equal(calibrated.displacement, lmm_parameters.displacement)


def _market(curves, rho, nu):
    return SABRMarket(curves, SABRSurface([1.0, 2.0], [1.0, 2.0, 3.0, 4.0, 5.0], alpha=0.05, rho=rho, nu=nu, beta=0.5))


def test_high_vol_of_vol_smile_is_matched(swaption, lmm_parameters, moneyness, cfg, curves):
    market = _market(curves, 0.0, 0.5)
    engine = _engine(swaption, lmm_parameters, moneyness, cfg)
    engine.calibrate(market)
    assert np.max(np.abs(engine.residuals(market))) < 1e-12


def test_large_displacement_decrease_stays_admissible(swaption, lmm_parameters, moneyness, cfg, curves):
    # The smile is close to the beta = 0.5 backbone: the displacements must drop well below the seed.
    market = _market(curves, 0.0, 0.1)
    engine = _engine(swaption, lmm_parameters, moneyness, cfg)
    calibrated = engine.calibrate(market)
    assert np.max(np.abs(engine.residuals(market))) < 1e-12
    assert engine.period_solutions[0][1] < -0.02
    p = curves.discount_factors("USD", calibrated.ibor_times)
    forwards = (p[:-1] / p[1:] - 1.0) / calibrated.accrual_factors
    assert np.all(forwards + calibrated.displacement > 0.0)


def test_smile_out_of_displaced_diffusion_reach_raises(swaption, lmm_parameters, moneyness, cfg, curves):
    # Normal volatility flat to decreasing in strike: no positive displaced forward reproduces it.
    market = _market(curves, -0.25, 0.5)
    engine = _engine(swaption, lmm_parameters, moneyness, cfg)
    with pytest.raises(CalibrationDidNotConvergeError):
        engine.calibrate(market)


def test_over_determined_residual_bound(swaption, lmm_parameters, cfg, sabr_market):
    cfg.least_square_tolerance = 1e-12
    engine = _engine(swaption, lmm_parameters, [-0.005, 0.0, 0.005], cfg)
    with pytest.raises(CalibrationDidNotConvergeError) as info:
        engine.calibrate(sabr_market)
    assert info.value.period == 0
    assert info.value.residuals.shape == (3,)
