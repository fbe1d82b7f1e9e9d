import os
from datetime import date

import numpy as np
import pytest
import QuantLib as ql

from calibrated_pricer import (
    AppConfig,
    CurveProvider,
    MarketLoader,
    SABRMarket,
    Swaption,
    SwaptionSABRLMMPricer,
    SwaptionSpec,
    LMMParameters,
    value_portfolio,
)


def test_smoke_run():
    """Basic smoke test: load data, build a dated swaption, calibrate, price.

    This is not a unit test of financial correctness; it checks that the code
    runs end-to-end without exploding.
    """
    val_date = ql.Date(10, 9, 2025)
    cfg = AppConfig(val_date)
    cfg.apply_global_settings()

    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    data_dir = os.path.join(base_dir, "data")

    loader = MarketLoader(cfg)
    curve = loader.load_curve(os.path.join(data_dir, "usd_curve.csv"))
    sabr = loader.load_sabr_surface(os.path.join(data_dir, "sabr_surface.csv"))
    market = SABRMarket(CurveProvider({"USD-DSC": curve}, {"USD": "USD-DSC"}), sabr)

    spec = SwaptionSpec(expiry_date=date(2026, 9, 10), tenor="5Y", fixed_rate=0.036, notional=1.0e6)
    swaption = spec.to_derivative(val_date)
    assert swaption.expiry_time == pytest.approx(1.0)
    assert swaption.nb_periods == 5

    ibor_times, ibor_accruals = spec.ibor_grid(val_date)
    assert len(ibor_times) == 11
    seed = LMMParameters.from_angle(ibor_times, ibor_accruals, 0.10, 0.06, np.pi / 4.0, 0.01)

    pricer = SwaptionSABRLMMPricer([-0.005, 0.005], seed, cfg)
    result = pricer.present_value_and_sensitivity(swaption, market)
    sabr_pv = pricer.reference_pricer.price(swaption, market)

    assert np.isfinite(result.present_value)
    # The last calibration period brackets the swaption strike.
    assert result.present_value == pytest.approx(sabr_pv, rel=0.05)
    assert len(result.sabr.keys()) == 5

    pv, dur, conv = pricer.metrics(swaption, market)
    assert abs(pv) < 1e6
    assert abs(dur) < 1e6
    assert abs(conv) < 1e8


def test_value_portfolio_keeps_order(lmm_parameters, moneyness, cfg, sabr_market):
    pricer = SwaptionSABRLMMPricer(moneyness, lmm_parameters, cfg)
    swaptions = [
        Swaption(1.0, 1.0, tuple(2.0 + k for k in range(n)), (1.0,) * n, (0.035,) * n, 1.0e6)
        for n in (5, 2, 3)
    ]
    values = value_portfolio(pricer, swaptions, sabr_market, max_workers=3)
    expected = [pricer.present_value(s, sabr_market) for s in swaptions]
    assert values == pytest.approx(expected, rel=1e-12)
    assert values[1] < values[2] < values[0]
