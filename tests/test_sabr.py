import numpy as np
import pytest
import QuantLib as ql

from calibrated_pricer import Swaption
from calibrated_pricer.engines.sabr import SABRSwaptionEngine, hagan_volatility_adjoint

ALPHA, BETA, RHO, NU = 0.05, 0.5, -0.25, 0.5


@pytest.mark.parametrize("strike", [0.02, 0.03, 0.036, 0.045, 0.06])
def test_hagan_volatility_matches_quantlib(strike):
    forward, expiry = 0.036, 1.5
    vol = hagan_volatility_adjoint(forward, strike, expiry, ALPHA, BETA, RHO, NU)[0]
    expected = ql.sabrVolatility(strike, forward, expiry, ALPHA, BETA, NU, RHO)
    assert vol == pytest.approx(expected, rel=1e-9)


@pytest.mark.parametrize("strike", [0.025, 0.045])
def test_hagan_derivatives_against_finite_differences(strike):
    forward, expiry, h = 0.036, 1.5, 1e-6

    def vol(f=forward, alpha=ALPHA, rho=RHO, nu=NU):
        return hagan_volatility_adjoint(f, strike, expiry, alpha, BETA, rho, nu)[0]

    _, d_f, d_alpha, d_rho, d_nu = hagan_volatility_adjoint(forward, strike, expiry, ALPHA, BETA, RHO, NU)
    hf = forward * h
    assert d_f == pytest.approx((vol(f=forward + hf) - vol(f=forward - hf)) / (2 * hf), rel=1e-5)
    assert d_alpha == pytest.approx((vol(alpha=ALPHA + h) - vol(alpha=ALPHA - h)) / (2 * h), rel=1e-5)
    assert d_rho == pytest.approx((vol(rho=RHO + h) - vol(rho=RHO - h)) / (2 * h), rel=1e-5)
    assert d_nu == pytest.approx((vol(nu=NU + h) - vol(nu=NU - h)) / (2 * h), rel=1e-5)


def test_hagan_at_the_money_uses_series():
    forward = 0.036
    vol, _, d_alpha, d_rho, _ = hagan_volatility_adjoint(forward, forward, 1.0, ALPHA, BETA, RHO, NU)
    assert np.isfinite(vol) and np.isfinite(d_alpha) and np.isfinite(d_rho)
    assert vol == pytest.approx(ql.sabrVolatility(forward, forward, 1.0, ALPHA, BETA, NU, RHO), rel=1e-9)


def test_swaption_sensitivities_against_finite_differences(swaption, sabr_market):
    engine = SABRSwaptionEngine()
    result = engine.sensitivity(swaption, sabr_market)
    assert result.present_value == pytest.approx(engine.price(swaption, sabr_market), rel=1e-14)

    key = (swaption.expiry_time, swaption.maturity_time)
    h = 1e-6
    for name in ("alpha", "rho", "nu"):
        up = sabr_market.with_sabr(sabr_market.sabr.bumped(name, h))
        dn = sabr_market.with_sabr(sabr_market.sabr.bumped(name, -h))
        fd = (engine.price(swaption, up) - engine.price(swaption, dn)) / (2 * h)
        assert getattr(result.sabr, name)[key] == pytest.approx(fd, rel=1e-5)

    up = sabr_market.with_curves(sabr_market.curves.bumped(h))
    dn = sabr_market.with_curves(sabr_market.curves.bumped(-h))
    fd = (engine.price(swaption, up) - engine.price(swaption, dn)) / (2 * h)
    assert result.curve.total() == pytest.approx(fd, rel=1e-5)
    assert result.curve.names == ["USD-DSC"]


def test_swaption_put_call_parity(swaption, sabr_market, curves):
    engine = SABRSwaptionEngine()
    receiver = Swaption(
        swaption.expiry_time,
        swaption.settlement_time,
        swaption.fixed_payment_times,
        swaption.fixed_accrual_factors,
        swaption.fixed_rates,
        swaption.notional,
        is_payer=False,
    )
    q = curves.discount_factors("USD", swaption.fixed_payment_times)
    annuity = float(np.dot(swaption.fixed_accrual_factors, q))
    swap = swaption.notional * (
        curves.discount_factor("USD", swaption.settlement_time)
        - curves.discount_factor("USD", swaption.maturity_time)
        - swaption.strike * annuity
    )
    parity = engine.price(swaption, sabr_market) - engine.price(receiver, sabr_market)
    assert parity == pytest.approx(swap, rel=1e-10, abs=1e-8)


def test_swaption_requires_flat_strike(swaption, sabr_market):
    step_up = Swaption(1.0, 1.0, (2.0, 3.0), (1.0, 1.0), (0.03, 0.04), 1.0)
    with pytest.raises(ValueError):
        SABRSwaptionEngine().price(step_up, sabr_market)
