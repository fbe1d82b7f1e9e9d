import pytest

from calibrated_pricer import Swaption, SwaptionBasketBuilder
from calibrated_pricer.errors import BasketConstructionError


def test_basket_layout(swaption, moneyness):
    basket = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, moneyness)
    assert len(basket) == swaption.nb_periods * len(moneyness)
    for loopp in range(swaption.nb_periods):
        period = basket[loopp * 2:(loopp + 1) * 2]
        # Same underlying within a period, different strikes.
        assert {s.maturity_time for s in period} == {swaption.fixed_payment_times[loopp]}
        assert [s.strike for s in period] == pytest.approx([0.030, 0.040])
        assert all(s.settlement_time == swaption.settlement_time for s in period)
        assert all(s.nb_periods == loopp + 1 for s in period)


def test_basket_uses_period_rate_of_step_up_swaption(swaption):
    step_up = Swaption(
        swaption.expiry_time,
        swaption.settlement_time,
        swaption.fixed_payment_times,
        swaption.fixed_accrual_factors,
        (0.030, 0.032, 0.034, 0.036, 0.038),
        swaption.notional,
    )
    basket = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(step_up, [0.0])
    assert [s.strike for s in basket] == pytest.approx([0.030, 0.032, 0.034, 0.036, 0.038])


def test_basket_is_deterministic(swaption, moneyness):
    b1 = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, moneyness)
    b2 = SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, moneyness)
    assert b1 == b2


def test_basket_errors(swaption):
    with pytest.raises(BasketConstructionError):
        SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, [])

    empty = Swaption(1.0, 1.0, (), (), (), 1.0)
    with pytest.raises(BasketConstructionError):
        SwaptionBasketBuilder.calibration_basket_fixed_leg_period(empty, [0.0])

    early = Swaption(1.0, 1.0, (1.0, 2.0), (1.0, 1.0), (0.03, 0.03), 1.0)
    with pytest.raises(BasketConstructionError):
        SwaptionBasketBuilder.calibration_basket_fixed_leg_period(early, [0.0])

    unordered = Swaption(1.0, 1.0, (3.0, 2.0), (1.0, 1.0), (0.03, 0.03), 1.0)
    with pytest.raises(BasketConstructionError):
        SwaptionBasketBuilder.calibration_basket_fixed_leg_period(unordered, [0.0])


def test_mismatched_leg_lengths_are_rejected():
    with pytest.raises(ValueError):
        Swaption(1.0, 1.0, (2.0, 3.0), (1.0,), (0.03, 0.03), 1.0)
