import numpy as np

from .errors import BasketConstructionError


class SwaptionBasketBuilder:
    """Vanilla swaption baskets used to calibrate a model to a target swaption."""

    @staticmethod
    def calibration_basket_fixed_leg_period(swaption, strike_moneyness):
        """One vanilla swaption per fixed-leg period of ``swaption`` and per moneyness.

        The swaption of period ``k`` shares the target's expiry and settlement,
        pays the first ``k + 1`` fixed coupons and has the flat strike
        ``fixed_rates[k] + moneyness``. The basket is ordered by period, then by
        moneyness, so period ``p`` occupies
        ``[p * len(strike_moneyness), (p + 1) * len(strike_moneyness))``.

        Raises
        ------
        BasketConstructionError
            For a swaption without fixed coupon, an empty moneyness list or a
            fixed schedule that is not increasing after settlement.
        """
        moneyness = [float(m) for m in strike_moneyness]
        if not moneyness:
            raise BasketConstructionError("At least one strike moneyness is needed.")
        times = np.array(swaption.fixed_payment_times)
        if times.shape[0] == 0:
            raise BasketConstructionError("The swaption has no fixed-leg period.")
        if times[0] <= swaption.settlement_time:
            raise BasketConstructionError(
                f"First fixed payment {times[0]} is not after settlement {swaption.settlement_time}."
            )
        if np.any(np.diff(times) <= 0.0):
            raise BasketConstructionError("Fixed payment times must be increasing.")
        if swaption.settlement_time < swaption.expiry_time:
            raise BasketConstructionError("Settlement cannot happen before expiry.")

        basket = []
        for loopp in range(swaption.nb_periods):
            for m in moneyness:
                basket.append(swaption.truncated(loopp + 1, swaption.fixed_rates[loopp] + m))
        return tuple(basket)
