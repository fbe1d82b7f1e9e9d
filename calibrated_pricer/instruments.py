from dataclasses import dataclass, field, replace
from datetime import date

import QuantLib as ql

from .utils import DateUtils, thirty360_usa, us_calendar


def _as_tuple(values):
    return tuple(float(v) for v in values)


@dataclass(frozen=True)
class Swaption:
    """Physical-delivery European swaption on a fixed-vs-Ibor swap.

    All times are year fractions from the valuation date. The Ibor leg runs from
    ``settlement_time`` to the last fixed payment time; under single-curve
    discounting only its end points matter, the Ibor periods themselves come
    from the model (LMM) grid.

    Each fixed coupon pays ``notional * fixed_accrual_factors[k] * fixed_rates[k]``
    at ``fixed_payment_times[k]``. Non-constant ``fixed_rates`` describe a
    step-up / step-down swaption.
    """

    expiry_time: float
    settlement_time: float
    fixed_payment_times: tuple
    fixed_accrual_factors: tuple
    fixed_rates: tuple
    notional: float = 1.0
    is_payer: bool = True
    currency: str = "USD"

    def __post_init__(self):
        object.__setattr__(self, "fixed_payment_times", _as_tuple(self.fixed_payment_times))
        object.__setattr__(self, "fixed_accrual_factors", _as_tuple(self.fixed_accrual_factors))
        object.__setattr__(self, "fixed_rates", _as_tuple(self.fixed_rates))
        n = len(self.fixed_payment_times)
        if len(self.fixed_accrual_factors) != n or len(self.fixed_rates) != n:
            raise ValueError("Fixed leg payment times, accrual factors and rates must have the same length.")
        if self.notional <= 0.0:
            raise ValueError(f"Notional must be positive, got {self.notional}.")

    @property
    def nb_periods(self):
        return len(self.fixed_payment_times)

    @property
    def maturity_time(self):
        if not self.fixed_payment_times:
            raise ValueError("Swaption has no fixed coupon.")
        return self.fixed_payment_times[-1]

    @property
    def strike(self):
        """The common fixed rate; only defined for a flat fixed leg."""
        rates = set(self.fixed_rates)
        if len(rates) != 1:
            raise ValueError("Swaption fixed leg does not have a single rate.")
        return self.fixed_rates[0]

    def truncated(self, nb_coupons, rate):
        """Swaption on the first ``nb_coupons`` fixed coupons with a flat ``rate``."""
        return replace(
            self,
            fixed_payment_times=self.fixed_payment_times[:nb_coupons],
            fixed_accrual_factors=self.fixed_accrual_factors[:nb_coupons],
            fixed_rates=(float(rate),) * nb_coupons,
        )


@dataclass(frozen=True)
class FixedBond:
    """Cash-flow equivalent of a deliverable bond, per unit notional.

    ``payment_amounts`` include the redemption. ``accrued_interest`` is the
    accrued interest at the delivery date.
    """

    payment_times: tuple
    payment_amounts: tuple
    accrued_interest: float = 0.0
    issuer: str = "GOVT"

    def __post_init__(self):
        object.__setattr__(self, "payment_times", _as_tuple(self.payment_times))
        object.__setattr__(self, "payment_amounts", _as_tuple(self.payment_amounts))
        if len(self.payment_times) != len(self.payment_amounts):
            raise ValueError("Bond payment times and amounts must have the same length.")
        if not self.payment_times:
            raise ValueError("Bond has no cash flow.")

    @classmethod
    def bullet(cls, coupon_rate, payment_times, frequency=1, accrued_interest=0.0, issuer="GOVT"):
        """Regular fixed-coupon bullet bond: ``coupon_rate / frequency`` per period, 1.0 at maturity."""
        coupon = float(coupon_rate) / float(frequency)
        amounts = [coupon] * len(payment_times)
        amounts[-1] += 1.0
        return cls(tuple(payment_times), tuple(amounts), float(accrued_interest), issuer)


@dataclass(frozen=True)
class BondFuture:
    """Bond futures security with a basket of deliverable bonds.

    ``notice_last_time`` is the expiry used for the convexity adjustment,
    ``delivery_last_time`` the settlement of the delivered bond.
    """

    notice_last_time: float
    delivery_last_time: float
    basket: tuple
    conversion_factors: tuple
    notional: float = 1.0
    currency: str = "USD"

    def __post_init__(self):
        object.__setattr__(self, "basket", tuple(self.basket))
        object.__setattr__(self, "conversion_factors", _as_tuple(self.conversion_factors))
        if not self.basket:
            raise ValueError("Bond future needs at least one deliverable bond.")
        if len(self.conversion_factors) != len(self.basket):
            raise ValueError("One conversion factor is needed per deliverable bond.")
        if len({b.issuer for b in self.basket}) != 1:
            raise ValueError("All deliverable bonds must share the same issuer.")
        if self.delivery_last_time < self.notice_last_time:
            raise ValueError("Delivery cannot happen before the last notice date.")

    @property
    def issuer(self):
        return self.basket[0].issuer


@dataclass
class SwaptionSpec:
    """Date-based description of a physical swaption.

    The fixed and Ibor schedules are built with QuantLib from the expiry date
    (spot lag ignored: the swap starts at expiry), unadjusted and generated
    backward, so that every fixed payment date is also an Ibor date.

    Notes
    -----
    - Times are measured with ``time_day_count`` (Act/365F) from the valuation
      date, accruals with the leg day counts.
    - ``ibor_grid`` returns the Ibor schedule used to build matching
      ``LMMParameters``.
    """

    expiry_date: date
    tenor: object  # years, QuantLib Period or string like "5Y"
    fixed_rate: float
    notional: float = 1.0
    is_payer: bool = True
    currency: str = "USD"

    fixed_frequency: object = ql.Annual
    ibor_frequency: object = ql.Semiannual
    fixed_day_count: object = field(default_factory=thirty360_usa)
    ibor_day_count: object = field(default_factory=ql.Actual360)
    time_day_count: object = field(default_factory=ql.Actual365Fixed)
    calendar: object = field(default_factory=us_calendar)

    def _tenor_period(self):
        if isinstance(self.tenor, ql.Period):
            return self.tenor
        if isinstance(self.tenor, str):
            return DateUtils.parse_period(self.tenor)
        return ql.Period(int(self.tenor), ql.Years)

    def _schedule(self, frequency):
        start = DateUtils.to_ql_date(self.expiry_date)
        end = start + self._tenor_period()
        return ql.Schedule(
            start,
            end,
            ql.Period(frequency),
            self.calendar,
            ql.Unadjusted,
            ql.Unadjusted,
            ql.DateGeneration.Backward,
            False,
        )

    def to_derivative(self, val_date):
        """Convert into a time-based ``Swaption`` seen from ``val_date``."""
        dates = [d for d in self._schedule(self.fixed_frequency)]
        times = DateUtils.times(val_date, dates, self.time_day_count)
        accruals = [
            float(self.fixed_day_count.yearFraction(d0, d1)) for d0, d1 in zip(dates[:-1], dates[1:])
        ]
        return Swaption(
            expiry_time=times[0],
            settlement_time=times[0],
            fixed_payment_times=tuple(times[1:]),
            fixed_accrual_factors=tuple(accruals),
            fixed_rates=(float(self.fixed_rate),) * len(accruals),
            notional=float(self.notional),
            is_payer=bool(self.is_payer),
            currency=self.currency,
        )

    def ibor_grid(self, val_date):
        """Return ``(ibor_times, accrual_factors)`` of the underlying Ibor leg."""
        dates = [d for d in self._schedule(self.ibor_frequency)]
        times = DateUtils.times(val_date, dates, self.time_day_count)
        accruals = [
            float(self.ibor_day_count.yearFraction(d0, d1)) for d0, d1 in zip(dates[:-1], dates[1:])
        ]
        return times, accruals
