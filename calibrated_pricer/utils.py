import numpy as np
import QuantLib as ql
import pandas as pd
from scipy import optimize
from scipy.stats import norm

from .errors import RootNotBracketedError


def us_calendar():
    """Return a *generic* United States calendar with robust fallbacks.

    We intentionally keep this as "generic" (Settlement/GovernmentBond/no-arg)
    because different QuantLib builds expose different market enums.
    """

    # Prefer the Settlement calendar when available (broadest in practice)
    try:
        if hasattr(ql.UnitedStates, "Settlement"):
            return ql.UnitedStates(getattr(ql.UnitedStates, "Settlement"))
    except (TypeError, RuntimeError):
        pass

    try:
        return ql.UnitedStates()
    except (TypeError, RuntimeError):
        pass

    return ql.TARGET()


def thirty360_usa():
    """Return the 30/360 US (bond basis) day count."""
    return ql.Thirty360(ql.Thirty360.USA)


class DateUtils:
    """Small helpers to keep date/period parsing in one place."""

    @staticmethod
    def to_ql_date(d):
        """Convert common Python date representations into QuantLib.Date."""
        if isinstance(d, ql.Date):
            return d
        if isinstance(d, str):
            d = pd.to_datetime(d).date()
        return ql.Date(d.day, d.month, d.year)

    @staticmethod
    def parse_period(s):
        """Parse strings such as '6Mo', '1Yr', '10Yr', '6M', '1Y'."""
        s = str(s).strip().upper()
        s = s.replace("MONTH", "M").replace("MO", "M")
        s = s.replace("YEAR", "Y").replace("YR", "Y")
        if s.endswith("M"):
            return ql.Period(int(s[:-1]), ql.Months)
        if s.endswith("Y"):
            return ql.Period(int(s[:-1]), ql.Years)
        return ql.Period(s)

    @staticmethod
    def to_years(value):
        """Convert a tenor ('5Y', '6M') or a plain number into a year count."""
        if isinstance(value, (int, float, np.floating, np.integer)):
            return float(value)
        if isinstance(value, ql.Period):
            p = value
        else:
            try:
                return float(value)
            except ValueError:
                p = DateUtils.parse_period(value)
        if p.units() == ql.Years:
            return float(p.length())
        if p.units() == ql.Months:
            return p.length() / 12.0
        if p.units() == ql.Weeks:
            return p.length() / 52.0
        return p.length() / 365.0

    @staticmethod
    def times(val_date, dates, day_count=None):
        """Year fractions from ``val_date`` to each date (Act/365F by default)."""
        day_count = day_count or ql.Actual365Fixed()
        start = DateUtils.to_ql_date(val_date)
        return [float(day_count.yearFraction(start, DateUtils.to_ql_date(d))) for d in dates]


def black_price_adjoint(forward, strike, variance, is_call=True):
    """Black price of an option on ``forward`` with total variance ``variance``.

    Returns
    -------
    tuple
        ``(price, d_forward, d_strike, d_variance)``. The price is undiscounted
        and per unit of underlying.
    """
    if forward <= 0.0 or strike <= 0.0:
        raise ValueError(
            f"Black formula requires positive forward and strike, got {forward} and {strike}."
        )
    omega = 1.0 if is_call else -1.0
    if variance <= 1.0e-28:
        # Intrinsic value: the vega is taken as zero.
        intrinsic = max(omega * (forward - strike), 0.0)
        itm = 1.0 if omega * (forward - strike) > 0.0 else 0.0
        return intrinsic, omega * itm, -omega * itm, 0.0
    sd = np.sqrt(variance)
    d1 = np.log(forward / strike) / sd + 0.5 * sd
    d2 = d1 - sd
    n1 = norm.cdf(omega * d1)
    n2 = norm.cdf(omega * d2)
    price = omega * (forward * n1 - strike * n2)
    d_variance = forward * norm.pdf(d1) / (2.0 * sd)
    return float(price), float(omega * n1), float(-omega * n2), float(d_variance)


def bracket_root(f, x_lower, x_upper, max_iterations=50, ratio=1.6):
    """Expand ``[x_lower, x_upper]`` until ``f`` changes sign on it.

    The interval grows on the side where ``|f|`` is smallest.

    Raises
    ------
    RootNotBracketedError
        If no sign change is found within ``max_iterations`` expansions.
    """
    if x_lower == x_upper:
        raise ValueError("Bracketing needs two distinct starting points.")
    x1, x2 = float(x_lower), float(x_upper)
    f1, f2 = f(x1), f(x2)
    for _ in range(int(max_iterations)):
        if not (np.isfinite(f1) and np.isfinite(f2)):
            break
        if f1 * f2 <= 0.0:
            return (x1, x2) if x1 < x2 else (x2, x1)
        if abs(f1) < abs(f2):
            x1 += ratio * (x1 - x2)
            f1 = f(x1)
        else:
            x2 += ratio * (x2 - x1)
            f2 = f(x2)
    raise RootNotBracketedError(
        f"Could not bracket a root starting from [{x_lower}, {x_upper}]."
    )


def ridder_root(f, x_lower, x_upper, accuracy=1.0e-8, max_iterations=100, bracket_iterations=50,
                bracket_ratio=1.6):
    """Bracket a root of ``f`` around the starting interval, then refine it with Ridder's method."""
    lo, hi = bracket_root(f, x_lower, x_upper, bracket_iterations, bracket_ratio)
    return float(optimize.ridder(f, lo, hi, xtol=accuracy, maxiter=int(max_iterations)))
