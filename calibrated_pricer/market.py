import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
import QuantLib as ql
from scipy.interpolate import RegularGridInterpolator

from .models import HullWhiteParameters
from .utils import DateUtils, us_calendar

logger = logging.getLogger(__name__)


class CurveProvider:
    """Named discounting curves and the mapping from currencies / issuers to them.

    Curves are QuantLib yield term structures queried by time. A provider is
    never modified once built: ``bumped`` returns a new provider whose curves
    are zero-spreaded versions of the original ones.

    Parameters
    ----------
    curves : dict
        Curve name -> QuantLib YieldTermStructure (or handle).
    mapping : dict, optional
        Currency or issuer -> curve name. Names map to themselves.
    """

    def __init__(self, curves, mapping=None):
        self._curves = dict(curves)
        self._mapping = dict(mapping or {})
        for key, name in self._mapping.items():
            if name not in self._curves:
                raise ValueError(f"'{key}' is mapped to unknown curve '{name}'.")

    @classmethod
    def from_zero_rates(cls, name, times, rates, reference_date=None, mapping=None):
        """Build a provider with one continuously compounded zero curve (Act/365F, linear in rate)."""
        ref = reference_date or ql.Date(1, 1, 2025)
        day_count = ql.Actual365Fixed()
        dates = [ref] + [ref + ql.Period(int(round(t * 365.0)), ql.Days) for t in times]
        curve = ql.ZeroCurve(dates, [float(rates[0])] + [float(r) for r in rates], day_count)
        curve.enableExtrapolation()
        return cls({name: curve}, mapping)

    @property
    def names(self):
        return list(self._curves)

    def curve_name(self, key):
        if key in self._mapping:
            return self._mapping[key]
        if key in self._curves:
            return key
        raise KeyError(f"No curve for '{key}'.")

    def curve(self, key):
        c = self._curves[self.curve_name(key)]
        return c.currentLink() if hasattr(c, "currentLink") else c

    def discount_factor(self, key, time):
        return float(self.curve(key).discount(float(time), True))

    def discount_factors(self, key, times):
        c = self.curve(key)
        return np.array([c.discount(float(t), True) for t in times])

    def bumped(self, shift, names=None):
        """Return a provider with a parallel continuously compounded zero-rate ``shift``.

        Parameters
        ----------
        shift : float
            Shift in decimal (1bp -> 0.0001).
        names : iterable of str, optional
            Curves to shift; all curves when omitted.
        """
        targets = set(self._curves) if names is None else set(names)
        curves = {}
        for name, c in self._curves.items():
            if name not in targets:
                curves[name] = c
                continue
            base = c.currentLink() if hasattr(c, "currentLink") else c
            spreaded = ql.ZeroSpreadedTermStructure(
                ql.YieldTermStructureHandle(base),
                ql.QuoteHandle(ql.SimpleQuote(float(shift))),
            )
            spreaded.enableExtrapolation()
            curves[name] = spreaded
        return CurveProvider(curves, self._mapping)


class SABRSurface:
    """SABR parameters on an (expiry, tenor) grid with bilinear interpolation.

    ``beta`` is a single constant. The grids ``alpha``, ``rho`` and ``nu`` have
    shape ``(len(expiries), len(tenors))``; at least two nodes are needed in
    each direction. Outside the grid the interpolation extrapolates linearly.
    """

    PARAMETERS = ("alpha", "rho", "nu")

    def __init__(self, expiries, tenors, alpha, rho, nu, beta=0.5):
        self.expiries = np.array(expiries, dtype=float)
        self.tenors = np.array(tenors, dtype=float)
        self.beta = float(beta)
        shape = (self.expiries.shape[0], self.tenors.shape[0])
        if min(shape) < 2:
            raise ValueError("SABR surface needs at least two expiries and two tenors.")
        self.grids = {}
        for name, values in zip(self.PARAMETERS, (alpha, rho, nu)):
            grid = np.broadcast_to(np.array(values, dtype=float), shape).copy()
            self.grids[name] = grid
        if np.any(self.grids["alpha"] <= 0.0) or np.any(self.grids["nu"] < 0.0):
            raise ValueError("SABR alpha must be positive and nu non-negative.")
        if np.any(np.abs(self.grids["rho"]) >= 1.0):
            raise ValueError("SABR rho must lie in (-1, 1).")
        self._interpolators = {
            name: RegularGridInterpolator(
                (self.expiries, self.tenors), grid, bounds_error=False, fill_value=None
            )
            for name, grid in self.grids.items()
        }

    def parameters(self, expiry, tenor):
        """Return ``(alpha, beta, rho, nu)`` at ``(expiry, tenor)``."""
        point = np.array([[float(expiry), float(tenor)]])
        alpha = float(self._interpolators["alpha"](point)[0])
        rho = float(self._interpolators["rho"](point)[0])
        nu = float(self._interpolators["nu"](point)[0])
        return alpha, self.beta, rho, nu

    def bumped(self, parameter, shift, node=None):
        """Return a copy with ``parameter`` shifted on every node, or only on ``node=(i, j)``."""
        if parameter not in self.grids:
            raise ValueError(f"Unknown SABR parameter '{parameter}'.")
        grids = {name: grid.copy() for name, grid in self.grids.items()}
        if node is None:
            grids[parameter] += shift
        else:
            grids[parameter][node] += shift
        return SABRSurface(self.expiries, self.tenors, grids["alpha"], grids["rho"], grids["nu"], self.beta)


@dataclass(frozen=True)
class SABRMarket:
    """Curves plus SABR surface: the data needed by the SABR and LMM swaption engines."""

    curves: CurveProvider
    sabr: SABRSurface

    def with_curves(self, curves):
        return SABRMarket(curves, self.sabr)

    def with_sabr(self, sabr):
        return SABRMarket(self.curves, sabr)


@dataclass(frozen=True)
class HullWhiteMarket:
    """Issuer curves plus Hull-White parameters: the data of the bond futures engine."""

    curves: CurveProvider
    hull_white: HullWhiteParameters

    def with_curves(self, curves):
        return HullWhiteMarket(curves, self.hull_white)


class MarketLoader:
    """Load market inputs (discount curve + SABR surface) from CSV files.

    The loader is intentionally permissive regarding column names to make the
    project easy to run with different curve exports.
    """

    def __init__(self, cfg):
        self.cfg = cfg
        if cfg.val_date is not None:
            ql.Settings.instance().evaluationDate = cfg.val_date

    def load_curve(self, path, day_count=None, calendar=None, allow_extrapolation=True):
        """Load a discount curve from a CSV and return a QuantLib DiscountCurve.

        The CSV is expected to contain at least:
        - a date column (e.g. 'date' or 'pillar_date')
        - a discount factor column (e.g. 'discount_factor' or 'df')

        The loader will ensure the valuation date exists with DF = 1.0.
        """
        if self.cfg.val_date is None:
            raise ValueError("A valuation date is needed to load a dated curve.")
        day_count = day_count or ql.Actual365Fixed()
        calendar = calendar or us_calendar()

        df = pd.read_csv(path)
        col_date = next((c for c in df.columns if "date" in c.lower() or "pillar" in c.lower()), None)
        col_df = next(
            (c for c in df.columns if "discount" in c.lower() or c.lower() == "df"),
            None,
        )
        if col_date is None or col_df is None:
            raise ValueError(
                "Curve CSV must contain a date column (date/pillar) and a discount factor column (discount/df)."
            )

        df[col_date] = pd.to_datetime(df[col_date])
        df = df.sort_values(col_date)

        dates = [self.cfg.val_date]
        dfs = [1.0]
        for _, row in df.iterrows():
            d = DateUtils.to_ql_date(row[col_date].date())
            if d <= self.cfg.val_date:
                continue
            dates.append(d)
            dfs.append(float(row[col_df]))

        curve = ql.DiscountCurve(dates, dfs, day_count, calendar)
        if allow_extrapolation:
            curve.enableExtrapolation()
        logger.debug("Loaded curve %s with %d pillars", path, len(dates))
        return curve

    def load_sabr_surface(self, path):
        """Load a SABR surface from a long CSV with columns expiry, tenor, alpha, beta, rho, nu.

        Expiries and tenors may be numbers (years) or tenor strings ('6M', '5Y').
        """
        df = pd.read_csv(path)
        df.columns = [c.strip().lower() for c in df.columns]
        missing = {"expiry", "tenor", "alpha", "rho", "nu"} - set(df.columns)
        if missing:
            raise ValueError(f"SABR CSV is missing columns: {sorted(missing)}")

        df["expiry"] = df["expiry"].map(DateUtils.to_years)
        df["tenor"] = df["tenor"].map(DateUtils.to_years)
        beta = float(df["beta"].iloc[0]) if "beta" in df.columns else 0.5

        grids = {}
        for name in SABRSurface.PARAMETERS:
            table = df.pivot(index="expiry", columns="tenor", values=name).sort_index().sort_index(axis=1)
            if table.isna().values.any():
                raise ValueError(f"SABR CSV does not define '{name}' on a full expiry x tenor grid.")
            grids[name] = table
        alpha = grids["alpha"]
        return SABRSurface(
            alpha.index.values,
            alpha.columns.values,
            alpha.values,
            grids["rho"].values,
            grids["nu"].values,
            beta,
        )
