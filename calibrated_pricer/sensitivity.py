"""Sensitivity containers, the two sensitivity propagators and reporting sweeps.

Two differentiation strategies are implemented, on purpose independently:

1) ``ImplicitFunctionPropagator``: the calibrated LMM parameters are an implicit
   function of the SABR parameters and curves; their derivatives are obtained
   from the first-order condition of the calibration least-square problem.
2) ``AdjointSweepPropagator``: the bond futures price is differentiated by a
   hand-written reverse-mode sweep through the cheapest-to-deliver integrals.

The sweep functions at the end of the module return ``pandas.DataFrame`` objects
in a *wide* format: the first column is the x-axis, and each additional column
is a scenario label.
"""

import abc
import logging
from dataclasses import dataclass, field

import numpy as np
import pandas as pd
from scipy.stats import norm

from . import algebra

logger = logging.getLogger(__name__)


class CurveSensitivity:
    """Curve name -> list of ``(time, amount)`` pairs.

    ``amount`` is the derivative of the value with respect to the continuously
    compounded zero rate at ``time``. Pairs are kept as produced; ``cleaned``
    merges the pairs sharing the same time.
    """

    def __init__(self, sensitivities=None):
        self._sensitivities = {}
        for name, pairs in (sensitivities or {}).items():
            self._sensitivities[name] = [(float(t), float(a)) for t, a in pairs]

    @classmethod
    def of(cls, name, times, amounts):
        return cls({name: list(zip(times, amounts))})

    @property
    def names(self):
        return list(self._sensitivities)

    def __getitem__(self, name):
        return list(self._sensitivities.get(name, []))

    def plus(self, other):
        result = {name: list(pairs) for name, pairs in self._sensitivities.items()}
        for name, pairs in other._sensitivities.items():
            result.setdefault(name, []).extend(pairs)
        return CurveSensitivity(result)

    def multiplied_by(self, factor):
        return CurveSensitivity(
            {name: [(t, a * factor) for t, a in pairs] for name, pairs in self._sensitivities.items()}
        )

    def cleaned(self, time_tolerance=1.0e-10):
        """Return a copy with pairs sorted by time and equal times merged."""
        result = {}
        for name, pairs in self._sensitivities.items():
            merged = []
            for t, a in sorted(pairs):
                if merged and abs(merged[-1][0] - t) <= time_tolerance:
                    merged[-1] = (merged[-1][0], merged[-1][1] + a)
                else:
                    merged.append((t, a))
            result[name] = merged
        return CurveSensitivity(result)

    def total(self, name=None):
        """Sum of the amounts: the sensitivity to a parallel zero-rate shift."""
        names = self.names if name is None else [name]
        return float(sum(a for n in names for _, a in self._sensitivities.get(n, [])))

    def to_frame(self):
        rows = [
            {"curve": name, "time": t, "amount": a}
            for name, pairs in self.cleaned()._sensitivities.items()
            for t, a in pairs
        ]
        return pd.DataFrame(rows, columns=["curve", "time", "amount"])

    def __repr__(self):
        return f"CurveSensitivity({ {n: len(p) for n, p in self._sensitivities.items()} })"


class SABRSensitivity:
    """Sensitivities to the SABR ``alpha``, ``rho`` and ``nu`` keyed by ``(expiry, maturity)``."""

    def __init__(self):
        self.alpha = {}
        self.rho = {}
        self.nu = {}

    def _add(self, store, key, value):
        key = (float(key[0]), float(key[1]))
        store[key] = store.get(key, 0.0) + float(value)

    def add_alpha(self, key, value):
        self._add(self.alpha, key, value)

    def add_rho(self, key, value):
        self._add(self.rho, key, value)

    def add_nu(self, key, value):
        self._add(self.nu, key, value)

    def keys(self):
        return sorted(set(self.alpha) | set(self.rho) | set(self.nu))

    def plus(self, other):
        result = SABRSensitivity()
        for src in (self, other):
            for k, v in src.alpha.items():
                result.add_alpha(k, v)
            for k, v in src.rho.items():
                result.add_rho(k, v)
            for k, v in src.nu.items():
                result.add_nu(k, v)
        return result

    def multiplied_by(self, factor):
        result = SABRSensitivity()
        for k, v in self.alpha.items():
            result.add_alpha(k, v * factor)
        for k, v in self.rho.items():
            result.add_rho(k, v * factor)
        for k, v in self.nu.items():
            result.add_nu(k, v * factor)
        return result

    def to_frame(self):
        rows = [
            {
                "expiry": k[0],
                "maturity": k[1],
                "alpha": self.alpha.get(k, 0.0),
                "rho": self.rho.get(k, 0.0),
                "nu": self.nu.get(k, 0.0),
            }
            for k in self.keys()
        ]
        return pd.DataFrame(rows, columns=["expiry", "maturity", "alpha", "rho", "nu"])


@dataclass
class SensitivityResult:
    """Present value with its curve and (optionally) reference-model sensitivities."""

    present_value: float
    curve: CurveSensitivity
    sabr: SABRSensitivity = None


class SensitivityPropagator(abc.ABC):
    """Turns the partial derivatives gathered during a valuation into total sensitivities."""

    @abc.abstractmethod
    def propagate(self, partials):
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Implicit function theorem (calibrated LMM)
# ---------------------------------------------------------------------------


@dataclass
class CalibrationPartials:
    """Partial derivatives collected after a successive LMM calibration.

    ``Phi`` stacks the calibration parameters as ``[vol factor_0..P-1,
    displacement shift_0..P-1]``, ``Theta`` the SABR parameters as
    ``[alpha_0..P-1, rho_0..P-1, nu_0..P-1]``.
    """

    present_value: float
    pv_dphi: np.ndarray  # (2P,)
    pv_cal_dphi: np.ndarray  # (nb_cal, 2P)
    pv_cal_dtheta: np.ndarray  # (nb_cal, 3P)
    period_keys: list  # (expiry, maturity) of each period
    direct_curve: CurveSensitivity = None
    cal_reference_curve: list = field(default_factory=list)
    cal_target_curve: list = field(default_factory=list)


class ImplicitFunctionPropagator(SensitivityPropagator):
    """Sensitivities through a calibration by the implicit function theorem.

    The calibration solves ``f(Phi, Theta) = sum_cal (pv_lmm(cal; Phi) - pv_sabr(cal; Theta))^2``
    to a minimum, so ``df/dPhi(Phi(Theta), Theta) = 0`` and

        dPhi/dTheta = -(d2f/dPhi2)^-1 d2f/dPhidTheta.

    Both second derivatives are approximated by dropping the terms multiplied by
    the calibration residuals (``2 J^T J`` and ``-2 J^T G``). The approximation
    is exact when the calibration reproduces the SABR prices exactly.
    """

    def __init__(self, condition_limit=1.0e14):
        self.condition_limit = float(condition_limit)

    def _check(self, partials):
        j = algebra.as_matrix(partials.pv_cal_dphi)
        nb_cal, nb_phi = j.shape
        nb_periods = len(partials.period_keys)
        if nb_phi != 2 * nb_periods:
            raise ValueError(f"Expected {2 * nb_periods} calibration parameters, got {nb_phi}.")
        g = algebra.as_matrix(partials.pv_cal_dtheta, (nb_cal, 3 * nb_periods))
        p = algebra.as_vector(partials.pv_dphi, nb_phi)
        return j, g, p

    def dfdphi(self, partials):
        j = algebra.as_matrix(partials.pv_cal_dphi)
        return algebra.scale(algebra.multiply(algebra.transpose(j), j), 2.0)

    def phi_theta_derivative(self, partials):
        """``dPhi/dTheta`` of shape ``(2P, 3P)``."""
        j, g, _ = self._check(partials)
        dfdtheta = algebra.scale(algebra.multiply(algebra.transpose(j), g), -2.0)
        dfdphi_inv = algebra.inverse(self.dfdphi(partials), self.condition_limit)
        return algebra.scale(algebra.multiply(dfdphi_inv, dfdtheta), -1.0)

    def propagate(self, partials):
        j, _, p = self._check(partials)
        nb_periods = len(partials.period_keys)

        dphidtheta = self.phi_theta_derivative(partials)
        dpvdtheta = algebra.multiply(algebra.transpose(dphidtheta), p)

        sabr = SABRSensitivity()
        for loopp, key in enumerate(partials.period_keys):
            sabr.add_alpha(key, dpvdtheta[loopp])
            sabr.add_rho(key, dpvdtheta[nb_periods + loopp])
            sabr.add_nu(key, dpvdtheta[2 * nb_periods + loopp])

        curve = partials.direct_curve or CurveSensitivity()
        if partials.cal_reference_curve:
            curve = curve.plus(self.induced_curve_sensitivity(partials, j, p))
        return SensitivityResult(float(partials.present_value), curve, sabr)

    def induced_curve_sensitivity(self, partials, j=None, p=None):
        """Curve sensitivity flowing through the calibrated parameters.

        All calibration instruments contribute to every parameter direction.
        """
        if j is None or p is None:
            j, _, p = self._check(partials)
        nb_cal, nb_phi = j.shape
        if len(partials.cal_reference_curve) != nb_cal or len(partials.cal_target_curve) != nb_cal:
            raise ValueError("One reference and one target curve sensitivity are needed per calibration instrument.")
        dfdphi_inv = algebra.inverse(self.dfdphi(partials), self.condition_limit)

        diff = [
            ref.plus(tgt.multiplied_by(-1.0))
            for ref, tgt in zip(partials.cal_reference_curve, partials.cal_target_curve)
        ]
        dfdc = []
        for loopp in range(nb_phi):
            s = CurveSensitivity()
            for loopcal in range(nb_cal):
                s = s.plus(diff[loopcal].multiplied_by(-2.0 * j[loopcal, loopp]))
            dfdc.append(s)

        induced = CurveSensitivity()
        for loopp1 in range(nb_phi):
            dphidc = CurveSensitivity()
            for loopp2 in range(nb_phi):
                dphidc = dphidc.plus(dfdc[loopp2].multiplied_by(-dfdphi_inv[loopp1, loopp2]))
            induced = induced.plus(dphidc.multiplied_by(p[loopp1]))
        return induced


# ---------------------------------------------------------------------------
# Adjoint sweep (bond futures, cheapest-to-deliver)
# ---------------------------------------------------------------------------


class AdjointSweepPropagator(SensitivityPropagator):
    """Reverse-mode sweep through the cheapest-to-deliver interval integrals.

    The input is the forward state of ``BondFuturesHullWhiteEngine``. Starting
    from ``price_bar = 1``, the adjoint is pushed to the adjusted cash flows, to
    their discount factors and to the delivery discount factor, then to curve
    times as ``-t * df * df_bar``.

    The crossing points ``kappa`` are not differentiated: at a crossing both
    bonds have the same value, so the boundary terms cancel (envelope theorem)
    and the sweep is exact to first order.
    """

    def propagate(self, partials):
        state = partials
        bounds = np.concatenate(([-np.inf], state.kappa, [np.inf]))
        nb_bond = len(state.cfa)

        cfa_bar = [np.zeros_like(c) for c in state.cfa]
        for loopint, bond in enumerate(state.ctd):
            alpha = state.alpha[bond]
            cfa_bar[bond] += norm.cdf(bounds[loopint + 1] + alpha) - norm.cdf(bounds[loopint] + alpha)

        times = []
        amounts = []
        df_delivery_bar = 0.0
        for loopb in range(nb_bond):
            if not np.any(cfa_bar[loopb]):
                continue
            df_bar = (
                state.beta[loopb] / state.df_delivery * state.amounts[loopb]
                / state.conversion_factors[loopb] * cfa_bar[loopb]
            )
            times.extend(state.times[loopb])
            amounts.extend(-state.times[loopb] * state.df[loopb] * df_bar)
            df_delivery_bar += float(np.sum(-state.cfa[loopb] / state.df_delivery * cfa_bar[loopb]))
        times.append(state.delivery)
        amounts.append(-state.delivery * state.df_delivery * df_delivery_bar)

        curve = CurveSensitivity.of(state.curve_name, times, amounts)
        return SensitivityResult(float(state.price), curve)


# ---------------------------------------------------------------------------
# Reporting sweeps
# ---------------------------------------------------------------------------


def price_vs_rate_shift(scenarios, market, rate_shifts_bps):
    """Present value of each scenario under parallel shifts of all the curves.

    Parameters
    ----------
    scenarios : list[tuple]
        List of tuples: (label, pricer, instrument). The pricer must expose
        ``present_value(instrument, market)``.
    market : SABRMarket or HullWhiteMarket
    rate_shifts_bps : iterable[float]
    """
    rows = []
    for bps in rate_shifts_bps:
        shifted = market.with_curves(market.curves.bumped(float(bps) / 10000.0))
        row = {"rate_shift_bps": float(bps)}
        for label, pricer, instrument in scenarios:
            row[label] = float(pricer.present_value(instrument, shifted))
        rows.append(row)
    return pd.DataFrame(rows)


def price_vs_sabr_shift(scenarios, market, parameter, shifts):
    """Present value of each scenario under parallel shifts of one SABR parameter."""
    rows = []
    for s in shifts:
        shifted = market.with_sabr(market.sabr.bumped(parameter, float(s)))
        row = {f"{parameter}_shift": float(s)}
        for label, pricer, instrument in scenarios:
            row[label] = float(pricer.present_value(instrument, shifted))
        rows.append(row)
    return pd.DataFrame(rows)
