"""Model parameter containers (LMM displaced diffusion, Hull-White one factor).

Both containers are mutable: the calibration engines work on a private
``copy()`` and never touch the instance supplied by the caller.
"""

import numpy as np

from .errors import BasketConstructionError

_TIME_TOLERANCE = 1.0e-8


class LMMParameters:
    """Parameters of a displaced-diffusion Libor Market Model.

    The forward ``L_j`` over ``[ibor_times[j], ibor_times[j+1]]`` follows
    ``dL_j = (L_j + displacement[j]) * exp(-a (theta - t)) volatility[j] . dW``
    where ``a`` is ``mean_reversion`` and ``W`` has ``nb_factor`` independent
    components.

    Parameters
    ----------
    ibor_times : array-like, shape (M+1,)
        Increasing Ibor period boundaries.
    accrual_factors : array-like, shape (M,)
    displacement : array-like, shape (M,)
    volatility : array-like, shape (M, nb_factor)
    mean_reversion : float
    """

    def __init__(self, ibor_times, accrual_factors, displacement, volatility, mean_reversion=0.0):
        self.ibor_times = np.array(ibor_times, dtype=float)
        self.accrual_factors = np.array(accrual_factors, dtype=float)
        self.displacement = np.array(displacement, dtype=float)
        self.volatility = np.array(volatility, dtype=float)
        self.mean_reversion = float(mean_reversion)

        m = self.ibor_times.shape[0] - 1
        if m < 1 or np.any(np.diff(self.ibor_times) <= 0.0):
            raise ValueError("Ibor times must be increasing with at least one period.")
        if self.accrual_factors.shape != (m,) or self.displacement.shape != (m,):
            raise ValueError("Accrual factors and displacements need one entry per Ibor period.")
        if self.volatility.ndim != 2 or self.volatility.shape[0] != m:
            raise ValueError("Volatility must be a (nb_periods, nb_factor) matrix.")

    @classmethod
    def from_angle(cls, ibor_times, accrual_factors, displacement, volatility_level, angle,
                   mean_reversion=0.0):
        """Two-factor parameters with a constant volatility norm and a rotating factor loading.

        The loading of period ``j`` is ``volatility_level * (cos(phi_j), sin(phi_j))``
        with ``phi_j`` growing linearly from 0 to ``angle``, so the instantaneous
        correlation between the first and last forwards is ``cos(angle)``.
        """
        m = len(ibor_times) - 1
        phi = angle * np.arange(m) / max(m - 1, 1)
        vol = float(volatility_level) * np.column_stack([np.cos(phi), np.sin(phi)])
        disp = np.full(m, float(displacement)) if np.ndim(displacement) == 0 else displacement
        return cls(ibor_times, accrual_factors, disp, vol, mean_reversion)

    @property
    def nb_periods(self):
        return self.accrual_factors.shape[0]

    @property
    def nb_factor(self):
        return self.volatility.shape[1]

    def index_of(self, time):
        """Index of ``time`` in the Ibor grid.

        Raises
        ------
        BasketConstructionError
            If ``time`` is not (within 1e-8) a point of the grid.
        """
        idx = int(np.argmin(np.abs(self.ibor_times - time)))
        if abs(self.ibor_times[idx] - time) > _TIME_TOLERANCE:
            raise BasketConstructionError(f"Time {time} is not on the LMM Ibor grid.")
        return idx

    def time_integral(self, expiry):
        """Integral of ``exp(-2a (expiry - t))`` over ``[0, expiry]``."""
        a = self.mean_reversion
        if abs(a) < 1.0e-10:
            return float(expiry)
        return float((1.0 - np.exp(-2.0 * a * expiry)) / (2.0 * a))

    def copy(self):
        return LMMParameters(
            self.ibor_times.copy(),
            self.accrual_factors.copy(),
            self.displacement.copy(),
            self.volatility.copy(),
            self.mean_reversion,
        )

    def __eq__(self, other):
        if not isinstance(other, LMMParameters):
            return NotImplemented
        return (
            np.array_equal(self.ibor_times, other.ibor_times)
            and np.array_equal(self.accrual_factors, other.accrual_factors)
            and np.array_equal(self.displacement, other.displacement)
            and np.array_equal(self.volatility, other.volatility)
            and self.mean_reversion == other.mean_reversion
        )

    __hash__ = None

    def __repr__(self):
        return (
            f"LMMParameters(nb_periods={self.nb_periods}, nb_factor={self.nb_factor}, "
            f"mean_reversion={self.mean_reversion})"
        )


class HullWhiteParameters:
    """Hull-White one-factor parameters with piecewise-constant volatility.

    ``volatility[i]`` applies on ``[volatility_time[i], volatility_time[i+1])``;
    the constructor receives the interior breakpoints only and pads the grid
    with 0 and a far horizon.
    """

    _HORIZON = 1000.0

    def __init__(self, mean_reversion, volatility, volatility_time=()):
        self.mean_reversion = float(mean_reversion)
        self.volatility = np.atleast_1d(np.array(volatility, dtype=float))
        inner = np.array(volatility_time, dtype=float)
        if self.mean_reversion <= 0.0:
            raise ValueError("Hull-White mean reversion must be positive.")
        if inner.shape[0] != self.volatility.shape[0] - 1:
            raise ValueError("Need one volatility per interval between breakpoints.")
        if np.any(np.diff(inner) <= 0.0) or np.any(inner <= 0.0):
            raise ValueError("Volatility breakpoints must be positive and increasing.")
        self.volatility_time = np.concatenate(([0.0], inner, [self._HORIZON]))

    def copy(self):
        return HullWhiteParameters(self.mean_reversion, self.volatility.copy(), self.volatility_time[1:-1].copy())

    def __eq__(self, other):
        if not isinstance(other, HullWhiteParameters):
            return NotImplemented
        return (
            self.mean_reversion == other.mean_reversion
            and np.array_equal(self.volatility, other.volatility)
            and np.array_equal(self.volatility_time, other.volatility_time)
        )

    __hash__ = None


class HullWhiteOneFactorModel:
    """Closed-form quantities of the Hull-White one-factor model used by the bond futures engine."""

    @staticmethod
    def _segments(parameters, start, end):
        """Integration nodes on ``[start, end]`` and the volatility of each segment."""
        vt = parameters.volatility_time
        inner = vt[(vt > start) & (vt < end)]
        nodes = np.concatenate(([start], inner, [end]))
        idx = np.searchsorted(vt, nodes[:-1], side="right") - 1
        return nodes, parameters.volatility[idx]

    def alpha(self, parameters, start_expiry, end_expiry, numeraire_time, bond_maturity):
        """Volatility of ``P(., bond_maturity) / P(., numeraire_time)`` integrated over the expiry window.

        ``alpha^2 = (e^{-a t_n} - e^{-a t_m})^2 / (2 a^3) * sum sigma_i^2 (e^{2 a s_{i+1}} - e^{2 a s_i})``
        """
        a = parameters.mean_reversion
        factor1 = np.exp(-a * numeraire_time) - np.exp(-a * bond_maturity)
        if end_expiry <= start_expiry:
            return 0.0
        nodes, sigma = self._segments(parameters, start_expiry, end_expiry)
        denominator = np.sum(sigma ** 2 * (np.exp(2.0 * a * nodes[1:]) - np.exp(2.0 * a * nodes[:-1])))
        return float(factor1 * np.sqrt(denominator / (2.0 * a ** 3)))

    def futures_convexity_factor(self, parameters, t0, t1, t2):
        """Futures convexity factor of a payment at ``t1`` for a future with expiry ``t0`` and delivery ``t2``."""
        a = parameters.mean_reversion
        factor1 = np.exp(-a * t1) - np.exp(-a * t2)
        if t0 <= 0.0:
            return 1.0
        nodes, sigma = self._segments(parameters, 0.0, t0)
        factor2 = np.sum(
            sigma ** 2
            * (np.exp(a * nodes[1:]) - np.exp(a * nodes[:-1]))
            * (2.0 - np.exp(-a * (t2 - nodes[1:])) - np.exp(-a * (t2 - nodes[:-1])))
        )
        return float(np.exp(factor1 / (2.0 * a ** 3) * factor2))
