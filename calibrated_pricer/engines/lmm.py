"""Displaced-diffusion LMM pricing of physical swaptions (frozen-weights approximation)."""

from dataclasses import dataclass

import numpy as np

from ..sensitivity import CurveSensitivity
from ..utils import black_price_adjoint
from .base import TargetModelPricer


@dataclass
class LMMSensitivity:
    """Present value and its derivatives w.r.t. the LMM parameters and the curve.

    ``volatility`` has the shape of ``LMMParameters.volatility`` and
    ``displacement`` the shape of ``LMMParameters.displacement``; entries of
    periods outside the swaption are zero.
    """

    present_value: float
    volatility: np.ndarray
    displacement: np.ndarray
    curve: CurveSensitivity


class LMMDDSwaptionEngine(TargetModelPricer):
    """Approximated price of a physical swaption in the displaced-diffusion LMM.

    The swap value is written as ``U - K`` with

    - ``U = sum_j (P_j - P_{j+1} + delta_j d_j P_{j+1})``, the displaced Ibor leg,
    - ``K = sum_k c_k Q_k + sum_j delta_j d_j P_{j+1}``, the fixed leg plus the
      displacement adjustment.

    Freezing the weights ``u_j / U`` at their initial value, ``U`` is lognormal
    with volatility ``sigma = gamma^T u / U`` and the swaption is a Black option
    with total variance ``sigma . sigma * integral exp(-2a(theta - t)) dt``.

    The settlement and maturity times of the swaption must be points of the LMM
    Ibor grid. A varying fixed rate (step-up / step-down swaption) is supported.
    """

    def _forward(self, swaption, parameters, market):
        curves = market.curves
        name = curves.curve_name(swaption.currency)
        start = parameters.index_of(swaption.settlement_time)
        end = parameters.index_of(swaption.maturity_time)
        ibor_times = parameters.ibor_times[start:end + 1]
        p = curves.discount_factors(name, ibor_times)
        q = curves.discount_factors(name, swaption.fixed_payment_times)
        delta = parameters.accrual_factors[start:end]
        disp = parameters.displacement[start:end]
        gamma = parameters.volatility[start:end, :]
        coupons = np.array(swaption.fixed_accrual_factors) * np.array(swaption.fixed_rates)

        u = p[:-1] - p[1:] + delta * disp * p[1:]
        u_total = float(np.sum(u))
        strike = float(np.dot(coupons, q) + np.sum(delta * disp * p[1:]))
        sigma = gamma.T @ u / u_total
        tau = parameters.time_integral(swaption.expiry_time)
        variance = tau * float(np.dot(sigma, sigma))
        return {
            "name": name, "start": start, "end": end, "ibor_times": ibor_times, "p": p, "q": q,
            "delta": delta, "disp": disp, "gamma": gamma, "coupons": coupons, "u": u,
            "u_total": u_total, "strike": strike, "sigma": sigma, "tau": tau, "variance": variance,
        }

    def price(self, swaption, parameters, market):
        f = self._forward(swaption, parameters, market)
        bl = black_price_adjoint(f["u_total"], f["strike"], f["variance"], swaption.is_payer)[0]
        return swaption.notional * bl

    def sensitivity(self, swaption, parameters, market):
        f = self._forward(swaption, parameters, market)
        notional = swaption.notional
        bl, bl_u, bl_k, bl_v = black_price_adjoint(f["u_total"], f["strike"], f["variance"], swaption.is_payer)
        pv = notional * bl

        u, u_total, sigma = f["u"], f["u_total"], f["sigma"]
        delta, disp, p = f["delta"], f["disp"], f["p"]

        # Backward sweep.
        u_total_bar = notional * bl_u
        strike_bar = notional * bl_k
        variance_bar = notional * bl_v
        sigma_bar = variance_bar * f["tau"] * 2.0 * sigma
        u_bar = f["gamma"] @ sigma_bar / u_total
        u_total_bar += -float(np.dot(sigma_bar, sigma)) / u_total
        u_bar = u_bar + u_total_bar
        gamma_bar = np.outer(u, sigma_bar) / u_total

        p_bar = np.zeros_like(p)
        p_bar[:-1] += u_bar
        p_bar[1:] += u_bar * (delta * disp - 1.0) + strike_bar * delta * disp
        disp_bar = (u_bar + strike_bar) * delta * p[1:]
        q_bar = strike_bar * f["coupons"]

        volatility = np.zeros_like(parameters.volatility)
        volatility[f["start"]:f["end"], :] = gamma_bar
        displacement = np.zeros_like(parameters.displacement)
        displacement[f["start"]:f["end"]] = disp_bar

        fixed_times = np.array(swaption.fixed_payment_times)
        times = list(f["ibor_times"]) + list(fixed_times)
        amounts = list(-f["ibor_times"] * p * p_bar) + list(-fixed_times * f["q"] * q_bar)
        curve = CurveSensitivity.of(f["name"], times, amounts)
        return LMMSensitivity(pv, volatility, displacement, curve)
