"""SABR (Hagan) pricing of physical swaptions, with algorithmic derivatives.

The implied volatility follows Hagan et al. (2002), as implemented by
``QuantLib.sabrVolatility``. Its derivatives with respect to the forward and
to ``alpha``, ``rho`` and ``nu`` are computed in closed form alongside the
value so that the swaption engine can return exact sensitivities.
"""

import numpy as np

from ..sensitivity import CurveSensitivity, SABRSensitivity, SensitivityResult
from ..utils import black_price_adjoint
from .base import ReferenceModelPricer

_SMALL_Z = 1.0e-7


def hagan_volatility_adjoint(forward, strike, expiry, alpha, beta, rho, nu):
    """Hagan lognormal implied volatility and its first derivatives.

    Returns
    -------
    tuple
        ``(volatility, d_forward, d_alpha, d_rho, d_nu)``.
    """
    b1 = 1.0 - beta
    log_fk = np.log(forward / strike)
    m = (forward * strike) ** (0.5 * b1)
    m_f = m * 0.5 * b1 / forward
    z = nu / alpha * m * log_fk
    z_f = nu / alpha * m * (0.5 * b1 * log_fk + 1.0) / forward

    if abs(z) < _SMALL_Z:
        q = 1.0 - 0.5 * rho * z + (2.0 - 3.0 * rho * rho) * z * z / 12.0
        q_z = -0.5 * rho + (2.0 - 3.0 * rho * rho) * z / 6.0
        q_rho = -0.5 * z - 0.5 * rho * z * z
    else:
        r = np.sqrt(1.0 - 2.0 * rho * z + z * z)
        x = np.log((r + z - rho) / (1.0 - rho))
        x_z = 1.0 / r
        x_rho = (-z / r - 1.0) / (r + z - rho) + 1.0 / (1.0 - rho)
        q = z / x
        q_z = (x - z * x_z) / (x * x)
        q_rho = -z * x_rho / (x * x)

    l2 = b1 * b1 * log_fk * log_fk
    g = 1.0 + l2 / 24.0 + l2 * l2 / 1920.0
    g_f = (b1 * b1 * log_fk / 12.0 + b1 ** 4 * log_fk ** 3 / 480.0) / forward

    c = 1.0 + expiry * (
        b1 * b1 * alpha * alpha / (24.0 * m * m)
        + rho * beta * nu * alpha / (4.0 * m)
        + (2.0 - 3.0 * rho * rho) * nu * nu / 24.0
    )
    c_m = expiry * (-b1 * b1 * alpha * alpha / (12.0 * m ** 3) - rho * beta * nu * alpha / (4.0 * m * m))
    c_alpha = expiry * (b1 * b1 * alpha / (12.0 * m * m) + rho * beta * nu / (4.0 * m))
    c_rho = expiry * (beta * nu * alpha / (4.0 * m) - rho * nu * nu / 4.0)
    c_nu = expiry * (rho * beta * alpha / (4.0 * m) + (2.0 - 3.0 * rho * rho) * nu / 12.0)

    k = alpha / (m * g)
    vol = k * q * c

    d_forward = k * (q_z * z_f * c + q * c_m * m_f) - vol * (m_f / m + g_f / g)
    d_alpha = q * c / (m * g) + k * (q_z * (-z / alpha) * c + q * c_alpha)
    d_rho = k * (q_rho * c + q * c_rho)
    d_nu = k * (q_z * (m * log_fk / alpha) * c + q * c_nu)
    return float(vol), float(d_forward), float(d_alpha), float(d_rho), float(d_nu)


class SABRSwaptionEngine(ReferenceModelPricer):
    """Physical swaption priced with Black on the swap rate and the SABR smile.

    The SABR parameters are read from the market surface at
    ``(expiry, maturity - settlement)``. The swaption must have a flat fixed
    rate, which is the strike. Discounting uses the curve mapped to the
    swaption currency.
    """

    def _forward(self, swaption, market):
        curves = market.curves
        name = curves.curve_name(swaption.currency)
        q = curves.discount_factors(name, swaption.fixed_payment_times)
        p_start = curves.discount_factor(name, swaption.settlement_time)
        p_end = curves.discount_factor(name, swaption.maturity_time)
        delta = np.array(swaption.fixed_accrual_factors)
        annuity = float(np.dot(delta, q))
        swap_rate = (p_start - p_end) / annuity
        return name, q, p_start, p_end, delta, annuity, swap_rate

    def _volatility(self, swaption, market, swap_rate):
        alpha, beta, rho, nu = market.sabr.parameters(
            swaption.expiry_time, swaption.maturity_time - swaption.settlement_time
        )
        return hagan_volatility_adjoint(swap_rate, swaption.strike, swaption.expiry_time, alpha, beta, rho, nu)

    def volatility(self, swaption, market):
        """SABR implied volatility of the swaption."""
        swap_rate = self._forward(swaption, market)[-1]
        return self._volatility(swaption, market, swap_rate)[0]

    def price(self, swaption, market):
        *_, annuity, swap_rate = self._forward(swaption, market)
        vol = self._volatility(swaption, market, swap_rate)[0]
        variance = vol * vol * swaption.expiry_time
        bl = black_price_adjoint(swap_rate, swaption.strike, variance, swaption.is_payer)[0]
        return swaption.notional * annuity * bl

    present_value = price

    def sensitivity(self, swaption, market):
        """Present value with its SABR (alpha, rho, nu) and curve sensitivities.

        The SABR sensitivities are keyed by ``(expiry, maturity)`` of the swaption.
        """
        name, q, p_start, p_end, delta, annuity, swap_rate = self._forward(swaption, market)
        vol, vol_f, vol_alpha, vol_rho, vol_nu = self._volatility(swaption, market, swap_rate)
        theta = swaption.expiry_time
        notional = swaption.notional
        bl, bl_f, _, bl_v = black_price_adjoint(swap_rate, swaption.strike, vol * vol * theta, swaption.is_payer)
        pv = notional * annuity * bl

        vol_bar = notional * annuity * bl_v * 2.0 * vol * theta
        sabr = SABRSensitivity()
        key = (swaption.expiry_time, swaption.maturity_time)
        sabr.add_alpha(key, vol_bar * vol_alpha)
        sabr.add_rho(key, vol_bar * vol_rho)
        sabr.add_nu(key, vol_bar * vol_nu)

        # Backward sweep to the discount factors.
        swap_rate_bar = notional * annuity * bl_f + vol_bar * vol_f
        annuity_bar = notional * bl - swap_rate_bar * swap_rate / annuity
        p_start_bar = swap_rate_bar / annuity
        p_end_bar = -swap_rate_bar / annuity
        q_bar = annuity_bar * delta

        times = [swaption.settlement_time, swaption.maturity_time] + list(swaption.fixed_payment_times)
        amounts = [
            -swaption.settlement_time * p_start * p_start_bar,
            -swaption.maturity_time * p_end * p_end_bar,
        ] + list(-np.array(swaption.fixed_payment_times) * q * q_bar)
        curve = CurveSensitivity.of(name, times, amounts)
        return SensitivityResult(pv, curve, sabr)
