"""Bond futures price in the Hull-White one-factor model with cheapest-to-deliver switches."""

import logging
from dataclasses import dataclass

import numpy as np
from scipy.stats import norm

from ..models import HullWhiteOneFactorModel
from ..sensitivity import AdjointSweepPropagator
from ..utils import ridder_root

logger = logging.getLogger(__name__)


@dataclass
class CheapestToDeliverState:
    """Forward-pass quantities of the bond futures price, consumed by the adjoint sweep.

    Per-bond entries (``times``, ``df``, ``alpha``, ``beta``, ``amounts``,
    ``cfa``) are arrays over the bond cash flows. ``ctd[i]`` is the index of the
    cheapest bond on the ``i``-th interval ``(kappa[i-1], kappa[i])`` of the
    normal variable, the outer bounds being infinite.
    """

    price: float
    curve_name: str
    delivery: float
    df_delivery: float
    conversion_factors: np.ndarray
    times: list
    df: list
    alpha: list
    beta: list
    amounts: list
    cfa: list
    accrued: np.ndarray
    ctd: list
    kappa: np.ndarray


def normal_grid(nb_points):
    """Non-uniform grid of a standard normal variable.

    ``nb_points // 20`` points on each wing are spaced by half the central
    quantile, the remaining points uniformly cover
    ``[N^-1(1 / (2 n_c)), -N^-1(1 / (2 n_c))]``.
    """
    nb_points = int(nb_points)
    nb_wing = nb_points // 20
    nb_center = nb_points - 2 * nb_wing
    if nb_center < 2:
        raise ValueError(f"At least two central points are needed, got {nb_points} points.")
    x_start = norm.ppf(1.0 / (2.0 * nb_center))
    x = np.empty(nb_points)
    for i in range(nb_wing):
        x[i] = x_start * (1.0 + (nb_wing - i) / 2.0)
        x[nb_points - 1 - i] = -x[i]
    x[nb_wing:nb_wing + nb_center] = np.linspace(x_start, -x_start, nb_center)
    return x


class BondFuturesHullWhiteEngine:
    """Bond futures price as the expected delivery value of the cheapest bond.

    In Hull-White, the value at delivery of each deliverable bond divided by its
    conversion factor is a sum of lognormal terms in a single standard normal
    variable ``X``:

        v_k(X) = sum_j cfa_kj exp(-alpha_kj^2 / 2 - alpha_kj X) - e_k

    where ``cfa`` are the forward cash flows adjusted by the futures convexity
    factor and ``e`` the accrued interest divided by the conversion factor. The
    futures price is ``E[min_k v_k(X)]``; it is integrated in closed form on the
    intervals where one bond stays the cheapest. The interval bounds are found
    on a normal grid, then refined by a Ridder root search.

    Parameters
    ----------
    cfg : AppConfig, optional
        Provides the grid size and root-finder settings.
    nb_points : int, optional
        Overrides ``cfg.ctd_nb_points``.
    """

    def __init__(self, cfg=None, nb_points=None, propagator=None):
        self.nb_points = int(nb_points or (cfg.ctd_nb_points if cfg is not None else 81))
        self.root_accuracy = cfg.root_accuracy if cfg is not None else 1.0e-8
        self.root_max_iterations = cfg.root_max_iterations if cfg is not None else 100
        self.bracket_max_iterations = cfg.bracket_max_iterations if cfg is not None else 50
        self.bracket_ratio = cfg.bracket_ratio if cfg is not None else 1.6
        self.model = HullWhiteOneFactorModel()
        self.propagator = propagator or AdjointSweepPropagator()

    def forward_state(self, future, market, nb_points=None):
        """Run the forward pass and return the ``CheapestToDeliverState``."""
        curves = market.curves
        parameters = market.hull_white
        name = curves.curve_name(future.issuer)
        expiry = future.notice_last_time
        delivery = future.delivery_last_time
        df_delivery = curves.discount_factor(name, delivery)
        cf = np.array(future.conversion_factors)
        x = normal_grid(nb_points or self.nb_points)

        nb_bond = len(future.basket)
        times, df, alpha, beta, amounts, cfa = [], [], [], [], [], []
        accrued = np.empty(nb_bond)
        pv = np.empty((nb_bond, x.shape[0]))
        for loopb, bond in enumerate(future.basket):
            t = np.array(bond.payment_times)
            a = np.array(bond.payment_amounts)
            d = curves.discount_factors(name, t)
            al = np.array([self.model.alpha(parameters, 0.0, expiry, delivery, tj) for tj in t])
            be = np.array([self.model.futures_convexity_factor(parameters, expiry, tj, delivery) for tj in t])
            c = d / df_delivery * be * a / cf[loopb]
            accrued[loopb] = bond.accrued_interest / cf[loopb]
            pv[loopb] = np.exp(-0.5 * al[:, None] ** 2 - al[:, None] * x[None, :]).T @ c - accrued[loopb]
            times.append(t)
            df.append(d)
            alpha.append(al)
            beta.append(be)
            amounts.append(a)
            cfa.append(c)

        ind_min = np.argmin(pv, axis=0)
        ctd = [int(ind_min[0])]
        ref_x = []
        for i in range(1, x.shape[0]):
            if ind_min[i] != ind_min[i - 1]:
                ctd.append(int(ind_min[i]))
                ref_x.append(x[i])

        kappa = np.empty(len(ctd) - 1)
        for i in range(1, len(ctd)):
            b0, b1 = ctd[i - 1], ctd[i]

            def crossing(v, b0=b0, b1=b1):
                return (
                    np.dot(cfa[b0], np.exp(-0.5 * alpha[b0] ** 2 - alpha[b0] * v)) - accrued[b0]
                    - np.dot(cfa[b1], np.exp(-0.5 * alpha[b1] ** 2 - alpha[b1] * v)) + accrued[b1]
                )

            kappa[i - 1] = ridder_root(
                crossing,
                ref_x[i - 1] - 0.01,
                ref_x[i - 1] + 0.01,
                accuracy=self.root_accuracy,
                max_iterations=self.root_max_iterations,
                bracket_iterations=self.bracket_max_iterations,
                bracket_ratio=self.bracket_ratio,
            )
        if len(ctd) > 1:
            logger.debug("CTD switches between bonds %s at %s", ctd, kappa)

        if len(ctd) == 1:
            price = float(np.sum(cfa[ctd[0]]) - accrued[ctd[0]])
        else:
            bounds = np.concatenate(([-np.inf], kappa, [np.inf]))
            price = 0.0
            for i, b in enumerate(ctd):
                lo, hi = bounds[i], bounds[i + 1]
                price += float(np.dot(cfa[b], norm.cdf(hi + alpha[b]) - norm.cdf(lo + alpha[b])))
                price -= accrued[b] * (norm.cdf(hi) - norm.cdf(lo))

        return CheapestToDeliverState(
            price=price,
            curve_name=name,
            delivery=delivery,
            df_delivery=df_delivery,
            conversion_factors=cf,
            times=times,
            df=df,
            alpha=alpha,
            beta=beta,
            amounts=amounts,
            cfa=cfa,
            accrued=accrued,
            ctd=ctd,
            kappa=kappa,
        )

    def price(self, future, market, nb_points=None):
        return self.forward_state(future, market, nb_points).price

    def present_value(self, future, market, nb_points=None):
        """Futures price times notional."""
        return self.price(future, market, nb_points) * future.notional

    def price_curve_sensitivity(self, future, market, nb_points=None):
        return self.propagator.propagate(self.forward_state(future, market, nb_points)).curve

    def present_value_curve_sensitivity(self, future, market, nb_points=None):
        return self.price_curve_sensitivity(future, market, nb_points).multiplied_by(future.notional)
