import os
import sys

import numpy as np
import pytest

# Allow running tests without installing the package.
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from calibrated_pricer import (  # noqa: E402
    AppConfig,
    CurveProvider,
    HullWhiteMarket,
    HullWhiteParameters,
    LMMParameters,
    SABRMarket,
    SABRSurface,
    Swaption,
)

CURVE_TIMES = [0.5, 1.0, 2.0, 3.0, 5.0, 7.0, 10.0, 15.0]
CURVE_RATES = [0.0300, 0.0310, 0.0330, 0.0340, 0.0360, 0.0370, 0.0380, 0.0385]


@pytest.fixture
def cfg():
    return AppConfig()


@pytest.fixture
def curve_builder():
    """Build the test curve with the zero rate of one pillar shifted."""

    def build(node=None, shift=0.0):
        rates = list(CURVE_RATES)
        if node is not None:
            rates[node] += shift
        return CurveProvider.from_zero_rates(
            "USD-DSC", CURVE_TIMES, rates, mapping={"USD": "USD-DSC", "GOVT": "USD-DSC"}
        )

    return build


@pytest.fixture
def curves(curve_builder):
    return curve_builder()


@pytest.fixture
def node_projection():
    """Project (time, amount) zero-rate sensitivities on the pillars of the test curve.

    The curve is linear in zero rate between the pillar dates (whole days from
    the reference date); the first pillar also sets the rate at time 0.
    """
    pillars = np.array([0.0] + [int(round(t * 365.0)) / 365.0 for t in CURVE_TIMES])
    unit = np.eye(len(pillars))

    def project(sensitivity, name="USD-DSC"):
        nodes = np.zeros(len(CURVE_TIMES))
        for t, amount in sensitivity[name]:
            w = np.array([np.interp(t, pillars, e) for e in unit])
            nodes += amount * np.concatenate(([w[0] + w[1]], w[2:]))
        return nodes

    return project


@pytest.fixture
def sabr_surface():
    # Nodes at expiry 1 and tenors 1..5: the calibration basket of the 1Yx5Y
    # swaption sits exactly on them.
    return SABRSurface([1.0, 2.0], [1.0, 2.0, 3.0, 4.0, 5.0], alpha=0.05, rho=-0.25, nu=0.2, beta=0.5)


@pytest.fixture
def sabr_market(curves, sabr_surface):
    return SABRMarket(curves, sabr_surface)


@pytest.fixture
def swaption():
    return Swaption(
        expiry_time=1.0,
        settlement_time=1.0,
        fixed_payment_times=(2.0, 3.0, 4.0, 5.0, 6.0),
        fixed_accrual_factors=(1.0,) * 5,
        fixed_rates=(0.035,) * 5,
        notional=1.0e6,
        is_payer=True,
    )


@pytest.fixture
def lmm_parameters():
    ibor_times = np.linspace(1.0, 6.0, 11)
    return LMMParameters.from_angle(ibor_times, np.full(10, 0.5), 0.10, 0.06, np.pi / 4.0, 0.01)


@pytest.fixture
def hull_white_market(curves):
    return HullWhiteMarket(curves, HullWhiteParameters(0.05, [0.010, 0.012], [1.0]))


@pytest.fixture
def moneyness():
    return [-0.005, 0.005]
