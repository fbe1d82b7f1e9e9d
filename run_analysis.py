from datetime import date
from pathlib import Path

import numpy as np
import pandas as pd
import QuantLib as ql

from calibrated_pricer.config import AppConfig
from calibrated_pricer.instruments import BondFuture, FixedBond, SwaptionSpec
from calibrated_pricer.market import CurveProvider, HullWhiteMarket, MarketLoader, SABRMarket
from calibrated_pricer.models import HullWhiteParameters, LMMParameters
from calibrated_pricer.pricer import BondFuturesHullWhitePricer, SwaptionSABRLMMPricer
from calibrated_pricer.reporting import (
    calibration_summary,
    maybe_plot_curve_sensitivity,
    maybe_plot_sweep,
    save_calibration_params,
    save_config_snapshot,
    save_dataframe,
    save_results_table,
    save_sensitivity_tables,
)
from calibrated_pricer.sensitivity import price_vs_rate_shift, price_vs_sabr_shift


def conversion_factor(coupon_rate, nb_years, notional_yield=0.06):
    """Exchange-style conversion factor: price at ``notional_yield`` of an annual bond per unit notional."""
    v = (1.0 + notional_yield) ** -nb_years
    return coupon_rate / notional_yield * (1.0 - v) + v


def main():
    # -------------------------------------------------------------------------
    # 0. Inputs
    # -------------------------------------------------------------------------
    val_date = ql.Date(10, 9, 2025)
    cfg = AppConfig(val_date)
    cfg.apply_global_settings()

    project_root = Path(__file__).resolve().parent
    data_dir = project_root / "data"
    out_dir = project_root / "outputs"

    curve_csv = data_dir / "usd_curve.csv"
    sabr_csv = data_dir / "sabr_surface.csv"

    # -------------------------------------------------------------------------
    # 1. Load market data
    # -------------------------------------------------------------------------
    print("--- 1. Market data ---")
    loader = MarketLoader(cfg)
    curve = loader.load_curve(str(curve_csv))
    sabr = loader.load_sabr_surface(str(sabr_csv))
    curves = CurveProvider({"USD-DSC": curve}, {"USD": "USD-DSC", "UST": "USD-DSC"})
    sabr_market = SABRMarket(curves, sabr)
    print(f"Curve pillars: {len(curve.dates())}, SABR grid: {sabr.expiries.size} x {sabr.tenors.size}")

    # -------------------------------------------------------------------------
    # 2. Swaption: LMM calibrated to SABR
    # -------------------------------------------------------------------------
    print("--- 2. Swaption (LMM DD calibrated to SABR) ---")
    spec = SwaptionSpec(expiry_date=date(2026, 9, 10), tenor="5Y", fixed_rate=0.036, notional=1.0e6)
    swaption = spec.to_derivative(val_date)
    ibor_times, ibor_accruals = spec.ibor_grid(val_date)
    seed = LMMParameters.from_angle(ibor_times, ibor_accruals, 0.10, 0.06, np.pi / 4.0, 0.01)

    swaption_pricer = SwaptionSABRLMMPricer([-0.005, 0.005], seed, cfg)
    engine = swaption_pricer.calibrate(swaption, sabr_market)
    result = swaption_pricer.present_value_and_sensitivity(swaption, sabr_market)
    sabr_pv = swaption_pricer.reference_pricer.price(swaption, sabr_market)
    print(f"PV LMM = {result.present_value:,.2f}  (SABR direct: {sabr_pv:,.2f})")
    print(result.sabr.to_frame().to_string(index=False))
    print(f"Parallel curve sensitivity (per 1bp): {result.curve.total() * 1.0e-4:,.2f}")

    # -------------------------------------------------------------------------
    # 3. Bond futures: Hull-White with cheapest-to-deliver
    # -------------------------------------------------------------------------
    print("--- 3. Bond futures (Hull-White CTD) ---")
    hw_market = HullWhiteMarket(curves, HullWhiteParameters(0.05, [0.010, 0.012], [2.0]))
    basket = []
    factors = []
    for coupon, nb_years in [(0.0300, 5), (0.0350, 6), (0.0400, 7)]:
        times = [0.5 + k for k in range(1, nb_years + 1)]
        basket.append(FixedBond.bullet(coupon, times, accrued_interest=0.5 * coupon, issuer="UST"))
        factors.append(conversion_factor(coupon, nb_years))
    future = BondFuture(0.45, 0.5, basket, factors, notional=100000.0)

    future_pricer = BondFuturesHullWhitePricer(cfg)
    state = future_pricer.engine.forward_state(future, hw_market)
    print(f"Futures price = {state.price:.6f}, CTD by interval: {state.ctd}, crossings: {np.round(state.kappa, 4)}")
    future_result = future_pricer.present_value_and_sensitivity(future, hw_market)

    # -------------------------------------------------------------------------
    # 4. Price + risk metrics
    # -------------------------------------------------------------------------
    print(f"\n{'INSTRUMENT':<25} | {'PV':<14} | {'DUR':<10} | {'CONV':<10}")
    print("-" * 69)
    results = []
    for label, pricer, instrument, market in [
        ("Swaption 1Yx5Y (LMM)", swaption_pricer, swaption, sabr_market),
        ("Bond future (HW CTD)", future_pricer, future, hw_market),
    ]:
        pv, dur, conv = pricer.metrics(instrument, market, bump_bps=1.0)
        print(f"{label:<25} | {pv:<14.4f} | {dur:<10.4f} | {conv:<10.4f}")
        results.append({"instrument": label, "pv": pv, "duration": dur, "convexity": conv})
    results_df = pd.DataFrame(results)

    # -------------------------------------------------------------------------
    # 5. Outputs (CSV + figures)
    # -------------------------------------------------------------------------
    save_results_table(results_df, out_dir)
    save_calibration_params(calibration_summary(engine), out_dir)
    save_config_snapshot(cfg, out_dir)
    save_sensitivity_tables(result, out_dir, prefix="swaption")
    save_sensitivity_tables(future_result, out_dir, prefix="bond_future")
    maybe_plot_curve_sensitivity(result.curve, out_dir, "swaption_curve_sensitivity.png")
    maybe_plot_curve_sensitivity(future_result.curve, out_dir, "bond_future_curve_sensitivity.png")

    # 5.1 Price vs interest rates (parallel shift)
    rate_shifts_bps = [-100, -50, -25, 0, 25, 50, 100]
    df_rate = price_vs_rate_shift([("Swaption (LMM)", swaption_pricer, swaption)], sabr_market, rate_shifts_bps)
    df_rate["Bond future (HW CTD)"] = price_vs_rate_shift(
        [("Bond future (HW CTD)", future_pricer, future)], hw_market, rate_shifts_bps
    )["Bond future (HW CTD)"]
    save_dataframe(df_rate, out_dir, "sensitivity_price_vs_rate_shift.csv")
    maybe_plot_sweep(
        df_rate,
        out_dir,
        x_col="rate_shift_bps",
        title="PV sensitivity vs interest rate (parallel shift)",
        xlabel="Parallel shift (bps)",
        filename_png="price_vs_rate_shift.png",
    )

    # 5.2 Price vs SABR alpha (parallel shift on the whole surface)
    alpha_shifts = [-0.004, -0.002, 0.0, 0.002, 0.004]
    scenarios = [
        ("Swaption (LMM)", swaption_pricer, swaption),
        ("Swaption (SABR)", swaption_pricer.reference_pricer, swaption),
    ]
    df_alpha = price_vs_sabr_shift(scenarios, sabr_market, "alpha", alpha_shifts)
    save_dataframe(df_alpha, out_dir, "sensitivity_price_vs_sabr_alpha.csv")
    maybe_plot_sweep(
        df_alpha,
        out_dir,
        x_col="alpha_shift",
        title="PV sensitivity vs SABR alpha (parallel shift)",
        xlabel="Alpha shift",
        filename_png="price_vs_sabr_alpha.png",
    )

    print(f"\nOutputs written to: {out_dir}")


if __name__ == "__main__":
    main()
