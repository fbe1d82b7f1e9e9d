import json

import pandas as pd
import pytest

from calibrated_pricer import (
    AppConfig,
    CurveSensitivity,
    SABRSensitivity,
    SensitivityResult,
    SuccessiveLeastSquareLMMDDCalibrationEngine,
    SwaptionBasketBuilder,
)
from calibrated_pricer.engines.sabr import SABRSwaptionEngine
from calibrated_pricer.reporting import (
    calibration_summary,
    maybe_plot_curve_sensitivity,
    maybe_plot_sweep,
    save_calibration_params,
    save_config_snapshot,
    save_sensitivity_tables,
    sabr_surface_frame,
)


def test_save_sensitivity_tables(tmp_path):
    sabr = SABRSensitivity()
    sabr.add_alpha((1.0, 2.0), 3.0)
    result = SensitivityResult(10.0, CurveSensitivity.of("USD", [1.0, 2.0], [-1.0, -2.0]), sabr)
    paths = save_sensitivity_tables(result, tmp_path, prefix="x")
    assert [p.name for p in paths] == ["x_curve_sensitivity.csv", "x_sabr_sensitivity.csv"]
    curve = pd.read_csv(paths[0])
    assert curve["amount"].sum() == -3.0

    no_sabr = SensitivityResult(1.0, CurveSensitivity())
    assert len(save_sensitivity_tables(no_sabr, tmp_path / "y")) == 1


def test_calibration_summary_is_json_serialisable(tmp_path, swaption, lmm_parameters, moneyness, sabr_market):
    engine = SuccessiveLeastSquareLMMDDCalibrationEngine(lmm_parameters, 2)
    engine.add_instrument(
        SwaptionBasketBuilder.calibration_basket_fixed_leg_period(swaption, moneyness), SABRSwaptionEngine()
    )
    engine.calibrate(sabr_market)
    path = save_calibration_params(calibration_summary(engine), tmp_path)
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["nb_periods"] == 5
    assert len(data["period_solutions"]) == 5
    assert len(data["volatility"]) == 10


def test_config_snapshot(tmp_path):
    cfg = AppConfig(calibration_tolerance=1e-9)
    path = save_config_snapshot(cfg, tmp_path)
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    assert data["calibration_tolerance"] == 1e-9
    assert data["ctd_nb_points"] == 81
    assert data["val_date"] == "None"


def test_sabr_surface_frame(sabr_surface):
    df = sabr_surface_frame(sabr_surface)
    assert len(df) == 10
    assert list(df.columns) == ["expiry", "tenor", "alpha", "beta", "rho", "nu"]


def test_plots_written_when_matplotlib_available(tmp_path):
    pytest.importorskip("matplotlib")
    sweep = pd.DataFrame({"rate_shift_bps": [-10, 0, 10], "a": [1.0, 0.9, 0.8], "b": [2.0, 2.1, 2.2]})
    p = maybe_plot_sweep(sweep, tmp_path, "rate_shift_bps", "t", "x", "sweep.png")
    assert p.exists()
    p = maybe_plot_curve_sensitivity(CurveSensitivity.of("USD", [1.0, 2.0], [-1.0, -2.0]), tmp_path)
    assert p.name == "curve_sensitivity.png"
    assert maybe_plot_curve_sensitivity(CurveSensitivity(), tmp_path) is None
