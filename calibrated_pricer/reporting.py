import json
from pathlib import Path

import numpy as np
import pandas as pd


def ensure_dir(path):
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    return p


def save_results_table(results_df, output_dir):
    """Save the main results table (pv, duration, convexity) as CSV."""
    out = ensure_dir(output_dir)
    csv_path = out / "results_summary.csv"
    results_df.to_csv(csv_path, index=False)
    return csv_path


def save_sensitivity_tables(result, output_dir, prefix="swaption"):
    """Save the curve and SABR sensitivities of a ``SensitivityResult`` as CSV.

    Returns the list of written paths.
    """
    out = ensure_dir(output_dir)
    paths = []
    curve_path = out / f"{prefix}_curve_sensitivity.csv"
    result.curve.to_frame().to_csv(curve_path, index=False)
    paths.append(curve_path)
    if result.sabr is not None:
        sabr_path = out / f"{prefix}_sabr_sensitivity.csv"
        result.sabr.to_frame().to_csv(sabr_path, index=False)
        paths.append(sabr_path)
    return paths


def calibration_summary(engine):
    """JSON-ready summary of a least-square calibration engine."""
    return {
        "nb_periods": engine.nb_periods,
        "nb_strikes": engine.nb_strikes,
        "instrument_index": [int(i) for i in engine.instrument_index],
        "period_solutions": [
            {"vol_factor": f, "displacement_shift": s} for f, s in engine.period_solutions
        ],
        "volatility": np.asarray(engine.parameters.volatility).tolist(),
        "displacement": np.asarray(engine.parameters.displacement).tolist(),
    }


def save_calibration_params(calib_params, output_dir):
    """Save calibrated parameters as JSON for auditability."""
    out = ensure_dir(output_dir)
    path = out / "calibration_params.json"
    with open(path, "w", encoding="utf-8") as f:
        json.dump(calib_params, f, indent=2, sort_keys=True, default=float)
    return path


def save_config_snapshot(cfg, output_dir):
    """Persist a subset of config fields as JSON (reproducibility)."""
    out = ensure_dir(output_dir)
    path = out / "config_snapshot.json"
    d = {}
    for k, v in cfg.__dict__.items():
        # Skip non-serializable objects.
        if k == "val_date":
            d[k] = str(v)
        elif isinstance(v, (int, float, str, bool)):
            d[k] = v
    with open(path, "w", encoding="utf-8") as f:
        json.dump(d, f, indent=2, sort_keys=True)
    return path


def save_dataframe(df, output_dir, filename):
    """Save a DataFrame to CSV inside ``output_dir``."""
    out = ensure_dir(output_dir)
    p = out / filename
    df.to_csv(p, index=False)
    return p


def _save_figure(fig, output_dir, filename_png):
    import matplotlib.pyplot as plt

    fig.tight_layout()
    p = ensure_dir(Path(output_dir) / "figures") / filename_png
    fig.savefig(p, dpi=200)
    plt.close(fig)
    return p


def maybe_plot_curve_sensitivity(curve_sensitivity, output_dir, filename_png="curve_sensitivity.png"):
    """Bar chart of a ``CurveSensitivity`` (one series per curve).

    Returns None when matplotlib is not installed or the sensitivity is empty.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        return None

    df = curve_sensitivity.to_frame()
    if df.empty:
        return None

    fig, ax = plt.subplots()
    width = 0.8 / max(df["curve"].nunique(), 1)
    for i, (name, group) in enumerate(df.groupby("curve")):
        ax.bar(group["time"] + i * width, group["amount"], width=width, label=str(name))
    ax.set_xlabel("Time (years)")
    ax.set_ylabel("PV change for 1.0 zero-rate shift")
    ax.grid(True, alpha=0.3)
    ax.legend(fontsize=8)
    return _save_figure(fig, output_dir, filename_png)


def maybe_plot_sweep(df, output_dir, x_col, title, xlabel, filename_png, ylabel="PV"):
    """Line plot of a wide sweep table (``price_vs_rate_shift`` / ``price_vs_sabr_shift``).

    Parameters
    ----------
    df : pandas.DataFrame
        One shift column (``x_col``) and one PV column per scenario.
    output_dir : str|Path
        The figure is saved under ``output_dir/figures``.
    """
    try:
        import matplotlib.pyplot as plt
    except ImportError:
        return None

    fig, ax = plt.subplots()
    df.set_index(x_col).plot(ax=ax, marker="o", linewidth=1.5)
    ax.set_title(title)
    ax.set_xlabel(xlabel)
    ax.set_ylabel(ylabel)
    ax.grid(True, alpha=0.3)
    ax.legend(fontsize=8)
    return _save_figure(fig, output_dir, filename_png)


def sabr_surface_frame(surface):
    """Long table (expiry, tenor, alpha, beta, rho, nu) of a ``SABRSurface``."""
    rows = []
    for i, e in enumerate(surface.expiries):
        for j, t in enumerate(surface.tenors):
            rows.append({
                "expiry": float(e),
                "tenor": float(t),
                "alpha": float(surface.grids["alpha"][i, j]),
                "beta": surface.beta,
                "rho": float(surface.grids["rho"][i, j]),
                "nu": float(surface.grids["nu"][i, j]),
            })
    return pd.DataFrame(rows, columns=["expiry", "tenor", "alpha", "beta", "rho", "nu"])
