import logging
import warnings

import QuantLib as ql


class AppConfig:
    """Central configuration object.

    Every numerical knob of the calibration and sensitivity engines lives here,
    so that two valuations run with the same configuration are reproducible.

    Parameters
    ----------
    val_date : QuantLib.Date or None
        Valuation date. Only needed when instruments are described with dates
        (``SwaptionSpec``); time-based instruments ignore it.
    calibration_tolerance : float
        Maximal absolute price residual, per unit notional, accepted for each
        instrument of an exactly determined calibration period.
    ctd_nb_points : int
        Number of points of the normal grid used to locate the cheapest-to-deliver
        switches in the bond futures engine.

    Notes
    -----
    - ``least_square_tolerance`` is the looser per-notional residual bound of
      over-determined periods (more than two strikes).
    - ``calibration_max_iterations`` bounds the number of function evaluations of
      the Levenberg-Marquardt solve of each period.
    - ``singular_condition_limit`` is the condition number above which the
      calibration Jacobian ``df/dPhi`` is considered singular.
    """

    def __init__(self, val_date=None, calibration_tolerance=1.0e-8, ctd_nb_points=81):
        self.val_date = val_date

        # ----------------
        # Calibration (LMM DD to SABR)
        # ----------------
        self.calibration_tolerance = float(calibration_tolerance)
        self.calibration_max_iterations = 200
        self.least_square_tolerance = 1.0e-4
        self.singular_condition_limit = 1.0e14

        # ----------------
        # Root finding (Ridder + bracketing)
        # ----------------
        self.root_accuracy = 1.0e-8
        self.root_max_iterations = 100
        self.bracket_max_iterations = 50
        self.bracket_ratio = 1.6

        # ----------------
        # Bond futures (Hull-White CTD)
        # ----------------
        self.ctd_nb_points = int(ctd_nb_points)

        # ----------------
        # Global flags
        # ----------------
        self.suppress_warnings = True
        self.log_level = "WARNING"

    def apply_global_settings(self):
        """Apply global settings (warnings filter, package logger, QuantLib date)."""
        if self.suppress_warnings:
            warnings.filterwarnings("ignore")
        logging.basicConfig(format="%(asctime)s %(name)s %(levelname)s %(message)s")
        logging.getLogger("calibrated_pricer").setLevel(self.log_level)
        if self.val_date is not None:
            ql.Settings.instance().evaluationDate = self.val_date
