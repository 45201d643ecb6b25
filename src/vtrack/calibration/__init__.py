"""Online stereo extrinsic self-calibration."""

from .extrinsic import ExtrinsicEstimate, rotation_to_euler, skew
from .online_calibrator import (
    CalibrationBuffer,
    CalibrationState,
    CalibrationStatus,
    OnlineStereoCalibrator,
)

__all__ = [
    "OnlineStereoCalibrator",
    "CalibrationBuffer",
    "CalibrationStatus",
    "CalibrationState",
    "ExtrinsicEstimate",
    "rotation_to_euler",
    "skew",
]
