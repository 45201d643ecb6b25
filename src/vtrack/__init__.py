"""vtrack - multi-camera feature tracking and online stereo extrinsic calibration."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .config import (
    CalibrationConfig,
    FilterConfig,
    FrontendConfig,
    TrackerConfig,
    load_config,
)
from .exceptions import MatchIndexError, VTrackError
from .frontend import (
    CameraIntrinsics,
    DistortionCoeffs,
    FeatureFrame,
    FeatureObservation,
    FeatureTrack,
    FeatureTracker,
    FilterCascade,
    FisheyeFeatureTracker,
    FisheyeSubviewCamera,
    Matches,
    MonoFeatureTracker,
    OpenCVBackend,
    PinholeCamera,
    StereoFeatureTracker,
    StereoMatcher,
    TrackState,
    VisionBackend,
    create_tracker,
)
from .calibration import (
    CalibrationBuffer,
    CalibrationState,
    CalibrationStatus,
    ExtrinsicEstimate,
    OnlineStereoCalibrator,
)

__all__ = [
    "__version__",
    # Configuration
    "TrackerConfig",
    "FilterConfig",
    "CalibrationConfig",
    "FrontendConfig",
    "load_config",
    # Errors
    "VTrackError",
    "MatchIndexError",
    # Cameras
    "PinholeCamera",
    "CameraIntrinsics",
    "DistortionCoeffs",
    "FisheyeSubviewCamera",
    # Tracking
    "FeatureTracker",
    "MonoFeatureTracker",
    "StereoFeatureTracker",
    "FisheyeFeatureTracker",
    "create_tracker",
    "TrackState",
    "FeatureTrack",
    "FeatureFrame",
    "FeatureObservation",
    # Matching
    "Matches",
    "FilterCascade",
    "StereoMatcher",
    # Vision primitives
    "VisionBackend",
    "OpenCVBackend",
    # Calibration
    "OnlineStereoCalibrator",
    "ExtrinsicEstimate",
    "CalibrationBuffer",
    "CalibrationStatus",
    "CalibrationState",
]
