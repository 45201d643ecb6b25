"""Frontend components: vision primitives, cameras, matching and tracking.

- VisionBackend / OpenCVBackend: pyramids, optical flow, corners, ORB, RANSAC
- PinholeCamera / FisheyeSubviewCamera: pixel to ray undistortion
- Matches / filters / StereoMatcher: two-view correspondence search
- Mono / Stereo / Fisheye feature trackers built on TrackState
"""

from .backend import ImagePyramid, OpenCVBackend, VisionBackend
from .camera_model import CameraIntrinsics, CameraModel, DistortionCoeffs, PinholeCamera
from .correspondence import DescriptorMatch, Matches
from .feature_detector import FeatureDetector, Features
from .feature_tracker import (
    FeatureTracker,
    MonoFeatureTracker,
    StereoFeatureTracker,
    TrackingCore,
    filter_new_points,
)
from .filters import (
    FilterCascade,
    filter_by_descriptor_distance,
    filter_by_displacement,
    filter_by_epipolar,
    filter_by_offset,
    filter_by_x,
    filter_by_y,
)
from .fisheye import FisheyeSubviewCamera, concat_side
from .fisheye_tracker import FisheyeFeatureTracker
from .stereo_matcher import StereoMatcher
from .track_state import (
    FeatureFrame,
    FeatureObservation,
    FeatureTrack,
    IdAllocator,
    TrackerTiming,
    TrackState,
    TrackStatus,
)
from .tracker_factory import create_tracker
from .velocity import ray_velocities

__all__ = [
    # Vision primitives
    "VisionBackend",
    "OpenCVBackend",
    "ImagePyramid",
    "FeatureDetector",
    "Features",
    # Cameras
    "CameraModel",
    "PinholeCamera",
    "CameraIntrinsics",
    "DistortionCoeffs",
    "FisheyeSubviewCamera",
    "concat_side",
    # Correspondences
    "DescriptorMatch",
    "Matches",
    "StereoMatcher",
    "FilterCascade",
    "filter_by_descriptor_distance",
    "filter_by_offset",
    "filter_by_x",
    "filter_by_y",
    "filter_by_displacement",
    "filter_by_epipolar",
    # Tracking
    "FeatureTracker",
    "MonoFeatureTracker",
    "StereoFeatureTracker",
    "FisheyeFeatureTracker",
    "TrackingCore",
    "create_tracker",
    "filter_new_points",
    "TrackState",
    "TrackStatus",
    "FeatureTrack",
    "IdAllocator",
    "FeatureFrame",
    "FeatureObservation",
    "TrackerTiming",
    "ray_velocities",
]
