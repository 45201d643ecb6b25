"""Construction of the tracker variant for a camera setup."""

from __future__ import annotations

from ..config import TrackerConfig
from .backend import VisionBackend
from .camera_model import CameraModel
from .feature_tracker import FeatureTracker, MonoFeatureTracker, StereoFeatureTracker
from .fisheye import FisheyeSubviewCamera
from .fisheye_tracker import FisheyeFeatureTracker


def create_tracker(
    kind: str,
    cameras: list[CameraModel] | list[FisheyeSubviewCamera],
    config: TrackerConfig | None = None,
    backend: VisionBackend | None = None,
) -> FeatureTracker:
    """Create a tracker for a camera setup.

    Args:
        kind: "mono", "stereo" or "fisheye"
        cameras: One camera for mono; one or two for stereo (left, right);
            two fisheye sub-view cameras (up, down) for fisheye
        config: Tracker parameters
        backend: Vision primitives; OpenCV if None

    Raises:
        ValueError: On an unknown kind or a wrong number of cameras
    """
    if kind == "mono":
        if len(cameras) != 1:
            raise ValueError(f"Mono tracker needs 1 camera, got {len(cameras)}")
        return MonoFeatureTracker(cameras[0], config, backend)

    if kind == "stereo":
        if len(cameras) not in (1, 2):
            raise ValueError(f"Stereo tracker needs 1 or 2 cameras, got {len(cameras)}")
        right = cameras[1] if len(cameras) == 2 else None
        return StereoFeatureTracker(cameras[0], right, config, backend)

    if kind == "fisheye":
        if len(cameras) != 2:
            raise ValueError(f"Fisheye tracker needs up and down cameras, got {len(cameras)}")
        return FisheyeFeatureTracker(cameras[0], cameras[1], config, backend)

    raise ValueError(f"Unknown tracker kind: {kind!r}")
