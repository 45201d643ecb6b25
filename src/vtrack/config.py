"""Configuration for the feature tracker, match filters and online calibration.

All components take their parameters as constructor arguments; these
dataclasses group them so a whole front-end can be configured from one
YAML file:

    tracker:
      max_cnt: 200
      min_dist: 25
    filters:
      offset_percent: 0.05
    calibration:
      rotation_threshold: 0.1
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml


@dataclass
class TrackerConfig:
    """Parameters of the optical-flow feature tracker.

    Attributes:
        max_cnt: Target number of tracked points per mono/stereo view
        min_dist: Minimum pixel distance between a new point and any tracked point
        pyr_levels: Number of pyramid levels above the base image
        win_size: Lucas-Kanade search window size (pixels, square)
        flow_back: Run reverse flow and drop points that do not return
        flow_back_max_error: Max forward-backward error (pixels) when flow_back is on
        border: Points closer than this to the image edge are dropped
        corner_quality: Quality level for corner detection
        min_prediction_success: Below this many successes a predicted flow
            is re-run without the prediction
        top_pts_cnt: Target points for a fisheye top view
        side_pts_cnt: Target points for a fisheye side strip
        enable_up_top, enable_up_side, enable_down_top, enable_down_side:
            Fisheye sub-views that are tracked
        enable_rear_side: Use 4 side views instead of 3
    """

    max_cnt: int = 150
    min_dist: float = 30.0
    pyr_levels: int = 3
    win_size: int = 21
    flow_back: bool = True
    flow_back_max_error: float = 0.5
    border: int = 1
    corner_quality: float = 0.01
    min_prediction_success: int = 10
    top_pts_cnt: int = 100
    side_pts_cnt: int = 150
    enable_up_top: bool = True
    enable_up_side: bool = True
    enable_down_top: bool = True
    enable_down_side: bool = True
    enable_rear_side: bool = False


@dataclass
class FilterConfig:
    """Parameters of the correspondence filter cascade."""

    hamming_floor: float = 40.0
    offset_percent: float = 0.05
    epipolar_tolerance: float = 0.01
    displacement_ratio: float = 1.5
    use_displacement_filter: bool = False
    use_epipolar_filter: bool = False


@dataclass
class CalibrationConfig:
    """Parameters of the online stereo extrinsic calibrator.

    Attributes:
        min_essential_points: Buffered correspondences needed to run RANSAC
        min_calibration_points: Buffered correspondences needed to accept an update
        max_buffer_size: Cap of the FIFO correspondence buffer
        rotation_threshold: Max Frobenius distance to the previous rotation
        translation_threshold: Max distance between unit translation directions
        ransac_confidence: Essential matrix RANSAC confidence
        ransac_threshold: Essential matrix RANSAC inlier threshold (pixels)
        min_parallax: Median derotated inlier disparity (pixels) below which the
            translation direction is treated as unobservable
        orb_features: ORB features per image when matching from images
    """

    min_essential_points: int = 10
    min_calibration_points: int = 50
    max_buffer_size: int = 100_000
    rotation_threshold: float = 0.1
    translation_threshold: float = 0.1
    ransac_confidence: float = 0.99
    ransac_threshold: float = 1.0
    min_parallax: float = 0.5
    orb_features: int = 1000


@dataclass
class FrontendConfig:
    """Complete front-end configuration."""

    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    filters: FilterConfig = field(default_factory=FilterConfig)
    calibration: CalibrationConfig = field(default_factory=CalibrationConfig)


def _build_section(cls: type, data: dict[str, Any] | None, name: str) -> Any:
    """Instantiate a config dataclass from a YAML mapping, rejecting unknown keys."""
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")

    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in config section '{name}': {unknown}")

    return cls(**data)


def load_config(config_path: str | Path) -> FrontendConfig:
    """Load a front-end configuration from a YAML file.

    Args:
        config_path: Path to YAML file with optional `tracker`, `filters`
            and `calibration` sections

    Returns:
        FrontendConfig with defaults for every missing section or key

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If a section is malformed or contains unknown keys
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a mapping: {config_path}")

    unknown = sorted(set(data) - {"tracker", "filters", "calibration"})
    if unknown:
        raise ValueError(f"Unknown config sections in {config_path}: {unknown}")

    return FrontendConfig(
        tracker=_build_section(TrackerConfig, data.get("tracker"), "tracker"),
        filters=_build_section(FilterConfig, data.get("filters"), "filters"),
        calibration=_build_section(
            CalibrationConfig, data.get("calibration"), "calibration"
        ),
    )
