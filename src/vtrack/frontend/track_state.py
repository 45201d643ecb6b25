"""Per-view tracking state and the per-frame feature output.

A `TrackState` owns everything one image stream needs between frames:
pixel positions, feature ids, track ages, undistorted rays and the
image pyramid of the last frame. Trackers hold one per sub-view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .backend import ImagePyramid


class TrackStatus(Enum):
    """Status of a feature track."""

    ACTIVE = "ACTIVE"
    REMOVED = "REMOVED"


@dataclass
class FeatureTrack:
    """Snapshot of one tracked feature in one view.

    Attributes:
        feature_id: Unique id, never reused
        pixel: (2,) pixel position in the current frame
        undistorted_ray: (3,) viewing ray
        track_age: Consecutive frames the feature has been propagated
        status: ACTIVE while tracked; trackers report REMOVED through
            `track_status` once the id is lost or dropped
    """

    feature_id: int
    pixel: np.ndarray
    undistorted_ray: np.ndarray
    track_age: int
    status: TrackStatus = TrackStatus.ACTIVE


class IdAllocator:
    """Hands out monotonically increasing feature ids."""

    def __init__(self, start: int = 0) -> None:
        self._next_id = start

    def allocate(self, count: int) -> list[int]:
        """Return `count` fresh ids."""
        ids = list(range(self._next_id, self._next_id + count))
        self._next_id += count
        return ids

    @property
    def next_id(self) -> int:
        return self._next_id


@dataclass
class TrackState:
    """Tracking state of one camera sub-view.

    Attributes:
        name: View identifier (e.g. "left", "up_side")
        camera_id: Camera index reported in feature frames
        ids: Feature ids of the current points
        cur_pts: Nx2 current pixel positions
        track_cnt: N track ages
        cur_rays: Nx3 undistorted rays of the current points
        velocities: Nx3 ray velocities of the current points
        prev_ray_map: id -> ray of the previous frame
        prev_pyr: Pyramid of the previous frame
    """

    name: str
    camera_id: int = 0
    ids: list[int] = field(default_factory=list)
    cur_pts: np.ndarray = field(default_factory=lambda: np.empty((0, 2), dtype=np.float32))
    track_cnt: list[int] = field(default_factory=list)
    cur_rays: np.ndarray = field(default_factory=lambda: np.empty((0, 3), dtype=np.float64))
    velocities: np.ndarray = field(default_factory=lambda: np.empty((0, 3), dtype=np.float64))
    prev_ray_map: dict[int, np.ndarray] = field(default_factory=dict)
    prev_pyr: ImagePyramid | None = None

    def __len__(self) -> int:
        """Return number of active points."""
        return len(self.ids)

    def keep(self, mask: np.ndarray) -> None:
        """Keep only the points selected by a boolean mask."""
        mask = np.asarray(mask, dtype=bool)
        if len(mask) != len(self.ids):
            raise ValueError(f"Mask has {len(mask)} entries for {len(self.ids)} points")

        self.ids = [i for i, keep in zip(self.ids, mask) if keep]
        self.track_cnt = [c for c, keep in zip(self.track_cnt, mask) if keep]
        self.cur_pts = self.cur_pts[mask]

    def add_points(self, points: np.ndarray, ids: list[int]) -> None:
        """Append newly detected points with age zero."""
        points = np.asarray(points, dtype=np.float32).reshape(-1, 2)
        if len(points) != len(ids):
            raise ValueError(f"Got {len(ids)} ids for {len(points)} points")

        self.cur_pts = np.vstack([self.cur_pts, points])
        self.ids.extend(ids)
        self.track_cnt.extend([0] * len(ids))

    def pts_map(self) -> dict[int, np.ndarray]:
        """Return id -> current pixel mapping."""
        return {feature_id: pt for feature_id, pt in zip(self.ids, self.cur_pts)}

    def tracks(self) -> list[FeatureTrack]:
        """Return a snapshot of every active track."""
        rays = self.cur_rays if len(self.cur_rays) == len(self.ids) else None
        return [
            FeatureTrack(
                feature_id=feature_id,
                pixel=self.cur_pts[i].copy(),
                undistorted_ray=(
                    rays[i].copy() if rays is not None else np.full(3, np.nan)
                ),
                track_age=self.track_cnt[i],
            )
            for i, feature_id in enumerate(self.ids)
        ]

    def clear(self) -> None:
        """Drop every point and the previous frame."""
        self.ids = []
        self.track_cnt = []
        self.cur_pts = np.empty((0, 2), dtype=np.float32)
        self.cur_rays = np.empty((0, 3), dtype=np.float64)
        self.velocities = np.empty((0, 3), dtype=np.float64)
        self.prev_ray_map = {}
        self.prev_pyr = None


@dataclass
class FeatureObservation:
    """One view's observation of a feature in a feature frame."""

    camera_id: int
    pixel: np.ndarray  # (2,)
    undistorted_ray: np.ndarray  # (3,)
    velocity: np.ndarray  # (3,)

    def to_vector(self) -> np.ndarray:
        """Return (x, y, z, u, v, vx, vy, vz)."""
        return np.concatenate(
            [
                np.asarray(self.undistorted_ray, dtype=np.float64),
                np.asarray(self.pixel, dtype=np.float64),
                np.asarray(self.velocity, dtype=np.float64),
            ]
        )


@dataclass
class TrackerTiming:
    """Timing breakdown for a single frame."""

    flow_ms: float = 0.0
    detect_ms: float = 0.0
    undistort_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class FeatureFrame:
    """Tracker output for one frame.

    Attributes:
        timestamp: Frame time (seconds)
        features: feature id -> observations, one per view the id is visible in
        timing: Per-stage timings
    """

    timestamp: float
    features: dict[int, list[FeatureObservation]] = field(default_factory=dict)
    timing: TrackerTiming = field(default_factory=TrackerTiming)

    def add_view(self, state: TrackState) -> None:
        """Add every point of a view to the frame."""
        for i, feature_id in enumerate(state.ids):
            self.features.setdefault(feature_id, []).append(
                FeatureObservation(
                    camera_id=state.camera_id,
                    pixel=state.cur_pts[i].astype(np.float64),
                    undistorted_ray=state.cur_rays[i],
                    velocity=state.velocities[i],
                )
            )

    def __len__(self) -> int:
        """Return number of distinct features."""
        return len(self.features)

    def __contains__(self, feature_id: int) -> bool:
        return feature_id in self.features

    def __getitem__(self, feature_id: int) -> list[FeatureObservation]:
        return self.features[feature_id]

    def ids(self) -> list[int]:
        """Return feature ids in increasing order."""
        return sorted(self.features)

    def num_observations(self, camera_id: int | None = None) -> int:
        """Count observations, optionally for one camera only."""
        return sum(
            1
            for observations in self.features.values()
            for obs in observations
            if camera_id is None or obs.camera_id == camera_id
        )
