"""Optical-flow feature tracking for mono and stereo cameras.

Each frame every view goes through the same stages:

1. Propagate: track last frame's points into the new image (optionally
   seeded by predicted positions) and drop the ones that fail.
2. Redetect: when a view has fallen below 3/4 of its target, detect new
   corners away from the surviving points and give them fresh ids.
3. Undistort: map every pixel to a viewing ray.
4. Velocity: ray velocity against the previous frame.

Secondary views of a stereo rig are not detected independently: they are
seeded with the primary view's points so ids stay shared across views.
"""

from __future__ import annotations

import logging
import time
from typing import Mapping, Protocol

import numpy as np
from scipy.spatial import cKDTree

from ..config import TrackerConfig
from .backend import ImagePyramid, OpenCVBackend, VisionBackend
from .camera_model import CameraModel
from .track_state import FeatureFrame, IdAllocator, TrackState, TrackStatus, TrackerTiming
from .velocity import ray_map, ray_velocities

logger = logging.getLogger(__name__)


class FeatureTracker(Protocol):
    """Interface shared by the mono, stereo and fisheye trackers."""

    def track_frame(self, timestamp: float, *images: np.ndarray) -> FeatureFrame: ...

    def remove_outliers(self, feature_ids: set[int]) -> None: ...

    def detect_points(self, state: TrackState, image: np.ndarray, require_pts: int) -> np.ndarray: ...

    def set_prediction(self, predictions: Mapping[int, np.ndarray]) -> None: ...

    def reset(self) -> None: ...

    @property
    def removed_ids(self) -> frozenset[int]: ...


def in_border(points: np.ndarray, shape: tuple[int, int], border: int) -> np.ndarray:
    """Return a mask of points at least `border` pixels inside an image of (height, width)."""
    height, width = shape
    rounded = np.round(np.asarray(points, dtype=np.float64).reshape(-1, 2))
    x, y = rounded[:, 0], rounded[:, 1]
    return (x >= border) & (x < width - border) & (y >= border) & (y < height - border)


def filter_new_points(
    candidates: np.ndarray, existing: np.ndarray, min_dist: float
) -> np.ndarray:
    """Drop candidates within `min_dist` pixels of any existing point.

    Args:
        candidates: Mx2 newly detected corners
        existing: Nx2 currently tracked points
        min_dist: Minimum allowed distance (pixels)

    Returns:
        Kx2 candidates strictly farther than `min_dist` from every existing point
    """
    candidates = np.asarray(candidates, dtype=np.float32).reshape(-1, 2)
    existing = np.asarray(existing, dtype=np.float32).reshape(-1, 2)
    if len(candidates) == 0 or len(existing) == 0:
        return candidates

    tree = cKDTree(existing)
    distances, _ = tree.query(candidates, k=1)
    return candidates[distances > min_dist]


class TrackingCore:
    """Stages shared by every tracker variant.

    Owns the vision backend, the id allocator and the pending prediction;
    operates on `TrackState` objects owned by the variant.
    """

    def __init__(
        self,
        config: TrackerConfig | None = None,
        backend: VisionBackend | None = None,
    ) -> None:
        self.config = config or TrackerConfig()
        self.backend = backend or OpenCVBackend(
            win_size=self.config.win_size, corner_quality=self.config.corner_quality
        )
        self.id_allocator = IdAllocator()
        self.removed_ids: set[int] = set()
        self.prediction: dict[int, np.ndarray] = {}
        self.prev_time: float | None = None

    def build_pyramid(self, image: np.ndarray) -> ImagePyramid:
        return self.backend.build_pyramid(image, self.config.pyr_levels)

    def _flow(
        self,
        curr_pyr: ImagePyramid,
        prev_pyr: ImagePyramid,
        prev_pts: np.ndarray,
        predicted: np.ndarray | None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Forward flow, prediction fallback, flow-back check and border check."""
        cfg = self.config
        new_pts, status = self.backend.optical_flow(curr_pyr, prev_pyr, prev_pts, predicted)

        if predicted is not None and int(np.sum(status)) < cfg.min_prediction_success:
            logger.debug("Predicted flow tracked %d points, retrying without prediction",
                         int(np.sum(status)))
            new_pts, status = self.backend.optical_flow(curr_pyr, prev_pyr, prev_pts)

        status = np.asarray(status, dtype=bool).copy()
        if cfg.flow_back and np.any(status):
            back_pts, back_status = self.backend.optical_flow(
                prev_pyr, curr_pyr, new_pts, prev_pts
            )
            error = np.linalg.norm(np.asarray(back_pts) - np.asarray(prev_pts), axis=1)
            status &= np.asarray(back_status, dtype=bool) & (error <= cfg.flow_back_max_error)

        status &= in_border(new_pts, curr_pyr.shape, cfg.border)
        return np.asarray(new_pts, dtype=np.float32).reshape(-1, 2), status

    def propagate(self, state: TrackState, curr_pyr: ImagePyramid) -> None:
        """Track a view's points from its previous pyramid into `curr_pyr`.

        Points that fail are dropped and their ids marked removed; survivors
        age by one frame.
        """
        if state.prev_pyr is None or len(state) == 0:
            return

        predicted = None
        if self.prediction and any(i in self.prediction for i in state.ids):
            predicted = np.array(
                [
                    self.prediction.get(i, pt)
                    for i, pt in zip(state.ids, state.cur_pts)
                ],
                dtype=np.float32,
            ).reshape(-1, 2)

        new_pts, status = self._flow(curr_pyr, state.prev_pyr, state.cur_pts, predicted)
        state.cur_pts = new_pts
        lost = [i for i, ok in zip(state.ids, status) if not ok]
        if lost:
            logger.debug("Lost %d tracks in %s", len(lost), state.name)
            self.removed_ids.update(lost)
        state.keep(status)
        state.track_cnt = [c + 1 for c in state.track_cnt]

    def cross_track(
        self,
        source: TrackState,
        source_pyr: ImagePyramid,
        target: TrackState,
        target_pyr: ImagePyramid,
    ) -> None:
        """Seed `target` with `source`'s points tracked into the paired image.

        Ids and ages are copied from the source, so a feature keeps one id
        in every view it is visible in.
        """
        target.ids = []
        target.track_cnt = []
        target.cur_pts = np.empty((0, 2), dtype=np.float32)
        if len(source) == 0:
            return

        new_pts, status = self._flow(target_pyr, source_pyr, source.cur_pts, None)
        target.ids = list(source.ids)
        target.track_cnt = list(source.track_cnt)
        target.cur_pts = new_pts
        target.keep(status)

    def detect_points(
        self, state: TrackState, image: np.ndarray, require_pts: int
    ) -> np.ndarray:
        """Detect new corners for a view that has fallen below 3/4 of its target.

        Returns:
            Kx2 new points, at most `require_pts - len(state)`, each farther
            than `min_dist` from every tracked point of the view
        """
        lack = require_pts - len(state)
        if lack <= require_pts // 4:
            return np.empty((0, 2), dtype=np.float32)

        candidates = self.backend.detect_corners(image, None, lack, self.config.min_dist)
        return filter_new_points(candidates, state.cur_pts, self.config.min_dist)[:lack]

    def add_points(self, state: TrackState, points: np.ndarray) -> None:
        """Give new points fresh ids and append them to a view."""
        if len(points) == 0:
            return
        state.add_points(points, self.id_allocator.allocate(len(points)))

    def undistort(self, state: TrackState, camera: CameraModel, dt: float) -> None:
        """Compute rays and ray velocities of a view."""
        if len(state) == 0:
            state.cur_rays = np.empty((0, 3), dtype=np.float64)
        else:
            state.cur_rays = np.asarray(camera.undistort(state.cur_pts), dtype=np.float64)
        state.velocities = ray_velocities(state.ids, state.cur_rays, state.prev_ray_map, dt)

    def finish_view(self, state: TrackState, pyr: ImagePyramid) -> None:
        """Make the current frame the previous one for a view."""
        state.prev_ray_map = ray_map(state.ids, state.cur_rays)
        state.prev_pyr = pyr

    def time_delta(self, timestamp: float) -> float:
        if self.prev_time is None:
            return 0.0
        return timestamp - self.prev_time

    def remove(self, states: list[TrackState], feature_ids: set[int]) -> None:
        """Drop features from every view and remember them as removed."""
        feature_ids = {int(i) for i in feature_ids}
        self.removed_ids |= feature_ids
        for state in states:
            if len(state) > 0:
                state.keep(np.array([i not in feature_ids for i in state.ids], dtype=bool))

    def track_status(self, feature_id: int) -> TrackStatus:
        """Return REMOVED for ids dropped by flow failure or outlier removal."""
        if feature_id in self.removed_ids:
            return TrackStatus.REMOVED
        return TrackStatus.ACTIVE

    def set_prediction(self, predictions: Mapping[int, np.ndarray]) -> None:
        self.prediction = {
            int(i): np.asarray(p, dtype=np.float32).reshape(2) for i, p in predictions.items()
        }

    def end_frame(self, timestamp: float) -> None:
        self.prev_time = timestamp
        self.prediction = {}

    def reset(self, states: list[TrackState]) -> None:
        """Clear all views; ids keep increasing."""
        for state in states:
            state.clear()
        self.prev_time = None
        self.prediction = {}


def _ms(t0: float) -> float:
    return (time.perf_counter() - t0) * 1000


class MonoFeatureTracker:
    """Tracks features in a single camera."""

    def __init__(
        self,
        camera: CameraModel,
        config: TrackerConfig | None = None,
        backend: VisionBackend | None = None,
    ) -> None:
        self._core = TrackingCore(config, backend)
        self._camera = camera
        self._state = TrackState(name="left", camera_id=0)

    def track_frame(self, timestamp: float, *images: np.ndarray) -> FeatureFrame:
        """Track one image.

        Args:
            timestamp: Frame time (seconds)
            images: Exactly one image

        Returns:
            FeatureFrame with one observation per tracked feature
        """
        if len(images) != 1:
            raise ValueError(f"Mono tracker expects 1 image, got {len(images)}")

        core = self._core
        timing = TrackerTiming()
        t_start = time.perf_counter()
        dt = core.time_delta(timestamp)

        t0 = time.perf_counter()
        pyr = core.build_pyramid(images[0])
        core.propagate(self._state, pyr)
        timing.flow_ms = _ms(t0)

        t0 = time.perf_counter()
        core.add_points(self._state, self.detect_points(self._state, pyr.image, core.config.max_cnt))
        timing.detect_ms = _ms(t0)

        t0 = time.perf_counter()
        core.undistort(self._state, self._camera, dt)
        timing.undistort_ms = _ms(t0)

        core.finish_view(self._state, pyr)
        core.end_frame(timestamp)

        frame = FeatureFrame(timestamp=timestamp, timing=timing)
        frame.add_view(self._state)
        timing.total_ms = _ms(t_start)
        logger.debug("Mono frame %.3f: %d pts in %.1fms", timestamp, len(self._state), timing.total_ms)
        return frame

    def detect_points(self, state: TrackState, image: np.ndarray, require_pts: int) -> np.ndarray:
        return self._core.detect_points(state, image, require_pts)

    def remove_outliers(self, feature_ids: set[int]) -> None:
        self._core.remove([self._state], feature_ids)

    def set_prediction(self, predictions: Mapping[int, np.ndarray]) -> None:
        self._core.set_prediction(predictions)

    def reset(self) -> None:
        self._core.reset([self._state])

    @property
    def state(self) -> TrackState:
        return self._state

    @property
    def next_id(self) -> int:
        return self._core.id_allocator.next_id

    @property
    def removed_ids(self) -> frozenset[int]:
        """Ids lost to flow failure or dropped as outliers."""
        return frozenset(self._core.removed_ids)

    def track_status(self, feature_id: int) -> TrackStatus:
        return self._core.track_status(feature_id)



class StereoFeatureTracker:
    """Tracks features in the left camera and links them into the right camera.

    Only the left view detects new points. The right view is rebuilt every
    frame by tracking the left points across the stereo pair.
    """

    def __init__(
        self,
        camera_left: CameraModel,
        camera_right: CameraModel | None = None,
        config: TrackerConfig | None = None,
        backend: VisionBackend | None = None,
    ) -> None:
        self._core = TrackingCore(config, backend)
        self._camera_left = camera_left
        self._camera_right = camera_right or camera_left
        self._left = TrackState(name="left", camera_id=0)
        self._right = TrackState(name="right", camera_id=1)

    def track_frame(self, timestamp: float, *images: np.ndarray) -> FeatureFrame:
        """Track a stereo pair.

        Args:
            timestamp: Frame time (seconds)
            images: Left image and, optionally, right image. Without a
                right image only the left view is reported.
        """
        if len(images) not in (1, 2):
            raise ValueError(f"Stereo tracker expects 1 or 2 images, got {len(images)}")

        core = self._core
        timing = TrackerTiming()
        t_start = time.perf_counter()
        dt = core.time_delta(timestamp)

        t0 = time.perf_counter()
        left_pyr = core.build_pyramid(images[0])
        core.propagate(self._left, left_pyr)
        timing.flow_ms = _ms(t0)

        t0 = time.perf_counter()
        core.add_points(self._left, self.detect_points(self._left, left_pyr.image, core.config.max_cnt))
        timing.detect_ms = _ms(t0)

        right_pyr = None
        if len(images) == 2 and images[1] is not None:
            t0 = time.perf_counter()
            right_pyr = core.build_pyramid(images[1])
            core.cross_track(self._left, left_pyr, self._right, right_pyr)
            timing.flow_ms += _ms(t0)
        else:
            self._right.clear()

        t0 = time.perf_counter()
        core.undistort(self._left, self._camera_left, dt)
        core.finish_view(self._left, left_pyr)
        if right_pyr is not None:
            core.undistort(self._right, self._camera_right, dt)
            core.finish_view(self._right, right_pyr)
        timing.undistort_ms = _ms(t0)

        core.end_frame(timestamp)

        frame = FeatureFrame(timestamp=timestamp, timing=timing)
        frame.add_view(self._left)
        if right_pyr is not None:
            frame.add_view(self._right)
        timing.total_ms = _ms(t_start)
        logger.debug(
            "Stereo frame %.3f: %d left, %d right pts in %.1fms",
            timestamp, len(self._left), len(self._right), timing.total_ms,
        )
        return frame

    def detect_points(self, state: TrackState, image: np.ndarray, require_pts: int) -> np.ndarray:
        return self._core.detect_points(state, image, require_pts)

    def remove_outliers(self, feature_ids: set[int]) -> None:
        self._core.remove([self._left, self._right], feature_ids)

    def set_prediction(self, predictions: Mapping[int, np.ndarray]) -> None:
        self._core.set_prediction(predictions)

    def reset(self) -> None:
        self._core.reset([self._left, self._right])

    @property
    def left_state(self) -> TrackState:
        return self._left

    @property
    def right_state(self) -> TrackState:
        return self._right

    @property
    def next_id(self) -> int:
        return self._core.id_allocator.next_id

    @property
    def removed_ids(self) -> frozenset[int]:
        """Ids lost to flow failure or dropped as outliers."""
        return frozenset(self._core.removed_ids)

    def track_status(self, feature_id: int) -> TrackStatus:
        return self._core.track_status(feature_id)

