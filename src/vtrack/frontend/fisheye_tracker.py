"""Feature tracking over the sub-views of an up/down fisheye camera pair."""

from __future__ import annotations

import logging
import time
from typing import Mapping, Sequence

import numpy as np

from ..config import TrackerConfig
from .backend import VisionBackend
from .feature_tracker import TrackingCore
from .fisheye import FisheyeSubviewCamera, concat_side
from .track_state import FeatureFrame, TrackState, TrackStatus, TrackerTiming

logger = logging.getLogger(__name__)


class FisheyeFeatureTracker:
    """Tracks the top views and side strips of two opposed fisheye cameras.

    The up camera's top view, the down camera's top view and the up side
    strip are tracked over time and replenished by detection. The down
    side strip overlaps the up side strip, so it is seeded from the up
    side points instead of being detected independently. Up views report
    camera 0, down views camera 1.
    """

    def __init__(
        self,
        camera_up: FisheyeSubviewCamera,
        camera_down: FisheyeSubviewCamera,
        config: TrackerConfig | None = None,
        backend: VisionBackend | None = None,
    ) -> None:
        self._core = TrackingCore(config, backend)
        cfg = self._core.config
        num_sides = 4 if cfg.enable_rear_side else 3
        for camera in (camera_up, camera_down):
            if camera.num_sides != num_sides:
                raise ValueError(
                    f"Camera has {camera.num_sides} side views, tracker expects {num_sides}"
                )

        self._up_top_camera = camera_up.top()
        self._up_side_camera = camera_up.side()
        self._down_top_camera = camera_down.top()
        self._down_side_camera = camera_down.side()

        self._up_top = TrackState(name="up_top", camera_id=0)
        self._up_side = TrackState(name="up_side", camera_id=0)
        self._down_top = TrackState(name="down_top", camera_id=1)
        self._down_side = TrackState(name="down_side", camera_id=1)

    def track_frame(self, timestamp: float, *images: Sequence[np.ndarray]) -> FeatureFrame:
        """Track one frame of both fisheye cameras.

        Args:
            timestamp: Frame time (seconds)
            images: Two sequences of sub-view images (up camera, down
                camera); index 0 is the top view, then the side views
        """
        if len(images) != 2:
            raise ValueError(f"Fisheye tracker expects up and down sub-views, got {len(images)}")

        core = self._core
        cfg = core.config
        up_views, down_views = images
        timing = TrackerTiming()
        t_start = time.perf_counter()
        dt = core.time_delta(timestamp)

        t0 = time.perf_counter()
        up_top_pyr = core.build_pyramid(up_views[0])
        down_top_pyr = core.build_pyramid(down_views[0])
        up_side_pyr = core.build_pyramid(concat_side(up_views, cfg.enable_rear_side))
        down_side_pyr = core.build_pyramid(concat_side(down_views, cfg.enable_rear_side))

        if cfg.enable_up_top:
            core.propagate(self._up_top, up_top_pyr)
        if cfg.enable_up_side:
            core.propagate(self._up_side, up_side_pyr)
        if cfg.enable_down_top:
            core.propagate(self._down_top, down_top_pyr)
        timing.flow_ms = (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        if cfg.enable_up_top:
            core.add_points(
                self._up_top, self.detect_points(self._up_top, up_top_pyr.image, cfg.top_pts_cnt)
            )
        if cfg.enable_down_top:
            core.add_points(
                self._down_top,
                self.detect_points(self._down_top, down_top_pyr.image, cfg.top_pts_cnt),
            )
        if cfg.enable_up_side:
            core.add_points(
                self._up_side,
                self.detect_points(self._up_side, up_side_pyr.image, cfg.side_pts_cnt),
            )
        timing.detect_ms = (time.perf_counter() - t0) * 1000

        if cfg.enable_down_side:
            t0 = time.perf_counter()
            core.cross_track(self._up_side, up_side_pyr, self._down_side, down_side_pyr)
            timing.flow_ms += (time.perf_counter() - t0) * 1000

        t0 = time.perf_counter()
        views = [
            (cfg.enable_up_top, self._up_top, self._up_top_camera, up_top_pyr),
            (cfg.enable_down_top, self._down_top, self._down_top_camera, down_top_pyr),
            (cfg.enable_up_side, self._up_side, self._up_side_camera, up_side_pyr),
            (cfg.enable_down_side, self._down_side, self._down_side_camera, down_side_pyr),
        ]
        frame = FeatureFrame(timestamp=timestamp, timing=timing)
        for enabled, state, camera, pyr in views:
            if not enabled:
                continue
            core.undistort(state, camera, dt)
            core.finish_view(state, pyr)
            frame.add_view(state)
        timing.undistort_ms = (time.perf_counter() - t0) * 1000

        core.end_frame(timestamp)
        timing.total_ms = (time.perf_counter() - t_start) * 1000
        logger.debug(
            "Fisheye frame %.3f: %d pts, %d stereo in %.1fms (flow %.1fms, detect %.1fms)",
            timestamp,
            len(self._up_top) + len(self._up_side),
            len(self._down_side),
            timing.total_ms,
            timing.flow_ms,
            timing.detect_ms,
        )
        return frame

    def detect_points(self, state: TrackState, image: np.ndarray, require_pts: int) -> np.ndarray:
        return self._core.detect_points(state, image, require_pts)

    def remove_outliers(self, feature_ids: set[int]) -> None:
        self._core.remove(self.states, feature_ids)

    def set_prediction(self, predictions: Mapping[int, np.ndarray]) -> None:
        self._core.set_prediction(predictions)

    def reset(self) -> None:
        self._core.reset(self.states)

    @property
    def states(self) -> list[TrackState]:
        return [self._up_top, self._up_side, self._down_top, self._down_side]

    def state(self, name: str) -> TrackState:
        """Return the state of a sub-view by name."""
        for state in self.states:
            if state.name == name:
                return state
        raise KeyError(f"Unknown fisheye view: {name}")

    @property
    def next_id(self) -> int:
        return self._core.id_allocator.next_id

    @property
    def removed_ids(self) -> frozenset[int]:
        """Ids lost to flow failure or dropped as outliers."""
        return frozenset(self._core.removed_ids)

    def track_status(self, feature_id: int) -> TrackStatus:
        return self._core.track_status(feature_id)

