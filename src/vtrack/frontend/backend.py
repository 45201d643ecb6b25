"""Vision primitives used by the tracker and the calibrator.

The tracking and calibration logic only talks to a `VisionBackend`. The
OpenCV CPU implementation below is the default; an accelerated backend
only has to provide the same methods.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import cv2
import numpy as np

from .correspondence import DescriptorMatch
from .feature_detector import FeatureDetector, Features


@dataclass
class ImagePyramid:
    """Gaussian image pyramid; level 0 is the full-resolution image."""

    levels: list[np.ndarray]

    @property
    def image(self) -> np.ndarray:
        """Return the full-resolution image."""
        return self.levels[0]

    @property
    def max_level(self) -> int:
        """Return index of the coarsest level."""
        return len(self.levels) - 1

    @property
    def shape(self) -> tuple[int, int]:
        """Return (height, width) of the base image."""
        return self.levels[0].shape[:2]


class VisionBackend(Protocol):
    """Interface of the vision primitives the front-end depends on."""

    def build_pyramid(self, image: np.ndarray, levels: int) -> ImagePyramid: ...

    def optical_flow(
        self,
        curr_pyr: ImagePyramid,
        prev_pyr: ImagePyramid,
        prev_points: np.ndarray,
        predicted_points: np.ndarray | None = None,
    ) -> tuple[np.ndarray, np.ndarray]: ...

    def detect_corners(
        self,
        image: np.ndarray,
        mask: np.ndarray | None,
        max_count: int,
        min_distance: float,
    ) -> np.ndarray: ...

    def detect_and_describe(self, image: np.ndarray) -> Features: ...

    def match_descriptors(
        self, desc_a: np.ndarray, desc_b: np.ndarray
    ) -> list[DescriptorMatch]: ...

    def estimate_essential(
        self,
        pts_a: np.ndarray,
        pts_b: np.ndarray,
        camera_matrix: np.ndarray,
        confidence: float,
        threshold: float,
    ) -> tuple[np.ndarray | None, np.ndarray]: ...

    def decompose_essential(
        self, essential: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]: ...


def _to_float_points(points: np.ndarray) -> np.ndarray:
    return np.asarray(points, dtype=np.float32).reshape(-1, 1, 2)


class OpenCVBackend:
    """CPU implementation of `VisionBackend` on top of OpenCV."""

    def __init__(
        self,
        win_size: int = 21,
        corner_quality: float = 0.01,
        feature_detector: FeatureDetector | None = None,
        cross_check: bool = True,
    ) -> None:
        """Initialize the backend.

        Args:
            win_size: Lucas-Kanade window size (pixels)
            corner_quality: Minimal accepted corner quality relative to the best corner
            feature_detector: ORB detector for `detect_and_describe`.
                Uses a 4x3 grid with 1000 features if None.
            cross_check: Only keep mutually-best descriptor matches
        """
        self._win_size = (win_size, win_size)
        self._corner_quality = corner_quality
        self._detector = feature_detector or FeatureDetector(
            n_features=1000, grid_cols=4, grid_rows=3
        )
        self._bf_matcher = cv2.BFMatcher(self._detector.norm_type, crossCheck=cross_check)
        self._criteria = (cv2.TERM_CRITERIA_EPS | cv2.TERM_CRITERIA_COUNT, 30, 0.01)

    def build_pyramid(self, image: np.ndarray, levels: int) -> ImagePyramid:
        """Build a Gaussian pyramid with `levels` levels above the base image."""
        if image.ndim == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)

        pyramid = [image]
        for _ in range(levels):
            prev = pyramid[-1]
            if min(prev.shape[:2]) < 2:
                break
            pyramid.append(cv2.pyrDown(prev))
        return ImagePyramid(levels=pyramid)

    def optical_flow(
        self,
        curr_pyr: ImagePyramid,
        prev_pyr: ImagePyramid,
        prev_points: np.ndarray,
        predicted_points: np.ndarray | None = None,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Track points from `prev_pyr` into `curr_pyr` with pyramidal Lucas-Kanade.

        When predicted positions are given they are used as the initial
        flow and only one pyramid level is searched.

        Returns:
            Tuple of (Nx2 new positions, N boolean success flags)
        """
        n = len(prev_points)
        if n == 0:
            return np.empty((0, 2), dtype=np.float32), np.zeros(0, dtype=bool)

        prev = _to_float_points(prev_points)
        if predicted_points is not None:
            next_pts, status, _err = cv2.calcOpticalFlowPyrLK(
                prev_pyr.image,
                curr_pyr.image,
                prev,
                _to_float_points(predicted_points).copy(),
                winSize=self._win_size,
                maxLevel=1,
                criteria=self._criteria,
                flags=cv2.OPTFLOW_USE_INITIAL_FLOW,
            )
        else:
            next_pts, status, _err = cv2.calcOpticalFlowPyrLK(
                prev_pyr.image,
                curr_pyr.image,
                prev,
                None,
                winSize=self._win_size,
                maxLevel=min(prev_pyr.max_level, curr_pyr.max_level),
                criteria=self._criteria,
            )

        if next_pts is None or status is None:
            return np.asarray(prev_points, dtype=np.float32).reshape(-1, 2), np.zeros(n, dtype=bool)

        return next_pts.reshape(-1, 2), status.reshape(-1).astype(bool)

    def detect_corners(
        self,
        image: np.ndarray,
        mask: np.ndarray | None,
        max_count: int,
        min_distance: float,
    ) -> np.ndarray:
        """Detect up to `max_count` Shi-Tomasi corners."""
        if max_count <= 0:
            return np.empty((0, 2), dtype=np.float32)

        corners = cv2.goodFeaturesToTrack(
            image,
            maxCorners=int(max_count),
            qualityLevel=self._corner_quality,
            minDistance=float(min_distance),
            mask=mask,
        )
        if corners is None:
            return np.empty((0, 2), dtype=np.float32)
        return corners.reshape(-1, 2).astype(np.float32)

    def detect_and_describe(self, image: np.ndarray) -> Features:
        """Detect ORB keypoints and compute their descriptors."""
        return self._detector.detect(image)

    def match_descriptors(
        self, desc_a: np.ndarray, desc_b: np.ndarray
    ) -> list[DescriptorMatch]:
        """Brute-force match descriptors of view A (query) against view B (train)."""
        if desc_a is None or desc_b is None or len(desc_a) == 0 or len(desc_b) == 0:
            return []

        return [
            DescriptorMatch(m.queryIdx, m.trainIdx, float(m.distance))
            for m in self._bf_matcher.match(desc_a, desc_b)
        ]

    def estimate_essential(
        self,
        pts_a: np.ndarray,
        pts_b: np.ndarray,
        camera_matrix: np.ndarray,
        confidence: float,
        threshold: float,
    ) -> tuple[np.ndarray | None, np.ndarray]:
        """Estimate the essential matrix mapping view A to view B with RANSAC.

        Returns:
            Tuple of (3x3 essential matrix or None, N boolean inlier mask)
        """
        n = len(pts_a)
        if n < 5:
            return None, np.zeros(n, dtype=bool)

        try:
            essential, mask = cv2.findEssentialMat(
                np.asarray(pts_a, dtype=np.float64).reshape(-1, 2),
                np.asarray(pts_b, dtype=np.float64).reshape(-1, 2),
                np.asarray(camera_matrix, dtype=np.float64),
                method=cv2.RANSAC,
                prob=confidence,
                threshold=threshold,
            )
        except cv2.error:
            return None, np.zeros(n, dtype=bool)

        if essential is None or essential.shape[0] < 3:
            return None, np.zeros(n, dtype=bool)

        # Degenerate configurations can yield several stacked solutions
        essential = essential[:3, :3]
        inliers = np.zeros(n, dtype=bool) if mask is None else mask.reshape(-1).astype(bool)
        return essential, inliers

    def decompose_essential(
        self, essential: np.ndarray
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Return the two rotation candidates and the unit translation direction."""
        R1, R2, t = cv2.decomposeEssentialMat(np.asarray(essential, dtype=np.float64))
        return R1, R2, t.reshape(3)

