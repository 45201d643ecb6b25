"""Descriptor-based correspondence search between two camera views."""

from __future__ import annotations

import logging

import numpy as np

from ..config import CalibrationConfig, FilterConfig
from .backend import OpenCVBackend, VisionBackend
from .camera_model import CameraModel
from .correspondence import Matches
from .feature_detector import FeatureDetector, Features
from .filters import FilterCascade, filter_by_displacement, filter_by_epipolar

logger = logging.getLogger(__name__)


class StereoMatcher:
    """Finds point correspondences between the images of two cameras.

    Pipeline:
    1. ORB keypoints and descriptors in both images
    2. Cross-checked brute-force matching
    3. Filter cascade: descriptor distance, horizontal offset trimming,
       vertical offset trimming and, when enabled and an essential matrix
       is supplied, epipolar consistency
    4. Essential-matrix RANSAC over the surviving matches, keeping inliers
    """

    def __init__(
        self,
        camera_matrix: np.ndarray,
        backend: VisionBackend | None = None,
        filter_config: FilterConfig | None = None,
        calibration_config: CalibrationConfig | None = None,
    ) -> None:
        """Initialize stereo matcher.

        Args:
            camera_matrix: 3x3 intrinsic matrix used for the RANSAC stage
            backend: Vision primitives. OpenCV with a grid ORB detector if None.
            filter_config: Filter cascade parameters
            calibration_config: RANSAC confidence/threshold and ORB budget
        """
        self._camera_matrix = np.asarray(camera_matrix, dtype=np.float64)
        self._filters = filter_config or FilterConfig()
        self._calib = calibration_config or CalibrationConfig()
        self._backend = backend or OpenCVBackend(
            feature_detector=FeatureDetector(
                n_features=self._calib.orb_features, grid_cols=4, grid_rows=3
            )
        )
        self._cascade = FilterCascade.default(
            floor=self._filters.hamming_floor, percent=self._filters.offset_percent
        )
        if self._filters.use_displacement_filter:
            ratio = self._filters.displacement_ratio
            self._cascade.append("displacement", lambda m: filter_by_displacement(m, ratio))

    def match(self, features_a: Features, features_b: Features) -> Matches:
        """Match descriptors of view A against view B without any filtering.

        Raises:
            MatchIndexError: If the backend returns a match outside the keypoint lists
        """
        if (
            len(features_a) == 0
            or len(features_b) == 0
            or features_a.descriptors is None
            or features_b.descriptors is None
        ):
            return Matches.empty()

        raw = self._backend.match_descriptors(features_a.descriptors, features_b.descriptors)
        return Matches.from_descriptor_matches(raw, features_a.points, features_b.points)

    def filter(
        self,
        matches: Matches,
        essential: np.ndarray | None = None,
        camera_a: CameraModel | None = None,
        camera_b: CameraModel | None = None,
    ) -> Matches:
        """Run the filter cascade over raw matches."""
        matches = self._cascade(matches)

        if self._filters.use_epipolar_filter and essential is not None and camera_a is not None:
            before = len(matches)
            matches = filter_by_epipolar(
                matches, essential, camera_a, camera_b, self._filters.epipolar_tolerance
            )
            logger.debug("Filter epipolar: %d -> %d matches", before, len(matches))

        return matches

    def ransac_inliers(self, matches: Matches, min_points: int) -> Matches:
        """Keep only the essential-matrix RANSAC inliers of a match set.

        Sets with `min_points` or fewer matches cannot support an estimate
        and come back empty.
        """
        if len(matches) <= min_points:
            return Matches.empty()

        _, inliers = self._backend.estimate_essential(
            matches.pts_a,
            matches.pts_b,
            self._camera_matrix,
            self._calib.ransac_confidence,
            self._calib.ransac_threshold,
        )
        if len(inliers) != len(matches):
            return Matches.empty()
        return matches.select(inliers)

    def find_correspondences(
        self,
        image_a: np.ndarray,
        image_b: np.ndarray,
        essential: np.ndarray | None = None,
        camera_a: CameraModel | None = None,
        camera_b: CameraModel | None = None,
    ) -> Matches:
        """Find inlier correspondences between two images.

        Args:
            image_a: Image of view A (grayscale)
            image_b: Image of view B (grayscale)
            essential: Current essential matrix for the optional epipolar stage
            camera_a: Camera model of view A for the epipolar stage
            camera_b: Camera model of view B for the epipolar stage

        Returns:
            Correspondences surviving every stage (possibly empty)

        Raises:
            MatchIndexError: If the matching stage produced an invalid index
        """
        features_a = self._backend.detect_and_describe(image_a)
        features_b = self._backend.detect_and_describe(image_b)

        raw = self.match(features_a, features_b)
        filtered = self.filter(raw, essential, camera_a, camera_b)
        inliers = self.ransac_inliers(filtered, self._calib.min_essential_points)

        logger.debug(
            "Correspondences: %d/%d features, %d raw, %d filtered, %d inliers",
            len(features_a), len(features_b), len(raw), len(filtered), len(inliers),
        )
        return inliers

    @property
    def camera_matrix(self) -> np.ndarray:
        return self._camera_matrix.copy()

    @property
    def cascade(self) -> FilterCascade:
        return self._cascade
