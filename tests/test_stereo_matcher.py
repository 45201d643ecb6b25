"""Tests for StereoMatcher and the ORB feature detector."""

import cv2
import numpy as np
import pytest

from conftest import FakeBackend, rotation_from_rpy, synthetic_stereo_points
from vtrack.calibration.extrinsic import skew
from vtrack.config import FilterConfig
from vtrack.frontend.correspondence import DescriptorMatch, Matches
from vtrack.frontend.feature_detector import FeatureDetector, Features
from vtrack.frontend.stereo_matcher import StereoMatcher


def orb_scene() -> np.ndarray:
    """Random rectangles on noise: plenty of ORB corners."""
    rng = np.random.default_rng(2)
    image = rng.integers(0, 60, size=(480, 640)).astype(np.uint8)
    for _ in range(120):
        x, y = rng.integers(0, 600), rng.integers(0, 440)
        w, h = rng.integers(8, 40, size=2)
        cv2.rectangle(image, (int(x), int(y)), (int(x + w), int(y + h)), int(rng.integers(80, 255)), -1)
    return cv2.GaussianBlur(image, (3, 3), 0)


def keypoint_features(points: np.ndarray) -> Features:
    keypoints = tuple(cv2.KeyPoint(float(x), float(y), 31) for x, y in points)
    return Features(keypoints, np.zeros((len(points), 32), dtype=np.uint8))


class TestFeatureDetector:
    """Test suite for the grid ORB detector."""

    def test_grid_detection_covers_image(self):
        detector = FeatureDetector(n_features=600, grid_cols=4, grid_rows=3)
        features = detector.detect(orb_scene())

        assert len(features) > 100
        assert features.descriptors.shape == (len(features), 32)
        pts = features.points
        assert pts[:, 0].min() < 160 and pts[:, 0].max() > 480

    def test_blank_image(self):
        features = FeatureDetector().detect(np.zeros((100, 100), dtype=np.uint8))
        assert len(features) == 0
        assert features.points.shape == (0, 2)

    def test_invalid_grid(self):
        with pytest.raises(ValueError):
            FeatureDetector(grid_cols=0)


class TestStereoMatcher:
    """Test suite for StereoMatcher."""

    def test_displacement_stage_is_optional(self, camera_matrix):
        assert StereoMatcher(camera_matrix).cascade.stage_names == ["descriptor", "offset_x", "offset_y"]
        matcher = StereoMatcher(camera_matrix, filter_config=FilterConfig(use_displacement_filter=True))
        assert matcher.cascade.stage_names[-1] == "displacement"

    def test_empty_features_give_no_matches(self, camera_matrix):
        matcher = StereoMatcher(camera_matrix, backend=FakeBackend())
        empty = Features((), None)
        assert len(matcher.match(empty, empty)) == 0

    def test_find_correspondences_drops_outliers(self, camera_matrix):
        """Weak descriptor matches and off-epipolar matches never reach the output."""
        R = rotation_from_rpy(0.0, 0.01, 0.0)
        t = np.array([-0.1, 0.0, 0.0])
        pts_a, pts_b = synthetic_stereo_points(R, t, camera_matrix, n_points=100, seed=4)
        pts_b[:10, 1] += np.where(np.arange(10) % 2, 25.0, -25.0)

        backend = FakeBackend()
        backend.features = [keypoint_features(pts_a), keypoint_features(pts_b)]
        backend.raw_matches = [
            DescriptorMatch(i, i, 90.0 if i >= 90 else 12.0) for i in range(len(pts_a))
        ]
        matcher = StereoMatcher(camera_matrix, backend=backend)

        matches = matcher.find_correspondences(np.zeros((480, 640)), np.zeros((480, 640)))

        assert 30 < len(matches) < 90
        assert np.all(matches.distances < 40)
        outliers = {tuple(p) for p in pts_a[:10].astype(np.float32)}
        assert not any(tuple(p) in outliers for p in matches.pts_a)

    def test_epipolar_stage_uses_current_essential(self, camera_matrix, pinhole):
        R = rotation_from_rpy(0.01, 0.0, 0.0)
        t = np.array([-0.3, 0.0, 0.0])
        pts_a, pts_b = synthetic_stereo_points(R, t, camera_matrix, n_points=60, seed=1)
        wrong = skew(np.array([0.0, 1.0, 0.0]))
        matcher = StereoMatcher(
            camera_matrix, backend=FakeBackend(), filter_config=FilterConfig(use_epipolar_filter=True)
        )
        raw = Matches(pts_a, pts_b, np.full(len(pts_a), 10.0))

        right = matcher.filter(raw, skew(t) @ R, pinhole, pinhole)
        off = matcher.filter(raw, wrong, pinhole, pinhole)

        assert len(right) > 0
        assert len(off) == 0
