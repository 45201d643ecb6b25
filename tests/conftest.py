"""Shared fixtures: a scripted vision backend and synthetic geometry."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from vtrack.frontend.backend import ImagePyramid, OpenCVBackend
from vtrack.frontend.camera_model import CameraIntrinsics, PinholeCamera
from vtrack.frontend.correspondence import DescriptorMatch
from vtrack.frontend.feature_detector import Features


class FakeBackend:
    """Deterministic stand-in for the OpenCV backend.

    Optical flow moves every point by `shift` (or to its predicted
    position) and fails the indices listed in `fail_indices` for the
    next call only. Corner detection returns `corners`.
    """

    def __init__(self, corners: np.ndarray | None = None) -> None:
        self.shift = np.zeros(2, dtype=np.float32)
        self.fail_indices: set[int] = set()
        self.corners = (
            np.empty((0, 2), dtype=np.float32) if corners is None else np.asarray(corners, dtype=np.float32)
        )
        self.flow_calls: list[dict] = []
        self.detect_calls: list[int] = []
        self.features: list[Features] = []
        self.raw_matches: list[DescriptorMatch] = []
        self.decomposition: tuple[np.ndarray, np.ndarray, np.ndarray] | None = None
        self.essential: np.ndarray | None = None
        self._opencv = OpenCVBackend()

    def build_pyramid(self, image: np.ndarray, levels: int) -> ImagePyramid:
        return ImagePyramid(levels=[image])

    def optical_flow(self, curr_pyr, prev_pyr, prev_points, predicted_points=None):
        prev_points = np.asarray(prev_points, dtype=np.float32).reshape(-1, 2)
        self.flow_calls.append(
            {"n": len(prev_points), "predicted": predicted_points is not None}
        )
        if predicted_points is not None:
            new_pts = np.asarray(predicted_points, dtype=np.float32).reshape(-1, 2).copy()
        else:
            new_pts = prev_points + self.shift
        status = np.ones(len(prev_points), dtype=bool)
        for i in self.fail_indices:
            if i < len(status):
                status[i] = False
        self.fail_indices = set()
        return new_pts, status

    def detect_corners(self, image, mask, max_count, min_distance):
        self.detect_calls.append(int(max_count))
        height, width = image.shape[:2]
        inside = (self.corners[:, 0] < width - 1) & (self.corners[:, 1] < height - 1)
        return self.corners[inside][: int(max_count)].copy()

    def detect_and_describe(self, image):
        return self.features.pop(0)

    def match_descriptors(self, desc_a, desc_b):
        return list(self.raw_matches)

    def estimate_essential(self, pts_a, pts_b, camera_matrix, confidence, threshold):
        if self.essential is not None:
            return self.essential, np.ones(len(pts_a), dtype=bool)
        return self._opencv.estimate_essential(pts_a, pts_b, camera_matrix, confidence, threshold)

    def decompose_essential(self, essential):
        if self.decomposition is not None:
            return self.decomposition
        return self._opencv.decompose_essential(essential)


def grid_points(width: int, height: int, step: int, margin: int = 10) -> np.ndarray:
    """Return a regular grid of pixel positions."""
    xs = np.arange(margin, width - margin, step)
    ys = np.arange(margin, height - margin, step)
    return np.array([[x, y] for y in ys for x in xs], dtype=np.float32)


def rotation_from_rpy(roll: float, pitch: float, yaw: float) -> np.ndarray:
    """Return R = Rz(yaw) @ Ry(pitch) @ Rx(roll), angles in radians."""
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)
    Rx = np.array([[1, 0, 0], [0, cr, -sr], [0, sr, cr]])
    Ry = np.array([[cp, 0, sp], [0, 1, 0], [-sp, 0, cp]])
    Rz = np.array([[cy, -sy, 0], [sy, cy, 0], [0, 0, 1]])
    return Rz @ Ry @ Rx


def synthetic_stereo_points(
    R: np.ndarray,
    t: np.ndarray,
    K: np.ndarray,
    n_points: int = 60,
    seed: int = 0,
) -> tuple[np.ndarray, np.ndarray]:
    """Project random 3D points into camera A and camera B (p_b = R p_a + t)."""
    rng = np.random.default_rng(seed)
    points = np.column_stack(
        [
            rng.uniform(-3.0, 3.0, n_points),
            rng.uniform(-2.0, 2.0, n_points),
            rng.uniform(4.0, 12.0, n_points),
        ]
    )
    points_b = points @ R.T + np.asarray(t).reshape(1, 3)

    def project(p: np.ndarray) -> np.ndarray:
        uv = (K @ (p / p[:, 2:3]).T).T
        return uv[:, :2]

    return project(points), project(points_b)


@pytest.fixture
def fake_backend() -> FakeBackend:
    """Fake backend offering a 40 px grid of corners over a 320x240 image."""
    return FakeBackend(corners=grid_points(320, 240, 40))


@pytest.fixture
def camera_matrix() -> np.ndarray:
    return np.array([[400.0, 0.0, 320.0], [0.0, 400.0, 240.0], [0.0, 0.0, 1.0]])


@pytest.fixture
def pinhole(camera_matrix: np.ndarray) -> PinholeCamera:
    return PinholeCamera(CameraIntrinsics.from_matrix(camera_matrix), image_size=(640, 480))


@pytest.fixture
def blank_image() -> np.ndarray:
    return np.zeros((240, 320), dtype=np.uint8)


@pytest.fixture
def textured_image() -> np.ndarray:
    """Smooth random texture that corner detection and optical flow can lock onto."""
    rng = np.random.default_rng(7)
    noise = rng.integers(0, 256, size=(240, 320)).astype(np.uint8)
    blurred = cv2.GaussianBlur(noise, (0, 0), 3)
    return cv2.normalize(blurred, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
