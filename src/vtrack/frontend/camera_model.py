"""Camera models mapping pixels to undistorted viewing rays."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import cv2
import numpy as np
import yaml


class CameraModel(Protocol):
    """Anything that can map pixels to 3D viewing rays."""

    def undistort(self, pixels: np.ndarray) -> np.ndarray:
        """Map Nx2 pixels to Nx3 rays."""
        ...


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @classmethod
    def from_matrix(cls, K: np.ndarray) -> CameraIntrinsics:
        """Create intrinsics from a 3x3 camera matrix."""
        K = np.asarray(K, dtype=np.float64)
        if K.shape != (3, 3):
            raise ValueError(f"Camera matrix must be 3x3, got {K.shape}")
        return cls(fx=K[0, 0], fy=K[1, 1], cx=K[0, 2], cy=K[1, 2])


@dataclass
class DistortionCoeffs:
    """Radial-tangential distortion coefficients."""

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0

    def to_array(self) -> np.ndarray:
        """Return distortion coefficients as (4,) array for OpenCV."""
        return np.array([self.k1, self.k2, self.p1, self.p2], dtype=np.float64)

    @property
    def is_zero(self) -> bool:
        """Return True if the model has no distortion."""
        return not np.any(self.to_array())


class PinholeCamera:
    """Pinhole camera with radial-tangential distortion.

    `undistort` returns rays on the z = 1 plane, i.e. `(x, y, 1)` with
    `(x, y)` the normalized undistorted image coordinates.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        distortion: DistortionCoeffs | None = None,
        image_size: tuple[int, int] | None = None,
    ) -> None:
        """Initialize camera.

        Args:
            intrinsics: Focal lengths and principal point
            distortion: Distortion coefficients (none if None)
            image_size: Image size as (width, height), if known
        """
        self._intrinsics = intrinsics
        self._distortion = distortion or DistortionCoeffs()
        self._image_size = image_size
        self._K = intrinsics.to_matrix()

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> PinholeCamera:
        """Load a camera from a EuRoC-format sensor.yaml file.

        Args:
            yaml_path: Path to sensor.yaml

        Returns:
            PinholeCamera with intrinsics, distortion and resolution from the file

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        if not isinstance(data, dict):
            raise ValueError(f"Invalid calibration file: {yaml_path}")

        # Parse intrinsics [fu, fv, cu, cv]
        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        intrinsics = CameraIntrinsics(
            fx=float(intrinsics_list[0]),
            fy=float(intrinsics_list[1]),
            cx=float(intrinsics_list[2]),
            cy=float(intrinsics_list[3]),
        )

        # Parse distortion coefficients [k1, k2, p1, p2]; optional
        distortion = DistortionCoeffs()
        distortion_list = data.get("distortion_coefficients")
        if distortion_list is not None:
            if len(distortion_list) != 4:
                raise ValueError(f"Invalid distortion coefficients in {yaml_path}")
            distortion = DistortionCoeffs(*(float(v) for v in distortion_list))

        image_size = None
        resolution = data.get("resolution")
        if resolution is not None:
            if len(resolution) != 2:
                raise ValueError(f"Invalid resolution in {yaml_path}")
            image_size = (int(resolution[0]), int(resolution[1]))

        return cls(intrinsics, distortion, image_size)

    def undistort(self, pixels: np.ndarray) -> np.ndarray:
        """Map Nx2 pixel coordinates to Nx3 rays on the z = 1 plane."""
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        if len(pixels) == 0:
            return np.empty((0, 3), dtype=np.float64)

        if self._distortion.is_zero:
            x = (pixels[:, 0] - self._intrinsics.cx) / self._intrinsics.fx
            y = (pixels[:, 1] - self._intrinsics.cy) / self._intrinsics.fy
        else:
            normalized = cv2.undistortPoints(
                pixels.reshape(-1, 1, 2), self._K, self._distortion.to_array()
            ).reshape(-1, 2)
            x, y = normalized[:, 0], normalized[:, 1]

        return np.column_stack([x, y, np.ones_like(x)])

    def project(self, points: np.ndarray) -> np.ndarray:
        """Project Nx3 camera-frame points to pixels (distortion ignored)."""
        points = np.asarray(points, dtype=np.float64).reshape(-1, 3)
        uv = points[:, :2] / points[:, 2:3]
        return np.column_stack(
            [
                uv[:, 0] * self._intrinsics.fx + self._intrinsics.cx,
                uv[:, 1] * self._intrinsics.fy + self._intrinsics.cy,
            ]
        )

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return 3x3 intrinsic matrix K."""
        return self._K.copy()

    @property
    def intrinsics(self) -> CameraIntrinsics:
        return self._intrinsics

    @property
    def image_size(self) -> tuple[int, int] | None:
        """Return image size as (width, height), or None if unknown."""
        return self._image_size
