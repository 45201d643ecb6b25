"""Fisheye sub-views: one top view plus a strip of side views per camera.

A wide-field fisheye camera is rectified (outside this package) into a
set of virtual pinhole views: a top view looking along the optical axis
and three (four with the rear view enabled) side views looking
horizontally at 90 degree steps. Side views are tracked as a single
strip image so one pyramid and one optical-flow call cover all of them.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np


def concat_side(subviews: Sequence[np.ndarray], enable_rear_side: bool = False) -> np.ndarray:
    """Concatenate the side views horizontally into one strip image.

    Args:
        subviews: Sub-view images; index 0 is the top view, 1.. the side views
        enable_rear_side: Include the fourth (rear) side view

    Returns:
        Strip image of width `num_sides * side_width`
    """
    num_sides = 4 if enable_rear_side else 3
    if len(subviews) < num_sides + 1:
        raise ValueError(
            f"Expected at least {num_sides + 1} fisheye sub-views, got {len(subviews)}"
        )

    sides = subviews[1 : num_sides + 1]
    shape = sides[0].shape
    for side in sides[1:]:
        if side.shape != shape:
            raise ValueError(f"Side views differ in shape: {shape} vs {side.shape}")

    return np.hstack(sides)


def _yaw(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


class FisheyeSubviewCamera:
    """Maps pixels of a rectified top view or side strip to unit rays.

    Rays are expressed in the fisheye camera frame (z along the fisheye
    optical axis). Every virtual view is a distortion-free pinhole camera
    sharing one focal length.
    """

    def __init__(
        self,
        focal: float,
        top_size: tuple[int, int],
        side_size: tuple[int, int],
        num_sides: int = 3,
        is_down: bool = False,
    ) -> None:
        """Initialize the sub-view model.

        Args:
            focal: Focal length of the virtual pinhole views (pixels)
            top_size: Top view size as (width, height)
            side_size: Size of one side view as (width, height)
            num_sides: Number of side views in the strip (3 or 4)
            is_down: The fisheye looks down; side views are mounted upside down
        """
        if focal <= 0:
            raise ValueError(f"Focal length must be positive, got {focal}")
        if num_sides not in (3, 4):
            raise ValueError(f"num_sides must be 3 or 4, got {num_sides}")

        self._focal = float(focal)
        self._top_size = top_size
        self._side_size = side_size
        self._num_sides = num_sides
        self._is_down = is_down

        # Columns are the side camera's x, y, z axes in the fisheye frame
        # for the side view looking along +x.
        up = -1.0 if is_down else 1.0
        side0 = np.array(
            [
                [0.0, 0.0, 1.0],
                [up, 0.0, 0.0],
                [0.0, up, 0.0],
            ]
        )
        self._side_rotations = [
            _yaw(i * np.pi / 2.0) @ side0 for i in range(num_sides)
        ]

    def top(self) -> "_SubviewModel":
        """Return a camera model for the top view."""
        return _SubviewModel(self, "top")

    def side(self) -> "_SubviewModel":
        """Return a camera model for the side strip."""
        return _SubviewModel(self, "side")

    def undistort_top(self, pixels: np.ndarray) -> np.ndarray:
        """Map Nx2 top-view pixels to Nx3 unit rays."""
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        width, height = self._top_size
        rays = np.column_stack(
            [
                (pixels[:, 0] - width / 2.0) / self._focal,
                (pixels[:, 1] - height / 2.0) / self._focal,
                np.ones(len(pixels)),
            ]
        )
        if self._is_down:
            rays[:, 1] = -rays[:, 1]
            rays[:, 2] = -rays[:, 2]
        return _normalize(rays)

    def undistort_side(self, pixels: np.ndarray) -> np.ndarray:
        """Map Nx2 side-strip pixels to Nx3 unit rays."""
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        if len(pixels) == 0:
            return np.empty((0, 3), dtype=np.float64)

        width, height = self._side_size
        view = np.clip((pixels[:, 0] // width).astype(int), 0, self._num_sides - 1)
        local_u = pixels[:, 0] - view * width

        local = np.column_stack(
            [
                (local_u - width / 2.0) / self._focal,
                (pixels[:, 1] - height / 2.0) / self._focal,
                np.ones(len(pixels)),
            ]
        )
        rays = np.empty_like(local)
        for i, R in enumerate(self._side_rotations):
            sel = view == i
            rays[sel] = local[sel] @ R.T
        return _normalize(rays)

    @property
    def num_sides(self) -> int:
        return self._num_sides

    @property
    def side_rotations(self) -> list[np.ndarray]:
        return [R.copy() for R in self._side_rotations]


class _SubviewModel:
    """`CameraModel` adapter for one kind of fisheye sub-view."""

    def __init__(self, camera: FisheyeSubviewCamera, kind: str) -> None:
        self._camera = camera
        self._kind = kind

    def undistort(self, pixels: np.ndarray) -> np.ndarray:
        if self._kind == "top":
            return self._camera.undistort_top(pixels)
        return self._camera.undistort_side(pixels)


def _normalize(rays: np.ndarray) -> np.ndarray:
    if len(rays) == 0:
        return np.empty((0, 3), dtype=np.float64)
    return rays / np.linalg.norm(rays, axis=1, keepdims=True)
