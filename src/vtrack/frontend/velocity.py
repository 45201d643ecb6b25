"""Per-feature ray velocity from two consecutive undistorted observations."""

from __future__ import annotations

from typing import Mapping, Sequence

import numpy as np


def ray_velocities(
    ids: Sequence[int],
    curr_rays: np.ndarray,
    prev_rays: Mapping[int, np.ndarray],
    dt: float,
) -> np.ndarray:
    """Compute the velocity of every current ray.

    velocity = (current_ray - previous_ray) / dt for ids seen in the
    previous frame; ids without a previous observation (newly detected)
    get zero velocity. A non-positive `dt` yields all zeros.

    Args:
        ids: Feature ids, one per row of `curr_rays`
        curr_rays: Nx3 undistorted rays of the current frame
        prev_rays: Previous frame's id -> ray mapping
        dt: Current time minus previous time (seconds)

    Returns:
        Nx3 array of velocities
    """
    curr_rays = np.asarray(curr_rays, dtype=np.float64).reshape(-1, 3)
    if len(ids) != len(curr_rays):
        raise ValueError(f"Got {len(ids)} ids for {len(curr_rays)} rays")

    velocities = np.zeros_like(curr_rays)
    if dt <= 0 or len(prev_rays) == 0:
        return velocities

    for i, feature_id in enumerate(ids):
        prev = prev_rays.get(int(feature_id))
        if prev is not None:
            velocities[i] = (curr_rays[i] - np.asarray(prev, dtype=np.float64)) / dt

    return velocities


def ray_map(ids: Sequence[int], rays: np.ndarray) -> dict[int, np.ndarray]:
    """Build an id -> ray mapping."""
    return {int(feature_id): ray for feature_id, ray in zip(ids, np.asarray(rays))}
