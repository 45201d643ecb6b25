"""Correspondence filters for two-view descriptor matches.

Every filter takes a `Matches` set and returns a (possibly smaller) one,
so they compose freely. Order matters: later filters estimate their
statistics from whatever population the earlier ones left behind.
"""

from __future__ import annotations

import logging
from typing import Callable, Sequence

import numpy as np

from .camera_model import CameraModel
from .correspondence import Matches

logger = logging.getLogger(__name__)

MatchFilter = Callable[[Matches], Matches]


def filter_by_descriptor_distance(matches: Matches, floor: float = 40.0) -> Matches:
    """Keep matches whose descriptor distance is below `max(2 * min, floor)`.

    The threshold adapts to the best match quality of the frame while the
    floor keeps it sane when the best distance is tiny.
    """
    if len(matches) == 0:
        return matches

    threshold = max(2.0 * float(np.min(matches.distances)), floor)
    return matches.select(matches.distances < threshold)


def filter_by_offset(matches: Matches, axis: int, percent: float = 0.05) -> Matches:
    """Trim matches whose offset along `axis` lies in either percentile tail.

    Offsets `a - b` are sorted and the interior open interval between the
    `percent` and `1 - percent` order statistics is kept. At least the
    extreme value on each side is always dropped.

    Returns an empty set when the interval collapses: there is no
    reliable offset consensus for this frame.
    """
    if axis not in (0, 1):
        raise ValueError(f"axis must be 0 (x) or 1 (y), got {axis}")

    num = len(matches)
    if num == 0:
        return matches

    offsets = matches.offsets(axis)
    ordered = np.sort(offsets)

    lo = max(int(num * percent), 1)
    hi = int(num * (1.0 - percent))
    if hi >= num - 1:
        hi = num - 2

    if hi <= lo:
        return Matches.empty()

    lv, rv = ordered[lo], ordered[hi]
    return matches.select((offsets > lv) & (offsets < rv))


def filter_by_x(matches: Matches, percent: float = 0.05) -> Matches:
    """Horizontal offset trimming."""
    return filter_by_offset(matches, 0, percent)


def filter_by_y(matches: Matches, percent: float = 0.05) -> Matches:
    """Vertical offset trimming."""
    return filter_by_offset(matches, 1, percent)


def filter_by_displacement(matches: Matches, ratio: float = 1.5) -> Matches:
    """Keep matches whose pixel displacement is below `ratio` times the median."""
    if len(matches) == 0:
        return matches

    displacement = matches.displacements()
    median = float(np.sort(displacement)[len(displacement) // 2])
    return matches.select(displacement < median * ratio)


def epipolar_residuals(
    matches: Matches,
    essential: np.ndarray,
    camera_a: CameraModel,
    camera_b: CameraModel | None = None,
) -> np.ndarray:
    """Return `|ray_b^T E ray_a|` for every correspondence.

    Args:
        matches: Correspondences
        essential: 3x3 essential matrix mapping view A rays into view B
        camera_a: Camera model of view A
        camera_b: Camera model of view B (same as A if None)
    """
    if len(matches) == 0:
        return np.empty(0, dtype=np.float64)

    camera_b = camera_b or camera_a
    rays_a = camera_a.undistort(matches.pts_a)
    rays_b = camera_b.undistort(matches.pts_b)
    E = np.asarray(essential, dtype=np.float64)
    return np.abs(np.einsum("ij,jk,ik->i", rays_b, E, rays_a))


def filter_by_epipolar(
    matches: Matches,
    essential: np.ndarray,
    camera_a: CameraModel,
    camera_b: CameraModel | None = None,
    tolerance: float = 0.01,
) -> Matches:
    """Keep matches consistent with an essential matrix."""
    if len(matches) == 0:
        return matches

    residuals = epipolar_residuals(matches, essential, camera_a, camera_b)
    return matches.select(residuals < tolerance)


class FilterCascade:
    """An ordered sequence of match filters applied one after another."""

    def __init__(self, stages: Sequence[tuple[str, MatchFilter]] = ()) -> None:
        self._stages: list[tuple[str, MatchFilter]] = list(stages)

    @classmethod
    def default(cls, floor: float = 40.0, percent: float = 0.05) -> FilterCascade:
        """Descriptor distance, then horizontal and vertical offset trimming."""
        return cls(
            [
                ("descriptor", lambda m: filter_by_descriptor_distance(m, floor)),
                ("offset_x", lambda m: filter_by_x(m, percent)),
                ("offset_y", lambda m: filter_by_y(m, percent)),
            ]
        )

    def append(self, name: str, stage: MatchFilter) -> FilterCascade:
        """Add a stage at the end of the cascade and return self."""
        self._stages.append((name, stage))
        return self

    def __call__(self, matches: Matches) -> Matches:
        """Run every stage; stops early once the set is empty."""
        for name, stage in self._stages:
            before = len(matches)
            matches = stage(matches)
            logger.debug("Filter %s: %d -> %d matches", name, before, len(matches))
            if len(matches) == 0:
                break
        return matches

    @property
    def stage_names(self) -> list[str]:
        return [name for name, _ in self._stages]

    def __len__(self) -> int:
        return len(self._stages)
