"""Two-view correspondence containers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import NamedTuple, Sequence

import numpy as np

from ..exceptions import MatchIndexError


class DescriptorMatch(NamedTuple):
    """A raw descriptor match as returned by a vision backend.

    Attributes:
        query_idx: Keypoint index in view A
        train_idx: Keypoint index in view B
        distance: Descriptor distance (Hamming for ORB)
    """

    query_idx: int
    train_idx: int
    distance: float


@dataclass
class Matches:
    """Point correspondences between view A and view B.

    Attributes:
        pts_a: Nx2 array of pixel coordinates in view A
        pts_b: Nx2 array of pixel coordinates in view B
        distances: N array of descriptor distances
    """

    pts_a: np.ndarray
    pts_b: np.ndarray
    distances: np.ndarray

    def __post_init__(self) -> None:
        """Normalize array types and check lengths agree."""
        self.pts_a = np.asarray(self.pts_a, dtype=np.float32).reshape(-1, 2)
        self.pts_b = np.asarray(self.pts_b, dtype=np.float32).reshape(-1, 2)
        self.distances = np.asarray(self.distances, dtype=np.float32).reshape(-1)

        if not (len(self.pts_a) == len(self.pts_b) == len(self.distances)):
            raise ValueError(
                f"Correspondence arrays differ in length: {len(self.pts_a)}, "
                f"{len(self.pts_b)}, {len(self.distances)}"
            )

    @classmethod
    def empty(cls) -> Matches:
        """Return an empty correspondence set."""
        return cls(
            pts_a=np.empty((0, 2), dtype=np.float32),
            pts_b=np.empty((0, 2), dtype=np.float32),
            distances=np.empty(0, dtype=np.float32),
        )

    @classmethod
    def from_descriptor_matches(
        cls,
        matches: Sequence[DescriptorMatch],
        keypoints_a: np.ndarray,
        keypoints_b: np.ndarray,
    ) -> Matches:
        """Resolve raw matches against the keypoint arrays of both views.

        Args:
            matches: Raw matches, query indices into view A and train indices into view B
            keypoints_a: Nx2 keypoint coordinates of view A
            keypoints_b: Mx2 keypoint coordinates of view B

        Returns:
            Matches with one entry per raw match, in the same order

        Raises:
            MatchIndexError: If a match references a keypoint that doesn't exist
        """
        if len(matches) == 0:
            return cls.empty()

        num_a, num_b = len(keypoints_a), len(keypoints_b)
        query = np.empty(len(matches), dtype=np.int64)
        train = np.empty(len(matches), dtype=np.int64)
        distances = np.empty(len(matches), dtype=np.float32)

        for i, m in enumerate(matches):
            if not (0 <= m.query_idx < num_a and 0 <= m.train_idx < num_b):
                raise MatchIndexError(i, m.query_idx, m.train_idx, num_a, num_b)
            query[i] = m.query_idx
            train[i] = m.train_idx
            distances[i] = m.distance

        return cls(
            pts_a=np.asarray(keypoints_a)[query],
            pts_b=np.asarray(keypoints_b)[train],
            distances=distances,
        )

    def __len__(self) -> int:
        """Return number of correspondences."""
        return len(self.pts_a)

    def select(self, mask: np.ndarray) -> Matches:
        """Return the correspondences selected by a boolean mask or index array."""
        return Matches(
            pts_a=self.pts_a[mask],
            pts_b=self.pts_b[mask],
            distances=self.distances[mask],
        )

    def offsets(self, axis: int) -> np.ndarray:
        """Return signed pixel offsets `a - b` along one axis (0 = x, 1 = y)."""
        return self.pts_a[:, axis] - self.pts_b[:, axis]

    def displacements(self) -> np.ndarray:
        """Return Euclidean pixel distances between the two endpoints."""
        return np.linalg.norm(self.pts_a - self.pts_b, axis=1)
