"""Rigid extrinsic transform between two cameras."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


def skew(v: np.ndarray) -> np.ndarray:
    """Return the 3x3 cross-product matrix [v]x."""
    x, y, z = np.asarray(v, dtype=np.float64).reshape(3)
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def rotation_to_euler(R: np.ndarray) -> np.ndarray:
    """Return (roll, pitch, yaw) in radians of a ZYX rotation matrix."""
    R = np.asarray(R, dtype=np.float64)
    sy = np.hypot(R[0, 0], R[1, 0])

    if sy >= 1e-6:
        roll = np.arctan2(R[2, 1], R[2, 2])
        pitch = np.arctan2(-R[2, 0], sy)
        yaw = np.arctan2(R[1, 0], R[0, 0])
    else:
        # Gimbal lock: yaw is not observable, fold it into roll
        roll = np.arctan2(-R[1, 2], R[1, 1])
        pitch = np.arctan2(-R[2, 0], sy)
        yaw = 0.0

    return np.array([roll, pitch, yaw])


@dataclass(frozen=True, eq=False)
class ExtrinsicEstimate:
    """Transform taking points from camera A's frame into camera B's frame.

        p_b = rotation @ p_a + translation

    Attributes:
        rotation: 3x3 orthonormal rotation matrix
        translation: (3,) translation, always at the calibrator's fixed scale
        scale: Norm of the prior translation
        essential_matrix: [translation]x @ rotation
    """

    rotation: np.ndarray
    translation: np.ndarray
    scale: float
    essential_matrix: np.ndarray

    def __post_init__(self) -> None:
        """Validate shapes and freeze array copies."""
        rotation = np.array(self.rotation, dtype=np.float64)
        translation = np.array(self.translation, dtype=np.float64).flatten()
        essential = np.array(self.essential_matrix, dtype=np.float64)

        if rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {rotation.shape}")
        if translation.shape != (3,):
            raise ValueError(f"Translation must be (3,), got {translation.shape}")
        if essential.shape != (3, 3):
            raise ValueError(f"Essential matrix must be 3x3, got {essential.shape}")

        for array in (rotation, translation, essential):
            array.setflags(write=False)
        object.__setattr__(self, "rotation", rotation)
        object.__setattr__(self, "translation", translation)
        object.__setattr__(self, "essential_matrix", essential)
        object.__setattr__(self, "scale", float(self.scale))

    @classmethod
    def from_rt(
        cls, rotation: np.ndarray, translation: np.ndarray, scale: float | None = None
    ) -> ExtrinsicEstimate:
        """Create an estimate, deriving the essential matrix from R and t.

        Args:
            rotation: 3x3 rotation matrix
            translation: Translation vector (any shape that flattens to 3)
            scale: Fixed scale; the norm of `translation` if None
        """
        translation = np.asarray(translation, dtype=np.float64).flatten()
        if scale is None:
            scale = float(np.linalg.norm(translation))
        return cls(
            rotation=rotation,
            translation=translation,
            scale=scale,
            essential_matrix=skew(translation) @ np.asarray(rotation, dtype=np.float64),
        )

    @property
    def direction(self) -> np.ndarray:
        """Return the unit translation direction."""
        return self.translation / self.scale

    @property
    def euler_degrees(self) -> np.ndarray:
        """Return (roll, pitch, yaw) of the rotation in degrees."""
        return np.degrees(rotation_to_euler(self.rotation))

    def to_matrix(self) -> np.ndarray:
        """Return the 4x4 homogeneous transform."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def __repr__(self) -> str:
        """Return string representation."""
        rpy = self.euler_degrees
        t = self.translation
        return (
            f"ExtrinsicEstimate(rpy=[{rpy[0]:.2f}, {rpy[1]:.2f}, {rpy[2]:.2f}] deg, "
            f"t=[{t[0]:.4f}, {t[1]:.4f}, {t[2]:.4f}])"
        )
