"""Online self-calibration of the extrinsic transform between two cameras.

Correspondences between the two cameras are accumulated over many frames
in a bounded FIFO buffer. Each new batch triggers an essential-matrix
RANSAC over the whole buffer; the decomposition is accepted only when it
lands close to the previously accepted estimate, which keeps the estimate
from jumping between the decomposition's ambiguous solutions or drifting
on degenerate frames.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np

from ..config import CalibrationConfig, FilterConfig
from ..exceptions import MatchIndexError
from ..frontend.backend import OpenCVBackend, VisionBackend
from ..frontend.camera_model import CameraIntrinsics, PinholeCamera
from ..frontend.stereo_matcher import StereoMatcher
from .extrinsic import ExtrinsicEstimate

logger = logging.getLogger(__name__)


class CalibrationStatus(Enum):
    """Outcome of a calibration call."""

    UPDATED = "UPDATED"
    NOT_UPDATED = "NOT_UPDATED"
    ESTIMATED = "ESTIMATED"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"
    MATCH_ERROR = "MATCH_ERROR"


class CalibrationState(Enum):
    """Trust level of the held estimate."""

    UNCERTAIN = "UNCERTAIN"
    CALIBRATED = "CALIBRATED"


class CalibrationBuffer:
    """FIFO buffer of correspondences capped at a fixed size.

    Rows live in a preallocated ring; appending past the cap overwrites
    the oldest correspondences first.
    """

    def __init__(self, max_size: int = 100_000) -> None:
        if max_size < 1:
            raise ValueError(f"Buffer size must be positive, got {max_size}")
        self._data = np.empty((max_size, 4), dtype=np.float64)
        self._start = 0
        self._size = 0
        self._total = 0

    def extend(self, pts_a: np.ndarray, pts_b: np.ndarray) -> None:
        """Append Nx2 correspondences in order."""
        pts_a = np.asarray(pts_a, dtype=np.float64).reshape(-1, 2)
        pts_b = np.asarray(pts_b, dtype=np.float64).reshape(-1, 2)
        if len(pts_a) != len(pts_b):
            raise ValueError(f"Got {len(pts_a)} points in A and {len(pts_b)} in B")

        rows = np.hstack([pts_a, pts_b])
        n = len(rows)
        self._total += n
        if n == 0:
            return

        capacity = len(self._data)
        if n >= capacity:
            self._data[:] = rows[-capacity:]
            self._start = 0
            self._size = capacity
            return

        end = (self._start + self._size) % capacity
        first = min(n, capacity - end)
        self._data[end : end + first] = rows[:first]
        self._data[: n - first] = rows[first:]

        overflow = max(0, self._size + n - capacity)
        self._size = min(capacity, self._size + n)
        self._start = (self._start + overflow) % capacity

    def arrays(self) -> tuple[np.ndarray, np.ndarray]:
        """Return (Nx2 points in view A, Nx2 points in view B), oldest first."""
        order = (self._start + np.arange(self._size)) % len(self._data)
        data = self._data[order]
        return data[:, 0:2], data[:, 2:4]

    def clear(self) -> None:
        self._start = 0
        self._size = 0
        self._total = 0

    def __len__(self) -> int:
        return self._size

    @property
    def max_size(self) -> int:
        return len(self._data)

    @property
    def total_ingested(self) -> int:
        """Return the number of correspondences ever appended."""
        return self._total


def _median_parallax(
    pts_a: np.ndarray, pts_b: np.ndarray, rotation: np.ndarray, camera_matrix: np.ndarray
) -> float:
    """Median pixel distance between B points and A points warped by `rotation` alone."""
    if len(pts_a) == 0:
        return 0.0
    homogeneous = np.column_stack([pts_a, np.ones(len(pts_a))])
    warp = camera_matrix @ rotation @ np.linalg.inv(camera_matrix)
    warped = homogeneous @ warp.T
    warped = warped[:, :2] / warped[:, 2:3]
    return float(np.median(np.linalg.norm(warped - pts_b, axis=1)))


def _pick_rotation(
    reference: np.ndarray, candidates: tuple[np.ndarray, np.ndarray]
) -> tuple[np.ndarray, float]:
    """Return the candidate closest to `reference` and its Frobenius distance.

    Equal distances are broken by the lexicographically smaller flattened matrix.
    """
    distances = [float(np.linalg.norm(reference - R)) for R in candidates]
    if abs(distances[0] - distances[1]) <= 1e-12:
        first, second = (tuple(np.round(R, 12).flatten()) for R in candidates)
        best = 0 if first <= second else 1
    else:
        best = 0 if distances[0] < distances[1] else 1
    return candidates[best], distances[best]


class OnlineStereoCalibrator:
    """Refines the rotation and translation between two cameras online.

    The translation scale cannot be observed from an essential matrix, so
    it is fixed to the norm of the prior translation and every accepted
    translation is reported at that scale.

    Example:
        >>> calib = OnlineStereoCalibrator(R0, t0, K)
        >>> status = calib.calibrate(left_img, right_img)
        >>> if status is CalibrationStatus.UPDATED:
        ...     R, t = calib.estimate.rotation, calib.estimate.translation
    """

    def __init__(
        self,
        rotation: np.ndarray,
        translation: np.ndarray,
        camera_matrix: np.ndarray,
        config: CalibrationConfig | None = None,
        filter_config: FilterConfig | None = None,
        backend: VisionBackend | None = None,
        matcher: StereoMatcher | None = None,
    ) -> None:
        """Initialize calibrator from a prior extrinsic guess.

        Args:
            rotation: 3x3 prior rotation taking camera A points into camera B
            translation: Prior translation; its norm fixes the scale
            camera_matrix: 3x3 intrinsic matrix shared by both cameras
            config: Calibration parameters
            filter_config: Filter parameters for image-driven calibration
            backend: Vision primitives; OpenCV if None
            matcher: Correspondence finder for `calibrate`; built from the
                other arguments if None

        Raises:
            ValueError: If the prior translation is zero
        """
        scale = float(np.linalg.norm(np.asarray(translation, dtype=np.float64)))
        if scale <= 0.0:
            raise ValueError("Prior translation must be non-zero to fix the scale")

        self._config = config or CalibrationConfig()
        self._camera_matrix = np.asarray(camera_matrix, dtype=np.float64)
        self._camera = PinholeCamera(CameraIntrinsics.from_matrix(self._camera_matrix))
        self._backend = backend or OpenCVBackend()
        self._matcher = matcher or StereoMatcher(
            self._camera_matrix,
            backend=backend,
            filter_config=filter_config,
            calibration_config=self._config,
        )

        self._prior = ExtrinsicEstimate.from_rt(rotation, translation, scale)
        self._estimate = self._prior
        self._buffer = CalibrationBuffer(self._config.max_buffer_size)
        self._pending_essential: np.ndarray | None = None
        self._pending_inliers: tuple[np.ndarray, np.ndarray] | None = None
        self._num_updates = 0

    def ingest(self, pts_a: np.ndarray, pts_b: np.ndarray) -> CalibrationStatus:
        """Buffer new correspondences and re-estimate the essential matrix.

        Args:
            pts_a: Nx2 pixels in camera A
            pts_b: Nx2 matching pixels in camera B

        Returns:
            ESTIMATED if a fresh essential matrix is available for
            `try_update`, INSUFFICIENT_DATA otherwise
        """
        pts_a = np.asarray(pts_a, dtype=np.float64).reshape(-1, 2)
        pts_b = np.asarray(pts_b, dtype=np.float64).reshape(-1, 2)
        if len(pts_a) != len(pts_b):
            raise ValueError(f"Got {len(pts_a)} points in A and {len(pts_b)} in B")

        self._buffer.extend(pts_a, pts_b)
        self._pending_essential = None
        self._pending_inliers = None

        if len(self._buffer) < self._config.min_essential_points:
            return CalibrationStatus.INSUFFICIENT_DATA

        buf_a, buf_b = self._buffer.arrays()
        essential, inliers = self._backend.estimate_essential(
            buf_a,
            buf_b,
            self._camera_matrix,
            self._config.ransac_confidence,
            self._config.ransac_threshold,
        )
        if essential is None:
            logger.debug("Essential matrix estimation failed on %d points", len(buf_a))
            return CalibrationStatus.INSUFFICIENT_DATA

        logger.info(
            "Essential matrix from %d points, %d inliers", len(buf_a), int(np.sum(inliers))
        )
        self._pending_essential = np.asarray(essential, dtype=np.float64)
        mask = np.asarray(inliers, dtype=bool).reshape(-1)
        if mask.any():
            buf_a, buf_b = buf_a[mask], buf_b[mask]
        self._pending_inliers = (buf_a, buf_b)
        return CalibrationStatus.ESTIMATED

    def try_update(self) -> CalibrationStatus:
        """Accept the latest essential matrix if it agrees with the held estimate.

        The essential matrix from the last `ingest` is consumed by this call.

        When the RANSAC inliers show no parallax once the candidate rotation
        is removed, the translation direction cannot be observed; the held
        direction is kept and only the rotation is gated.

        Returns:
            UPDATED if the estimate was replaced, NOT_UPDATED if the
            candidate was rejected, INSUFFICIENT_DATA if there is no fresh
            essential matrix or too few buffered correspondences
        """
        essential, inliers = self._pending_essential, self._pending_inliers
        self._pending_essential = None
        self._pending_inliers = None
        if essential is None or len(self._buffer) < self._config.min_calibration_points:
            return CalibrationStatus.INSUFFICIENT_DATA

        R1, R2, t = self._backend.decompose_essential(essential)
        t = np.asarray(t, dtype=np.float64).reshape(3)
        if t[0] > 0:
            t = -t

        previous = self._estimate
        rotation, rot_dist = _pick_rotation(previous.rotation, (R1, R2))

        inliers_a, inliers_b = inliers if inliers is not None else self._buffer.arrays()
        parallax = _median_parallax(inliers_a, inliers_b, rotation, self._camera_matrix)
        if parallax < self._config.min_parallax:
            # No baseline parallax: the decomposed direction is arbitrary
            logger.info("Parallax %.3f px, keeping translation direction", parallax)
            t = previous.direction
        trans_dist = float(np.linalg.norm(t - previous.direction))

        if rot_dist < self._config.rotation_threshold and trans_dist < self._config.translation_threshold:
            self._estimate = ExtrinsicEstimate.from_rt(rotation, t * previous.scale, previous.scale)
            self._num_updates += 1
            rpy = self._estimate.euler_degrees
            logger.info(
                "New relative pose R %.3f P %.3f Y %.3f deg, T %s",
                rpy[0], rpy[1], rpy[2], np.array2string(self._estimate.translation, precision=4),
            )
            return CalibrationStatus.UPDATED

        logger.warning(
            "Rejected extrinsic candidate: rotation distance %.4f, translation distance %.4f",
            rot_dist, trans_dist,
        )
        return CalibrationStatus.NOT_UPDATED

    def calibrate(self, image_a: np.ndarray, image_b: np.ndarray) -> CalibrationStatus:
        """Find correspondences in an image pair, ingest them and try an update.

        A matching-stage defect fails only this pair and is reported as
        MATCH_ERROR.
        """
        try:
            matches = self._matcher.find_correspondences(
                image_a,
                image_b,
                essential=self._estimate.essential_matrix,
                camera_a=self._camera,
                camera_b=self._camera,
            )
        except MatchIndexError as e:
            logger.error("Skipping image pair: %s", e)
            return CalibrationStatus.MATCH_ERROR

        if len(matches) < self._config.min_essential_points:
            return CalibrationStatus.INSUFFICIENT_DATA

        status = self.ingest(matches.pts_a, matches.pts_b)
        if status is not CalibrationStatus.ESTIMATED:
            return status
        return self.try_update()

    def snapshot(self) -> ExtrinsicEstimate:
        """Return a copy of the current estimate for use on another thread."""
        estimate = self._estimate
        return ExtrinsicEstimate(
            rotation=estimate.rotation,
            translation=estimate.translation,
            scale=estimate.scale,
            essential_matrix=estimate.essential_matrix,
        )

    def reset(self) -> None:
        """Drop buffered correspondences and restore the prior estimate."""
        self._buffer.clear()
        self._pending_essential = None
        self._pending_inliers = None
        self._estimate = self._prior
        self._num_updates = 0

    @property
    def estimate(self) -> ExtrinsicEstimate:
        return self._estimate

    @property
    def prior(self) -> ExtrinsicEstimate:
        return self._prior

    @property
    def state(self) -> CalibrationState:
        if self._num_updates > 0:
            return CalibrationState.CALIBRATED
        return CalibrationState.UNCERTAIN

    @property
    def buffer(self) -> CalibrationBuffer:
        return self._buffer

    @property
    def num_updates(self) -> int:
        return self._num_updates

    @property
    def scale(self) -> float:
        return self._estimate.scale
