"""ORB keypoint detection and description for stereo correspondence search."""

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class Features:
    """Container for detected image features.

    Attributes:
        keypoints: Tuple of OpenCV KeyPoint objects
        descriptors: Nx32 array of ORB binary descriptors (uint8), or None if no features
    """

    keypoints: tuple[cv2.KeyPoint, ...]
    descriptors: np.ndarray | None

    @property
    def points(self) -> np.ndarray:
        """Return Nx2 array of keypoint (x, y) coordinates."""
        if len(self.keypoints) == 0:
            return np.empty((0, 2), dtype=np.float32)
        return np.array([kp.pt for kp in self.keypoints], dtype=np.float32)

    def __len__(self) -> int:
        """Return number of detected features."""
        return len(self.keypoints)


class FeatureDetector:
    """ORB detector that can spread its budget over an image grid.

    With a 1x1 grid this is a plain ORB detector. With a larger grid each
    cell gets `n_features / (cols * rows)` features, which keeps strong
    texture in one corner of the image from starving the rest of it. A
    well-spread correspondence set conditions the essential matrix far
    better than a clustered one.
    """

    def __init__(
        self,
        n_features: int = 1000,
        scale_factor: float = 1.2,
        n_levels: int = 8,
        edge_threshold: int = 31,
        fast_threshold: int = 20,
        wta_k: int = 2,
        grid_cols: int = 1,
        grid_rows: int = 1,
    ) -> None:
        """Initialize ORB detector with configurable parameters.

        Args:
            n_features: Maximum number of features to retain over the whole image
            scale_factor: Pyramid decimation ratio (>1.0)
            n_levels: Number of pyramid levels for multi-scale detection
            edge_threshold: Border margin (pixels) where features are not detected
            fast_threshold: Threshold for FAST corner detection
            wta_k: Points compared per BRIEF element. 3 or 4 requires
                NORM_HAMMING2 for matching.
            grid_cols: Number of grid columns
            grid_rows: Number of grid rows
        """
        if grid_cols < 1 or grid_rows < 1:
            raise ValueError(f"Grid must be at least 1x1, got {grid_cols}x{grid_rows}")

        per_cell = max(1, n_features // (grid_cols * grid_rows))
        self._orb = cv2.ORB_create(
            nfeatures=per_cell,
            scaleFactor=scale_factor,
            nlevels=n_levels,
            edgeThreshold=edge_threshold,
            WTA_K=wta_k,
            scoreType=cv2.ORB_HARRIS_SCORE,
            patchSize=31,
            fastThreshold=fast_threshold,
        )
        self._n_features = n_features
        self._wta_k = wta_k
        self._grid_cols = grid_cols
        self._grid_rows = grid_rows

    def detect(self, image: np.ndarray, mask: np.ndarray | None = None) -> Features:
        """Detect and describe ORB features in an image.

        Args:
            image: Grayscale image (uint8)
            mask: Optional binary mask where 255 = detect, 0 = ignore.
                Must be same size as image.

        Returns:
            Features object containing keypoints and descriptors
        """
        if self._grid_cols == 1 and self._grid_rows == 1:
            keypoints, descriptors = self._orb.detectAndCompute(image, mask)
            if keypoints is None:
                keypoints = []
            return Features(keypoints=tuple(keypoints), descriptors=descriptors)

        return self._detect_by_region(image, mask)

    def _detect_by_region(
        self, image: np.ndarray, mask: np.ndarray | None
    ) -> Features:
        """Run ORB in every grid cell and shift keypoints back to image coordinates."""
        height, width = image.shape[:2]
        cell_w = width // self._grid_cols
        cell_h = height // self._grid_rows

        keypoints: list[cv2.KeyPoint] = []
        descriptor_blocks: list[np.ndarray] = []

        for i in range(self._grid_cols):
            for j in range(self._grid_rows):
                x0, y0 = cell_w * i, cell_h * j
                cell = image[y0 : y0 + cell_h, x0 : x0 + cell_w]
                cell_mask = None
                if mask is not None:
                    cell_mask = mask[y0 : y0 + cell_h, x0 : x0 + cell_w]

                kps, desc = self._orb.detectAndCompute(cell, cell_mask)
                if kps is None or desc is None or len(kps) == 0:
                    continue

                for kp in kps:
                    keypoints.append(
                        cv2.KeyPoint(
                            kp.pt[0] + x0,
                            kp.pt[1] + y0,
                            kp.size,
                            kp.angle,
                            kp.response,
                            kp.octave,
                            kp.class_id,
                        )
                    )
                descriptor_blocks.append(desc)

        if len(keypoints) == 0:
            return Features(keypoints=(), descriptors=None)

        return Features(
            keypoints=tuple(keypoints), descriptors=np.vstack(descriptor_blocks)
        )

    @property
    def n_features(self) -> int:
        """Return maximum number of features to detect."""
        return self._n_features

    @property
    def norm_type(self) -> int:
        """Return the OpenCV norm matching these descriptors."""
        return cv2.NORM_HAMMING if self._wta_k == 2 else cv2.NORM_HAMMING2
