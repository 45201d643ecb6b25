#!/usr/bin/env python3
"""Demo script for online stereo extrinsic calibration.

Projects a random 3D scene into two cameras with a known extrinsic,
starts the calibrator from a perturbed prior and feeds it one batch of
correspondences per "frame". Prints the estimate after every update.

Usage:
    uv run python examples/synthetic_calibration_demo.py
"""

import logging

import numpy as np

from vtrack import CalibrationStatus, OnlineStereoCalibrator


def rotation_z(angle: float) -> np.ndarray:
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def project(points: np.ndarray, K: np.ndarray) -> np.ndarray:
    uv = (K @ (points / points[:, 2:3]).T).T
    return uv[:, :2]


def main() -> None:
    """Run the synthetic calibration demo."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # Configuration
    K = np.array([[450.0, 0.0, 376.0], [0.0, 450.0, 240.0], [0.0, 0.0, 1.0]])
    true_R = rotation_z(np.radians(0.4))
    true_t = np.array([-0.11, 0.001, 0.0005])
    prior_R = rotation_z(np.radians(1.5))
    n_frames = 10
    points_per_frame = 40
    pixel_noise = 0.3

    rng = np.random.default_rng(0)
    calibrator = OnlineStereoCalibrator(prior_R, true_t, K)
    print(f"Prior:  {calibrator.estimate}")

    for i in range(n_frames):
        scene = np.column_stack(
            [
                rng.uniform(-4.0, 4.0, points_per_frame),
                rng.uniform(-3.0, 3.0, points_per_frame),
                rng.uniform(3.0, 15.0, points_per_frame),
            ]
        )
        pts_a = project(scene, K) + rng.normal(0, pixel_noise, (points_per_frame, 2))
        pts_b = project(scene @ true_R.T + true_t, K) + rng.normal(0, pixel_noise, (points_per_frame, 2))

        status = calibrator.ingest(pts_a, pts_b)
        if status is CalibrationStatus.ESTIMATED:
            status = calibrator.try_update()

        print(f"Frame {i:2d}: {status.value:18s} buffer {len(calibrator.buffer):4d}")

    print()
    print(f"Final:  {calibrator.estimate}")
    print(f"Truth:  yaw 0.40 deg, t={true_t}")


if __name__ == "__main__":
    main()
