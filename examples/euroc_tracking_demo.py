#!/usr/bin/env python3
"""Demo script for stereo feature tracking on a EuRoC sequence.

Tracks features through the left camera, links them into the right
camera and prints per-frame statistics.

Usage:
    uv run python examples/euroc_tracking_demo.py [path/to/mav0]

Requirements:
    - EuRoC dataset downloaded to data/euroc/MH_01_easy/mav0/
"""

import sys
from pathlib import Path

import cv2

from vtrack import PinholeCamera, StereoFeatureTracker, TrackerConfig


def main() -> None:
    """Run the stereo tracking demo."""
    # Configuration
    dataset_path = Path(sys.argv[1] if len(sys.argv) > 1 else "data/euroc/MH_01_easy/mav0")
    max_frames = 300  # Set to None for all frames

    camera_left = PinholeCamera.from_yaml(dataset_path / "cam0" / "sensor.yaml")
    camera_right = PinholeCamera.from_yaml(dataset_path / "cam1" / "sensor.yaml")
    tracker = StereoFeatureTracker(camera_left, camera_right, TrackerConfig(max_cnt=150))

    left_images = sorted((dataset_path / "cam0" / "data").glob("*.png"))
    print(f"Processing {len(left_images)} frames...")
    print()

    for i, left_path in enumerate(left_images):
        if max_frames is not None and i >= max_frames:
            break

        left = cv2.imread(str(left_path), cv2.IMREAD_GRAYSCALE)
        right = cv2.imread(str(dataset_path / "cam1" / "data" / left_path.name), cv2.IMREAD_GRAYSCALE)
        timestamp = int(left_path.stem) * 1e-9

        frame = tracker.track_frame(timestamp, left, right)

        # Print progress every 50 frames
        if i % 50 == 0:
            print(
                f"Frame {i:4d}: "
                f"{frame.num_observations(0):4d} left, "
                f"{frame.num_observations(1):4d} right, "
                f"next id {tracker.next_id:5d}, "
                f"{frame.timing.total_ms:5.1f} ms"
            )

    print()
    print("Done!")


if __name__ == "__main__":
    main()
