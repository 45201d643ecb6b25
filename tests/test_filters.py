"""Tests for correspondence containers and match filters."""

import numpy as np
import pytest

from vtrack.exceptions import MatchIndexError
from vtrack.frontend.camera_model import CameraIntrinsics, PinholeCamera
from vtrack.frontend.correspondence import DescriptorMatch, Matches
from vtrack.frontend.filters import (
    FilterCascade,
    epipolar_residuals,
    filter_by_descriptor_distance,
    filter_by_displacement,
    filter_by_epipolar,
    filter_by_offset,
    filter_by_x,
    filter_by_y,
)


def make_matches(offsets_x, offsets_y=None, distances=None) -> Matches:
    """Build matches whose `a - b` offsets are the given values."""
    offsets_x = np.asarray(offsets_x, dtype=np.float32)
    n = len(offsets_x)
    offsets_y = np.zeros(n, dtype=np.float32) if offsets_y is None else np.asarray(offsets_y)
    distances = np.full(n, 10.0) if distances is None else np.asarray(distances)
    pts_b = np.column_stack([np.arange(n) * 5.0 + 100.0, np.arange(n) * 3.0 + 50.0])
    pts_a = pts_b + np.column_stack([offsets_x, offsets_y])
    return Matches(pts_a=pts_a, pts_b=pts_b, distances=distances)


class TestMatches:
    """Test suite for the Matches container."""

    def test_length_mismatch_raises(self):
        with pytest.raises(ValueError):
            Matches(pts_a=np.zeros((3, 2)), pts_b=np.zeros((2, 2)), distances=np.zeros(3))

    def test_empty(self):
        empty = Matches.empty()
        assert len(empty) == 0
        assert empty.pts_a.shape == (0, 2)

    def test_from_descriptor_matches_resolves_indices(self):
        kp_a = np.array([[0, 0], [10, 10], [20, 20]], dtype=np.float32)
        kp_b = np.array([[1, 1], [11, 11]], dtype=np.float32)
        raw = [DescriptorMatch(2, 0, 5.0), DescriptorMatch(0, 1, 7.0)]

        matches = Matches.from_descriptor_matches(raw, kp_a, kp_b)

        np.testing.assert_array_equal(matches.pts_a, [[20, 20], [0, 0]])
        np.testing.assert_array_equal(matches.pts_b, [[1, 1], [11, 11]])
        np.testing.assert_array_equal(matches.distances, [5.0, 7.0])

    def test_from_descriptor_matches_bad_index(self):
        """An out-of-range index is reported, not silently clipped."""
        kp_a = np.zeros((3, 2), dtype=np.float32)
        kp_b = np.zeros((2, 2), dtype=np.float32)
        raw = [DescriptorMatch(0, 0, 1.0), DescriptorMatch(1, 5, 1.0)]

        with pytest.raises(MatchIndexError) as exc_info:
            Matches.from_descriptor_matches(raw, kp_a, kp_b)

        assert exc_info.value.match_index == 1
        assert exc_info.value.train_idx == 5
        assert isinstance(exc_info.value, IndexError)

    def test_offsets_sign(self):
        matches = make_matches([3.0, -2.0], [1.0, 4.0])
        np.testing.assert_allclose(matches.offsets(0), [3.0, -2.0])
        np.testing.assert_allclose(matches.offsets(1), [1.0, 4.0])


class TestDescriptorDistanceFilter:
    """Test suite for the adaptive descriptor distance filter."""

    def test_floor_applies_when_best_match_is_small(self):
        matches = make_matches(np.zeros(5), distances=[10, 15, 30, 45, 50])
        kept = filter_by_descriptor_distance(matches, floor=40.0)
        np.testing.assert_allclose(kept.distances, [10, 15, 30])

    def test_twice_minimum_applies_when_above_floor(self):
        matches = make_matches(np.zeros(4), distances=[30, 50, 59, 60])
        kept = filter_by_descriptor_distance(matches, floor=40.0)
        np.testing.assert_allclose(kept.distances, [30, 50, 59])

    @pytest.mark.parametrize("seed", range(5))
    def test_idempotent(self, seed: int):
        rng = np.random.default_rng(seed)
        matches = make_matches(np.zeros(50), distances=rng.uniform(0, 100, 50))
        once = filter_by_descriptor_distance(matches)
        twice = filter_by_descriptor_distance(once)
        np.testing.assert_array_equal(once.distances, twice.distances)

    def test_empty(self):
        assert len(filter_by_descriptor_distance(Matches.empty())) == 0


class TestOffsetFilter:
    """Test suite for percentile offset trimming."""

    def test_drops_both_tails(self):
        matches = make_matches(np.arange(10, dtype=np.float32))
        kept = filter_by_x(matches, percent=0.05)
        # lo = 1, hi = 8: offsets strictly between 1 and 8 survive
        np.testing.assert_allclose(np.sort(kept.offsets(0)), [2, 3, 4, 5, 6, 7])

    def test_output_subset_of_input(self):
        rng = np.random.default_rng(3)
        matches = make_matches(rng.normal(0, 5, 40), rng.normal(0, 5, 40))
        kept = filter_by_y(filter_by_x(matches))
        original = {tuple(p) for p in matches.pts_a}
        assert all(tuple(p) in original for p in kept.pts_a)

    @pytest.mark.parametrize("num", [0, 1, 2, 3])
    def test_small_sets_collapse(self, num: int):
        matches = make_matches(np.arange(num, dtype=np.float32))
        assert len(filter_by_offset(matches, 0, percent=0.0)) == 0

    def test_identical_offsets_collapse(self):
        """All offsets equal: the open interval holds nothing."""
        matches = make_matches(np.full(20, 4.0))
        assert len(filter_by_x(matches)) == 0

    def test_bad_axis(self):
        with pytest.raises(ValueError):
            filter_by_offset(make_matches([1.0, 2.0]), axis=2)


class TestDisplacementFilter:
    """Test suite for the median displacement filter."""

    def test_drops_large_displacements(self):
        matches = make_matches([1.0, 1.1, 0.9, 1.0, 10.0])
        kept = filter_by_displacement(matches, ratio=1.5)
        assert len(kept) == 4
        assert np.all(kept.displacements() < 2.0)


class TestEpipolarFilter:
    """Test suite for the epipolar residual filter."""

    @pytest.fixture
    def camera(self) -> PinholeCamera:
        return PinholeCamera(CameraIntrinsics(fx=400, fy=400, cx=320, cy=240))

    def test_pure_horizontal_baseline(self, camera: PinholeCamera):
        """With E = [t]x for t along x, residual is proportional to the row difference."""
        essential = np.array([[0, 0, 0], [0, 0, 1], [0, -1, 0]], dtype=np.float64)
        matches = Matches(
            pts_a=[[300, 200], [320, 240]],
            pts_b=[[280, 200], [300, 280]],
            distances=[1, 1],
        )
        residuals = epipolar_residuals(matches, essential, camera)
        assert residuals[0] == pytest.approx(0.0, abs=1e-9)
        assert residuals[1] == pytest.approx(40.0 / 400.0)

        kept = filter_by_epipolar(matches, essential, camera, tolerance=0.01)
        assert len(kept) == 1


class TestFilterCascade:
    """Test suite for FilterCascade."""

    def test_default_stage_order(self):
        assert FilterCascade.default().stage_names == ["descriptor", "offset_x", "offset_y"]

    def test_stops_once_empty(self):
        calls = []

        def record(name):
            def stage(m):
                calls.append(name)
                return Matches.empty() if name == "second" else m

            return stage

        cascade = FilterCascade([("first", record("first")), ("second", record("second"))])
        cascade.append("third", record("third"))

        result = cascade(make_matches([1.0, 2.0, 3.0]))

        assert len(result) == 0
        assert calls == ["first", "second"]
        assert len(cascade) == 3

    def test_default_cascade_keeps_consistent_core(self):
        rng = np.random.default_rng(11)
        offsets_x = rng.normal(30.0, 1.0, 100)
        offsets_y = rng.normal(0.0, 1.0, 100)
        distances = rng.uniform(5, 30, 100)
        matches = make_matches(offsets_x, offsets_y, distances)

        kept = FilterCascade.default()(matches)

        assert 0 < len(kept) < len(matches)
        assert kept.offsets(0).min() > offsets_x.min()
        assert kept.offsets(0).max() < offsets_x.max()
