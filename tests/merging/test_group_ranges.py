"""
Tests for group range construction and validation.
"""

import pytest
import numpy as np

from fouriergrid.exceptions import InvalidGroupError
from fouriergrid.merging.group_ranges import (
    GroupRanges,
    describe_invalid_group,
    ranges_from_unique_index,
    validate_ranges,
)


class TestGroupRanges:
    """Test GroupRanges container."""

    def test_iteration_and_lengths(self):
        ranges = GroupRanges(starts=[0, 3, 7], ends=[3, 7, 8])

        assert len(ranges) == 3
        assert list(ranges) == [(0, 3), (3, 7), (7, 8)]
        np.testing.assert_array_equal(ranges.lengths, [3, 4, 1])

    def test_length_mismatch_raises(self):
        with pytest.raises(InvalidGroupError, match="length mismatch"):
            GroupRanges(starts=[0, 1], ends=[1])


class TestRangesFromUniqueIndex:
    """Test conversion of the unique index boundary table."""

    def test_zero_based(self):
        unique_ind = np.array([0, 1, 4, 5, 8])
        multi_ind = np.array([1, 3])

        ranges = ranges_from_unique_index(multi_ind, unique_ind)

        assert list(ranges) == [(1, 4), (5, 8)]

    def test_one_based_tables(self):
        """1-based tables with a trailing terminator give the same ranges."""
        unique_ind = np.array([1, 2, 5, 6, 9])
        multi_ind = np.array([2, 4, 5])

        ranges = ranges_from_unique_index(multi_ind, unique_ind, one_based=True)

        assert list(ranges) == [(1, 4), (5, 8)]

    def test_out_of_table_position_raises(self):
        with pytest.raises(InvalidGroupError, match="outside the unique index table"):
            ranges_from_unique_index(np.array([4]), np.array([0, 1, 4, 5, 8]))

    def test_empty_multi_index(self):
        ranges = ranges_from_unique_index(np.array([], dtype=int), np.array([0, 3]))

        assert len(ranges) == 0


class TestValidateRanges:
    """Test range validation against the arena."""

    def test_valid_mask(self):
        ranges = GroupRanges(starts=[0, 3, 5, 8], ends=[3, 3, 4, 11])

        valid = validate_ranges(ranges, n_samples=10)

        np.testing.assert_array_equal(valid, [True, False, False, False])

    def test_gaps_allowed(self):
        ranges = GroupRanges(starts=[6, 1], ends=[9, 4])

        assert np.all(validate_ranges(ranges, n_samples=10))

    def test_overlap_raises(self):
        ranges = GroupRanges(starts=[0, 2], ends=[3, 5])

        with pytest.raises(InvalidGroupError, match="overlap") as exc_info:
            validate_ranges(ranges, n_samples=10)
        assert exc_info.value.group_index == 1

    def test_describe_invalid_group(self):
        ranges = GroupRanges(starts=[5, 2, 8], ends=[4, 2, 12])

        assert "before it starts" in describe_invalid_group(ranges, 0, 10)
        assert "empty" in describe_invalid_group(ranges, 1, 10)
        assert "outside" in describe_invalid_group(ranges, 2, 10)
