"""
Merging module for duplicated grid points.

This module provides:
- merge_group: Merge one group of samples into a MergedGridPoint
- GridPointBatchMerger: Merge a batch of groups, sequentially or in parallel
- GroupRanges / ranges_from_unique_index: Group boundaries into a sample arena
- MergedGridData: Output channels for a merged batch
"""

from .grid_point_merger import (
    Sample,
    MergedGridPoint,
    compute_weights,
    circular_residual,
    merge_group,
    merge_sample_arrays,
)
from .group_ranges import GroupRanges, ranges_from_unique_index, validate_ranges
from .batch_merger import GridPointBatchMerger, MergedGridData

__all__ = [
    "Sample",
    "MergedGridPoint",
    "compute_weights",
    "circular_residual",
    "merge_group",
    "merge_sample_arrays",
    "GroupRanges",
    "ranges_from_unique_index",
    "validate_ranges",
    "GridPointBatchMerger",
    "MergedGridData",
]
