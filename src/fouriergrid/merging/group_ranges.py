"""
Half-open sample ranges describing which arena samples belong to each group.
"""

import numpy as np
import logging
from dataclasses import dataclass
from typing import Iterator, Tuple

from fouriergrid.exceptions import InvalidGroupError

logger = logging.getLogger(__name__)


@dataclass
class GroupRanges:
    """Per-group [start, end) bounds into a contiguous sample arena."""

    starts: np.ndarray
    ends: np.ndarray

    def __post_init__(self):
        self.starts = np.asarray(self.starts, dtype=np.int64).ravel()
        self.ends = np.asarray(self.ends, dtype=np.int64).ravel()
        if len(self.starts) != len(self.ends):
            raise InvalidGroupError(
                f"Group boundary length mismatch: {len(self.starts)} starts, "
                f"{len(self.ends)} ends"
            )

    def __len__(self) -> int:
        return len(self.starts)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        for start, end in zip(self.starts, self.ends):
            yield int(start), int(end)

    @property
    def lengths(self) -> np.ndarray:
        return self.ends - self.starts


def ranges_from_unique_index(
    multi_ind: np.ndarray, unique_ind: np.ndarray, one_based: bool = False
) -> GroupRanges:
    """
    Build group ranges from a unique-index boundary table.

    unique_ind[m] is the first arena position of the m-th distinct grid point,
    with a trailing sentinel marking the end of the last one. multi_ind lists
    the distinct grid points that were matched more than once; group i covers
    [unique_ind[multi_ind[i]], unique_ind[multi_ind[i] + 1]).

    Args:
        multi_ind: Positions into unique_ind of the duplicated grid points
        unique_ind: Boundary lookup table, sorted ascending
        one_based: If true, both tables use 1-based positions and the last
            entry of multi_ind is a terminator that does not describe a group

    Returns:
        GroupRanges with one entry per duplicated grid point
    """
    multi_ind = np.asarray(multi_ind, dtype=np.int64).ravel()
    unique_ind = np.asarray(unique_ind, dtype=np.int64).ravel()

    if one_based:
        multi_ind = multi_ind[:-1] - 1
        unique_ind = unique_ind - 1

    if len(multi_ind) and (multi_ind.min() < 0 or multi_ind.max() + 1 >= len(unique_ind)):
        raise InvalidGroupError(
            "multi_ind references a position outside the unique index table"
        )

    ranges = GroupRanges(starts=unique_ind[multi_ind], ends=unique_ind[multi_ind + 1])
    logger.debug(f"Built {len(ranges)} group ranges from unique index table")
    return ranges


def validate_ranges(ranges: GroupRanges, n_samples: int) -> np.ndarray:
    """
    Check every group range against the arena.

    Returns a boolean mask of valid groups. A group is invalid when it is empty,
    its end precedes its start, or it falls outside [0, n_samples). Overlap
    between otherwise valid groups is always an error for the whole batch.

    Raises:
        InvalidGroupError: If two valid groups share arena samples
    """
    starts, ends = ranges.starts, ranges.ends
    valid = (ends > starts) & (starts >= 0) & (ends <= n_samples)

    valid_idx = np.flatnonzero(valid)
    order = valid_idx[np.argsort(starts[valid_idx], kind="stable")]
    overlaps = np.flatnonzero(starts[order][1:] < ends[order][:-1])
    if len(overlaps):
        first, second = order[overlaps[0]], order[overlaps[0] + 1]
        raise InvalidGroupError(
            f"Groups {first} and {second} overlap: "
            f"[{starts[first]}, {ends[first]}) and [{starts[second]}, {ends[second]})",
            group_index=int(second),
        )

    return valid


def describe_invalid_group(ranges: GroupRanges, group_index: int, n_samples: int) -> str:
    """Human-readable reason a group failed validation."""
    start, end = int(ranges.starts[group_index]), int(ranges.ends[group_index])
    if end < start:
        return f"group {group_index} ends at {end} before it starts at {start}"
    if end == start:
        return f"group {group_index} is empty"
    return f"group {group_index} range [{start}, {end}) is outside the {n_samples}-sample arena"
