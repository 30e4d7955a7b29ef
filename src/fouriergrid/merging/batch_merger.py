"""
GridPointBatchMerger implementation for merging batches of duplicated grid points.

Applies the per-group merge to every group of a batch, either from a mapping of
materialized groups or from a sample arena plus group ranges.
"""

import numpy as np
import pandas as pd
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from fouriergrid.exceptions import (
    ConfigurationError,
    DataValidationError,
    GridMergeError,
    InvalidGroupError,
)
from fouriergrid.types.types_IDL import MergeConfig, MergeOutcome
from .grid_point_merger import (
    MergedGridPoint,
    Sample,
    circular_residual,
    merge_group,
    merge_sample_arrays,
)
from .group_ranges import GroupRanges, describe_invalid_group, validate_ranges

logger = logging.getLogger(__name__)

SAMPLE_COLUMNS = ["real_part", "imag_part", "distance", "confidence"]
OUTPUT_CHANNELS = [
    "magnitude",
    "real_part",
    "imag_part",
    "weighted_confidence",
    "weighted_distance",
    "phase_dispersion",
]


@dataclass
class MergedGridData:
    """Merged output channels, one entry per grid point."""

    grid_indices: np.ndarray
    magnitude: np.ndarray
    real_part: np.ndarray
    imag_part: np.ndarray
    weighted_confidence: np.ndarray
    weighted_distance: np.ndarray
    phase_dispersion: np.ndarray

    def __len__(self) -> int:
        return len(self.grid_indices)

    @classmethod
    def empty(cls, n_points: int = 0, grid_indices: Optional[np.ndarray] = None) -> "MergedGridData":
        """Create NaN-filled channels for n_points grid points."""
        if grid_indices is None:
            grid_indices = np.arange(n_points)
        channels = {name: np.full(n_points, np.nan) for name in OUTPUT_CHANNELS}
        return cls(grid_indices=np.asarray(grid_indices), **channels)

    @classmethod
    def from_points(
        cls, grid_indices: Sequence[int], points: Sequence[MergedGridPoint]
    ) -> "MergedGridData":
        data = cls.empty(len(points), np.asarray(grid_indices))
        for i, point in enumerate(points):
            for name in OUTPUT_CHANNELS:
                getattr(data, name)[i] = getattr(point, name)
        return data

    def point(self, i: int) -> MergedGridPoint:
        return MergedGridPoint(**{name: float(getattr(self, name)[i]) for name in OUTPUT_CHANNELS})

    def as_complex(self) -> np.ndarray:
        """Weighted complex value per grid point."""
        return self.real_part + 1j * self.imag_part

    def to_dataframe(self) -> pd.DataFrame:
        """Long-format table indexed by grid index."""
        df = pd.DataFrame({name: getattr(self, name) for name in OUTPUT_CHANNELS})
        df.index = pd.Index(self.grid_indices, name="grid_index")
        return df


class GridPointBatchMerger:
    """
    Merges every group of a batch into one record per grid point.

    Groups are independent, so the per-group work can be spread across worker
    threads; results land in pre-allocated slots in group order.
    """

    def __init__(self, config: Union[MergeConfig, Dict, None] = None):
        """
        Initialize merger with configuration.

        Args:
            config: MergeConfig, a dict of MergeConfig fields, or None for defaults
        """
        self.config = self._coerce_config(config)
        self.last_outcome: Optional[MergeOutcome] = None
        logger.info(
            f"GridPointBatchMerger initialized (workers={self.config.num_workers}, "
            f"policy={self.config.invalid_group_policy})"
        )

    @staticmethod
    def _coerce_config(config) -> MergeConfig:
        if config is None:
            return MergeConfig()
        if isinstance(config, MergeConfig):
            return config
        try:
            return MergeConfig(**config)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid merge configuration: {e}") from e

    def merge_all(self, group_of: Mapping[int, Sequence[Sample]]) -> List[MergedGridPoint]:
        """
        Merge every group of a mapping from output index to samples.

        Args:
            group_of: Output grid index -> ordered samples of that group

        Returns:
            One MergedGridPoint per output index, in ascending index order

        Raises:
            InvalidGroupError: If a group is empty and the policy is 'raise'
        """
        output_indices = sorted(group_of)
        logger.info(f"Merging {len(output_indices)} groups")

        invalid: List[int] = []

        def merge_one(i: int) -> MergedGridPoint:
            output_index = output_indices[i]
            try:
                return merge_group(group_of[output_index], self.config.epsilon)
            except InvalidGroupError as e:
                if self.config.invalid_group_policy == "raise":
                    raise InvalidGroupError(
                        f"Output index {output_index}: {e}", group_index=output_index
                    ) from e
                invalid.append(output_index)
                return MergedGridPoint.sentinel()

        try:
            results = self._map_groups(merge_one, len(output_indices))
        except GridMergeError as e:
            self._record_failure(len(output_indices), e)
            raise
        self._record_outcome(len(output_indices), sorted(invalid))
        return results

    def merge_ranges(
        self,
        real_part: np.ndarray,
        imag_part: np.ndarray,
        distance: np.ndarray,
        confidence: np.ndarray,
        ranges: GroupRanges,
        grid_indices: Optional[np.ndarray] = None,
    ) -> MergedGridData:
        """
        Merge groups described by ranges into a sample arena.

        By default, uses the vectorized implementation. Set
        config.use_vectorized = False to merge group by group.

        Args:
            real_part: Real part of every raw sample, shape (N,)
            imag_part: Imaginary part of every raw sample, shape (N,)
            distance: Snapping distance of every raw sample, shape (N,)
            confidence: Confidence weight of every raw sample, shape (N,)
            ranges: Half-open [start, end) sample range of each group
            grid_indices: Output grid index of each group; defaults to 0..G-1

        Returns:
            MergedGridData with one entry per group, in range order
        """
        merge = self._vectorized_merge_ranges if self.config.use_vectorized else self._loop_merge_ranges
        try:
            return merge(real_part, imag_part, distance, confidence, ranges, grid_indices)
        except GridMergeError as e:
            self._record_failure(len(ranges), e)
            raise

    def vectorized_merge_ranges(
        self,
        real_part: np.ndarray,
        imag_part: np.ndarray,
        distance: np.ndarray,
        confidence: np.ndarray,
        ranges: GroupRanges,
        grid_indices: Optional[np.ndarray] = None,
    ) -> MergedGridData:
        """
        VECTORIZED version: merge all groups at once with per-group bincount sums.

        Produces the same records as merging each group separately.
        """
        try:
            return self._vectorized_merge_ranges(
                real_part, imag_part, distance, confidence, ranges, grid_indices
            )
        except GridMergeError as e:
            self._record_failure(len(ranges), e)
            raise

    def _vectorized_merge_ranges(
        self,
        real_part: np.ndarray,
        imag_part: np.ndarray,
        distance: np.ndarray,
        confidence: np.ndarray,
        ranges: GroupRanges,
        grid_indices: Optional[np.ndarray] = None,
    ) -> MergedGridData:
        arena = self._validate_arena(real_part, imag_part, distance, confidence)
        n_groups = len(ranges)
        grid_indices = self._resolve_grid_indices(grid_indices, n_groups)
        logger.info(f"VECTORIZED merging {n_groups} groups from {len(arena[0])} samples")

        valid = self._check_ranges(ranges, len(arena[0]))
        output = MergedGridData.empty(n_groups, grid_indices)
        valid_idx = np.flatnonzero(valid)
        n_valid = len(valid_idx)
        if n_valid == 0:
            self._record_outcome(n_groups, grid_indices[~valid].tolist())
            return output

        # Gather the samples of every valid group into one contiguous block
        lengths = ranges.lengths[valid_idx]
        starts = ranges.starts[valid_idx]
        offsets = np.cumsum(lengths) - lengths
        labels = np.repeat(np.arange(n_valid), lengths)
        sample_idx = np.arange(lengths.sum()) + np.repeat(starts - offsets, lengths)
        re, im, dist, conf = (a[sample_idx] for a in arena)

        eps = self.config.epsilon

        def group_sum(values: np.ndarray) -> np.ndarray:
            return np.bincount(labels, weights=values, minlength=n_valid)

        score_sum = group_sum((conf + eps) / (dist + eps))
        weights = conf / (dist + eps) / score_sum[labels]

        real_out = group_sum(weights * re)
        imag_out = group_sum(weights * im)
        output.magnitude[valid_idx] = group_sum(weights * np.sqrt(re * re + im * im))
        output.weighted_confidence[valid_idx] = group_sum(weights * conf)
        output.weighted_distance[valid_idx] = group_sum(weights * dist)
        output.real_part[valid_idx] = real_out
        output.imag_part[valid_idx] = imag_out

        weighted_phase = np.arctan2(imag_out, real_out)
        residuals = circular_residual(np.arctan2(im, re), weighted_phase[labels])
        sigma_sum = group_sum(weights * residuals * residuals)
        weight_sum = group_sum(weights)
        output.phase_dispersion[valid_idx] = np.sqrt(sigma_sum / (weight_sum + eps))

        self._record_outcome(n_groups, grid_indices[~valid].tolist())
        return output

    def _loop_merge_ranges(
        self,
        real_part: np.ndarray,
        imag_part: np.ndarray,
        distance: np.ndarray,
        confidence: np.ndarray,
        ranges: GroupRanges,
        grid_indices: Optional[np.ndarray] = None,
    ) -> MergedGridData:
        """Merge group by group on views into the arena."""
        real_part, imag_part, distance, confidence = self._validate_arena(
            real_part, imag_part, distance, confidence
        )
        n_groups = len(ranges)
        grid_indices = self._resolve_grid_indices(grid_indices, n_groups)
        logger.info(f"Merging {n_groups} groups from {len(real_part)} samples")

        valid = self._check_ranges(ranges, len(real_part))
        bounds = list(ranges)

        def merge_one(i: int) -> MergedGridPoint:
            if not valid[i]:
                return MergedGridPoint.sentinel()
            start, end = bounds[i]
            return merge_sample_arrays(
                real_part[start:end],
                imag_part[start:end],
                distance[start:end],
                confidence[start:end],
                self.config.epsilon,
            )

        points = self._map_groups(merge_one, n_groups)
        self._record_outcome(n_groups, grid_indices[~valid].tolist())
        return MergedGridData.from_points(grid_indices, points)

    def merge_dataframe(
        self, df: pd.DataFrame, group_column: str = "grid_index"
    ) -> MergedGridData:
        """
        Merge a long-format table of samples grouped by a grid index column.

        Args:
            df: One row per raw sample with real_part, imag_part, distance,
                confidence and the group column
            group_column: Column holding each sample's output grid index

        Returns:
            MergedGridData with one entry per distinct grid index, ascending
        """
        missing = [c for c in SAMPLE_COLUMNS + [group_column] if c not in df.columns]
        if missing:
            error = DataValidationError(f"DataFrame is missing columns: {missing}")
            self._record_failure(0, error)
            raise error

        if len(df) == 0:
            logger.warning("No samples to merge")
            return MergedGridData.empty()

        # Stable sort keeps the caller's sample order within each group
        df_sorted = df.sort_values(group_column, kind="stable")
        keys = df_sorted[group_column].to_numpy()
        grid_indices, starts = np.unique(keys, return_index=True)
        ends = np.append(starts[1:], len(keys))

        return self.merge_ranges(
            *(df_sorted[c].to_numpy(dtype=np.float64) for c in SAMPLE_COLUMNS),
            ranges=GroupRanges(starts=starts, ends=ends),
            grid_indices=grid_indices,
        )

    def get_merge_statistics(self, merged: MergedGridData) -> Dict:
        """
        Calculate summary statistics about merged data.

        Sentinel records are counted separately and excluded from the
        channel statistics.

        Args:
            merged: Output of a merge

        Returns:
            Dictionary of statistics
        """
        sentinel_mask = np.isnan(merged.phase_dispersion)
        good = ~sentinel_mask
        tolerance_rad = np.deg2rad(self.config.phase_dispersion_tolerance_deg)

        stats = {
            "total_grid_points": len(merged),
            "sentinel_grid_points": int(np.sum(sentinel_mask)),
            "phase_tolerance_deg": self.config.phase_dispersion_tolerance_deg,
        }
        if not np.any(good):
            stats["phase_inconsistent_grid_points"] = 0
            stats["phase_inconsistent_indices"] = []
            return stats

        dispersion = merged.phase_dispersion[good]
        flagged = dispersion > tolerance_rad
        stats["phase_inconsistent_grid_points"] = int(np.sum(flagged))
        stats["phase_inconsistent_indices"] = merged.grid_indices[good][flagged].tolist()

        for name in ("magnitude", "weighted_confidence", "weighted_distance", "phase_dispersion"):
            values = getattr(merged, name)[good]
            stats[f"{name}_statistics"] = {
                "mean": float(np.mean(values)),
                "std": float(np.std(values)),
                "min": float(np.min(values)),
                "max": float(np.max(values)),
                "median": float(np.median(values)),
            }

        if np.any(flagged):
            logger.warning(
                f"{int(np.sum(flagged))} grid points exceed phase dispersion "
                f"tolerance of {self.config.phase_dispersion_tolerance_deg} deg"
            )
        return stats

    def _map_groups(self, merge_one: Callable[[int], MergedGridPoint], n_groups: int) -> List:
        """Apply merge_one to every group index, writing into disjoint slots."""
        results: List = [None] * n_groups
        n_workers = min(self.config.num_workers, n_groups)

        if n_workers <= 1:
            for i in range(n_groups):
                results[i] = merge_one(i)
            return results

        def run_chunk(chunk: np.ndarray) -> None:
            for i in chunk:
                results[i] = merge_one(int(i))

        chunks = np.array_split(np.arange(n_groups), n_workers)
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            futures = [executor.submit(run_chunk, chunk) for chunk in chunks]
            # Submission order surfaces the lowest failing group first
            for future in futures:
                future.result()
        return results

    def _check_ranges(self, ranges: GroupRanges, n_samples: int) -> np.ndarray:
        valid = validate_ranges(ranges, n_samples)
        if np.all(valid):
            return valid

        invalid_idx = np.flatnonzero(~valid)
        if self.config.invalid_group_policy == "raise":
            first = int(invalid_idx[0])
            raise InvalidGroupError(
                describe_invalid_group(ranges, first, n_samples), group_index=first
            )
        return valid

    def _record_failure(self, n_groups: int, error: Exception) -> None:
        self.last_outcome = MergeOutcome(
            status="FAILURE", message=str(error), n_groups=n_groups
        )
        logger.error(f"Merge failed: {error}")

    def _record_outcome(self, n_groups: int, invalid: List) -> None:
        if invalid:
            logger.warning(
                f"Replaced {len(invalid)} invalid groups with sentinel records: {invalid[:10]}"
            )
            self.last_outcome = MergeOutcome(
                status="WARNING",
                message=f"{len(invalid)} of {n_groups} groups were invalid",
                n_groups=n_groups,
                n_invalid_groups=len(invalid),
            )
        else:
            self.last_outcome = MergeOutcome(
                status="SUCCESS",
                message=f"Merged {n_groups} groups",
                n_groups=n_groups,
            )
        logger.info(self.last_outcome.message)

    @staticmethod
    def _resolve_grid_indices(grid_indices: Optional[np.ndarray], n_groups: int) -> np.ndarray:
        if grid_indices is None:
            return np.arange(n_groups)
        grid_indices = np.asarray(grid_indices)
        if len(grid_indices) != n_groups:
            raise DataValidationError(
                f"Got {len(grid_indices)} grid indices for {n_groups} groups"
            )
        return grid_indices

    @staticmethod
    def _validate_arena(real_part, imag_part, distance, confidence):
        arrays = tuple(
            np.asarray(a, dtype=np.float64)
            for a in (real_part, imag_part, distance, confidence)
        )
        if any(a.ndim != 1 for a in arrays):
            raise DataValidationError("Sample arrays must be one-dimensional")
        if len({len(a) for a in arrays}) != 1:
            raise DataValidationError("Array length mismatch in sample data")
        if np.any(arrays[2] < 0) or np.any(arrays[3] < 0):
            raise DataValidationError("Distances and confidences must be non-negative")
        return arrays
