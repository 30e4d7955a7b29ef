"""
Python implementation of the configuration and outcome types used by fouriergrid.

This module implements Pydantic models for type safety and validation of the
merge configuration and the per-batch outcome report.
"""

from typing import Literal, Optional
from pydantic import BaseModel, Field


class MergeConfig(BaseModel):
    """Parameters for the GridPointBatchMerger component."""

    epsilon: float = Field(
        1e-30,
        gt=0.0,
        le=1e-12,
        description="Stabilization constant added to distances and confidences to avoid division by exact zero"
    )
    num_workers: int = Field(
        1,
        ge=1,
        description="Number of worker threads used to merge independent groups; 1 runs sequentially"
    )
    use_vectorized: bool = Field(
        True,
        description="If true, range-based batches are merged with the numpy implementation instead of the per-group loop"
    )
    invalid_group_policy: Literal["raise", "sentinel"] = Field(
        "raise",
        description="'raise' aborts the batch on an invalid group, 'sentinel' writes a NaN record for that grid point"
    )
    phase_dispersion_tolerance_deg: float = Field(
        15.0,
        gt=0.0,
        description="Phase dispersion in degrees above which a merged grid point is flagged as phase-inconsistent"
    )


class MergeOutcome(BaseModel):
    """Outcome of merging one batch of duplicated grid points."""

    status: str = Field(
        description="Must be one of 'SUCCESS', 'WARNING', 'FAILURE'"
    )
    message: Optional[str] = Field(
        None,
        description="Human-readable message about the outcome"
    )
    n_groups: int = Field(
        0,
        description="Number of groups submitted for merging"
    )
    n_invalid_groups: int = Field(
        0,
        description="Number of groups replaced by a sentinel record"
    )
