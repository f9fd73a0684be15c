"""Normalized range computations."""

from .normalized_range import (
    highest_normalized_range,
    normalized_range,
    observations_frame,
    rank_normalized_ranges,
    to_results,
)

__all__ = [
    "highest_normalized_range",
    "normalized_range",
    "observations_frame",
    "rank_normalized_ranges",
    "to_results",
]
