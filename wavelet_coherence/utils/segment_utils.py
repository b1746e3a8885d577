"""
Segment selection for the merged gesture/speech dataset.

This module provides functions for:
- Listing the labeled gesture segments present in the sample table
- Extracting the paired speed/envelope series of one segment
"""

from __future__ import annotations
import warnings
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from .config import CFG, Config


class SegmentDataError(ValueError):
    """Raised when a segment's series cannot be handed to the coherence analysis."""

    def __init__(self, segment_id, message: str):
        self.segment_id = segment_id
        super().__init__(f"Segment {segment_id}: {message}")


class DegenerateSegmentError(SegmentDataError):
    """Raised when a segment has too few valid samples to analyse."""


def list_segment_ids(samples: pd.DataFrame, cfg: Optional[Config] = None) -> List:
    """List the distinct non-null segment labels in order of first appearance.

    Args:
        samples: Merged sample table
        cfg: Configuration (default: global CFG)

    Returns:
        List of segment identifiers
    """
    cfg = cfg or CFG
    labels = samples[cfg.SEGMENT_COL].dropna()
    return list(pd.unique(labels))


def select_segment(
    samples: pd.DataFrame,
    segment_id,
    cfg: Optional[Config] = None
) -> Tuple[np.ndarray, np.ndarray]:
    """Extract the speed and envelope series of one segment.

    Rows with a missing speed value are removed from both series, so the
    speed/envelope pairing at each retained time index is preserved. Rows
    with a missing envelope value are also removed when
    cfg.DROP_MISSING_ENVELOPE is set; otherwise they pass through.

    Args:
        samples: Merged sample table (time-ordered rows)
        segment_id: Label of the segment to extract
        cfg: Configuration (default: global CFG)

    Returns:
        Tuple of (speed, envelope) float arrays of equal length

    Raises:
        SegmentDataError: If the segment label is not present in the table
        DegenerateSegmentError: If fewer than cfg.MIN_SAMPLES valid rows remain
    """
    cfg = cfg or CFG
    segment = samples.loc[samples[cfg.SEGMENT_COL] == segment_id,
                          [cfg.SPEED_COL, cfg.ENVELOPE_COL]]
    if segment.empty:
        raise SegmentDataError(segment_id, "label not present in the sample table")

    # Kinematic gaps are always dropped
    segment = segment[segment[cfg.SPEED_COL].notna()]

    n_env_missing = int(segment[cfg.ENVELOPE_COL].isna().sum())
    if n_env_missing and cfg.DROP_MISSING_ENVELOPE:
        segment = segment[segment[cfg.ENVELOPE_COL].notna()]
    elif n_env_missing:
        warnings.warn(
            f"Segment {segment_id}: {n_env_missing} missing envelope values kept "
            "(DROP_MISSING_ENVELOPE is off)"
        )

    if len(segment) < cfg.MIN_SAMPLES:
        raise DegenerateSegmentError(
            segment_id,
            f"only {len(segment)} valid samples (minimum {cfg.MIN_SAMPLES})"
        )

    speed = segment[cfg.SPEED_COL].to_numpy(dtype=float)
    envelope = segment[cfg.ENVELOPE_COL].to_numpy(dtype=float)
    return speed, envelope
