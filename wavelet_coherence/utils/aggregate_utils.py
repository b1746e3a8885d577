"""
Aggregation of significant coherence results across gesture segments.

Each segment contributes one row per analysed period whose time-averaged
coherence p-value is below the significance threshold. Per-segment frames are
merged once at the end of a run into a table sorted by segment and period.
"""

from __future__ import annotations
from typing import Iterable, List

import numpy as np
import pandas as pd

from .wavelet_utils import CoherenceResult

# Column order of the persisted result table
RESULT_COLUMNS = ["segment_id", "coherence", "period", "pvalue", "phase", "phase_relation"]

# Absolute tolerance (radians) for the phase boundaries 0, +-pi/2, +-pi
PHASE_TOL = 1e-9


def nanmean_phase(angle: np.ndarray) -> np.ndarray:
    """Mean phase per period over time, ignoring missing values.

    Periods where every value is missing yield NaN rather than 0.
    """
    angle = np.asarray(angle, dtype=float)
    out = np.full(angle.shape[0], np.nan)
    valid = ~np.isnan(angle).all(axis=1)
    if valid.any():
        out[valid] = np.nanmean(angle[valid], axis=1)
    return out


def classify_phase(phase: float) -> str:
    """Describe a phase difference between speed (x) and envelope (y).

    Quadrants follow the usual reading of cross-wavelet phase arrows:
    |phase| < pi/2 is in-phase, otherwise anti-phase; the sign tells which
    series leads. Phases within PHASE_TOL of 0, +-pi/2 or +-pi are the
    boundary cases 'in_phase', 'quadrature' and 'anti_phase'.

    Examples:
        >>> classify_phase(0.3)
        'in_phase_speed_leads'
        >>> classify_phase(-2.5)
        'anti_phase_speed_leads'
        >>> classify_phase(3.5e-19)
        'in_phase'
    """
    if phase is None or np.isnan(phase):
        return "undefined"
    magnitude = abs(phase)
    if magnitude <= PHASE_TOL:
        return "in_phase"
    if abs(magnitude - np.pi) <= PHASE_TOL:
        return "anti_phase"
    if abs(magnitude - np.pi / 2) <= PHASE_TOL:
        return "quadrature"
    if magnitude < np.pi / 2:
        return "in_phase_speed_leads" if phase > 0 else "in_phase_envelope_leads"
    return "anti_phase_envelope_leads" if phase > 0 else "anti_phase_speed_leads"


def empty_results() -> pd.DataFrame:
    """Result table with no rows and the standard columns."""
    return pd.DataFrame({
        "segment_id": pd.Series(dtype=object),
        "coherence": pd.Series(dtype=float),
        "period": pd.Series(dtype=float),
        "pvalue": pd.Series(dtype=float),
        "phase": pd.Series(dtype=float),
        "phase_relation": pd.Series(dtype=object),
    })


def extract_significant_periods(
    result: CoherenceResult,
    segment_id,
    threshold: float = 0.1
) -> pd.DataFrame:
    """Select the significant periods of one segment's coherence analysis.

    A period is kept when its time-averaged coherence p-value is strictly
    below the threshold. For each kept period the average coherence, average
    p-value, period and mean phase (NaN-ignoring) are recorded and tagged
    with the segment identifier.

    Args:
        result: Coherence analysis of one segment
        segment_id: Segment label to tag the rows with
        threshold: Significance threshold (default 0.1)

    Returns:
        DataFrame with RESULT_COLUMNS, empty if nothing is significant

    Raises:
        ValueError: If the analysis was run without significance testing
    """
    if not result.has_pval:
        raise ValueError(
            f"Segment {segment_id}: coherence result has no p-values; "
            "run the analysis with significance testing enabled"
        )

    avg_pval = np.asarray(result.coherence_avg_pval, dtype=float)
    keep = np.flatnonzero(avg_pval < threshold)
    if keep.size == 0:
        return empty_results()

    phase = nanmean_phase(np.asarray(result.angle)[keep])
    rows = pd.DataFrame({
        "segment_id": [segment_id] * keep.size,
        "coherence": np.asarray(result.coherence_avg, dtype=float)[keep],
        "period": np.asarray(result.period, dtype=float)[keep],
        "pvalue": avg_pval[keep],
        "phase": phase,
    })
    rows["phase_relation"] = [classify_phase(p) for p in phase]
    return rows[RESULT_COLUMNS]


def combine_segment_results(frames: Iterable[pd.DataFrame]) -> pd.DataFrame:
    """Merge per-segment result frames into one table.

    Rows are sorted by segment id, then period, so the merged table does not
    depend on the order segments were processed in.
    """
    frames = [f for f in frames if f is not None and not f.empty]
    if not frames:
        return empty_results()
    combined = pd.concat(frames, ignore_index=True)[RESULT_COLUMNS]
    # Mixed label types (e.g. ints and strings) sort by their string form
    try:
        return combined.sort_values(["segment_id", "period"], kind="mergesort",
                                    ignore_index=True)
    except TypeError:
        key = combined["segment_id"].astype(str)
        return (combined.assign(_key=key)
                .sort_values(["_key", "period"], kind="mergesort", ignore_index=True)
                .drop(columns="_key"))


def circular_mean(angles: np.ndarray) -> float:
    """Circular mean of angles in radians (NaN if no valid angle)."""
    angles = np.asarray(angles, dtype=float)
    angles = angles[~np.isnan(angles)]
    if angles.size == 0:
        return float("nan")
    return float(np.angle(np.mean(np.exp(1j * angles))))


def summarize_by_segment(results: pd.DataFrame, segment_ids: List = None) -> pd.DataFrame:
    """Summarize the significant periods of each segment.

    Args:
        results: Combined result table
        segment_ids: Segments to report; segments without significant periods
            get n_significant = 0 (default: segments present in results)

    Returns:
        DataFrame with one row per segment: n_significant, mean_coherence,
        peak_period (period of maximal coherence), circular_phase
    """
    if segment_ids is None:
        segment_ids = list(pd.unique(results["segment_id"]))

    summary = []
    for seg in segment_ids:
        rows = results[results["segment_id"] == seg]
        if rows.empty:
            summary.append({"segment_id": seg, "n_significant": 0,
                            "mean_coherence": np.nan, "peak_period": np.nan,
                            "circular_phase": np.nan})
            continue
        summary.append({
            "segment_id": seg,
            "n_significant": int(len(rows)),
            "mean_coherence": float(rows["coherence"].mean()),
            "peak_period": float(rows.loc[rows["coherence"].idxmax(), "period"]),
            "circular_phase": circular_mean(rows["phase"].to_numpy()),
        })
    return pd.DataFrame(summary, columns=["segment_id", "n_significant", "mean_coherence",
                                          "peak_period", "circular_phase"])
