"""
Utility modules for gesture-speech wavelet coherence analysis.

This package provides segment selection, the cross-wavelet coherence
analysis, aggregation of significant periods and result I/O.
"""

from .config import CFG, Config
from .segment_utils import (
    SegmentDataError,
    DegenerateSegmentError,
    list_segment_ids,
    select_segment
)
from .wavelet_utils import CoherenceResult, analyze_coherency, segment_seed
from .aggregate_utils import (
    RESULT_COLUMNS,
    extract_significant_periods,
    combine_segment_results,
    summarize_by_segment
)

__all__ = [
    'CFG',
    'Config',
    'SegmentDataError',
    'DegenerateSegmentError',
    'list_segment_ids',
    'select_segment',
    'CoherenceResult',
    'analyze_coherency',
    'segment_seed',
    'RESULT_COLUMNS',
    'extract_significant_periods',
    'combine_segment_results',
    'summarize_by_segment',
]
