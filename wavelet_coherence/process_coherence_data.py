#!/usr/bin/env python3
"""
Gesture-Speech Wavelet Coherence Pipeline

Processes the merged motion/speech dataset:
1. Load time-aligned gesture speed and speech envelope samples
2. Select each labeled gesture segment (dropping missing kinematic samples)
3. Run a cross-wavelet coherence analysis with significance testing
4. Keep periods whose average coherence p-value is below the threshold
5. Save per-segment and combined result tables

Usage:
    python -m wavelet_coherence.process_coherence_data [--input FILE] [--overwrite]

Arguments:
    --input: Merged dataset CSV (default: COHERENCE_INPUT_FILE)
    --out-base: Output directory (default: COHERENCE_OUT_BASE)
    --threshold: Significance threshold for average coherence p-values
    --workers: Number of segments analysed concurrently
    --backend: Wavelet backend ('pycwt' or 'waveletcomp')
    --no-pval: Skip significance testing (no result table is produced)
    --fail-fast: Stop at the first segment that fails
    --overwrite: Recompute segments with existing result files

Output structure:
    data/processed/
    ├── segments/                 # Significant periods per gesture segment
    ├── combined/                 # All segments combined + per-segment summary
    └── processing_summary.json
"""

from __future__ import annotations
import argparse
import dataclasses
import hashlib
import warnings
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pandas as pd
from tqdm import tqdm

from .utils.config import CFG, Config, WAVELET_BACKENDS
from .utils.segment_utils import DegenerateSegmentError, list_segment_ids, select_segment
from .utils.wavelet_utils import analyze_coherency, segment_seed
from .utils.aggregate_utils import (
    combine_segment_results,
    empty_results,
    extract_significant_periods,
    summarize_by_segment
)
from .utils.io_utils import (
    ensure_output_dirs,
    load_merged_dataset,
    save_json_summary,
    save_results,
    read_segment_results,
    write_segment_results
)

STATUS_ICONS = {'success': '✓', 'cached': '○', 'skipped': '○', 'error': '✗'}


def _segment_settings(cfg: Config, speed, envelope) -> Dict:
    """Analysis settings plus a digest of the segment's samples."""
    digest = hashlib.sha1()
    digest.update(speed.tobytes())
    digest.update(envelope.tobytes())
    return {**cfg.analysis_settings(), 'data_sha1': digest.hexdigest()}


def process_single_segment(
    samples: pd.DataFrame,
    segment_id,
    cfg: Config,
    output_dirs: Optional[dict] = None,
    overwrite: bool = False,
    fail_fast: bool = False
) -> Tuple[Dict, pd.DataFrame]:
    """Analyse one gesture segment.

    Stored rows are reused only when they were written for the same label,
    the same samples and the same analysis settings.

    Args:
        samples: Merged sample table
        segment_id: Segment label
        cfg: Configuration
        output_dirs: Dictionary of output directories (None: write nothing)
        overwrite: Whether to recompute segments with existing result files
        fail_fast: Re-raise analysis errors instead of reporting them

    Returns:
        Tuple of (status dict, significant-period rows)
    """
    try:
        speed, envelope = select_segment(samples, segment_id, cfg)
    except DegenerateSegmentError as e:
        if fail_fast:
            raise
        warnings.warn(f"Skipping {e}")
        return {
            'status': 'skipped',
            'reason': 'degenerate_segment',
            'segment_id': segment_id,
            'error': str(e)
        }, empty_results()

    segment_dir = None
    if output_dirs is not None and cfg.SAVE_SEGMENT_RESULTS and cfg.MAKE_PVAL:
        segment_dir = output_dirs['segments']
    settings = _segment_settings(cfg, speed, envelope)

    if segment_dir is not None and not overwrite:
        rows = read_segment_results(segment_dir, segment_id, settings)
        if rows is not None:
            return {
                'status': 'cached',
                'segment_id': segment_id,
                'significant_periods': len(rows)
            }, rows

    try:
        result = analyze_coherency(
            speed,
            envelope,
            dt=cfg.sampling_interval,
            dj=cfg.DJ,
            lower_period=cfg.LOWER_PERIOD,
            upper_period=cfg.UPPER_PERIOD,
            make_pval=cfg.MAKE_PVAL,
            n_sim=cfg.N_SIM,
            method=cfg.SURROGATE_METHOD,
            seed=segment_seed(cfg.SEED, segment_id),
            backend=cfg.WAVELET_BACKEND,
            segment_id=segment_id
        )

        if not cfg.MAKE_PVAL:
            return {
                'status': 'success',
                'segment_id': segment_id,
                'samples': len(speed),
                'periods': len(result.period),
                'significant_periods': None
            }, empty_results()

        rows = extract_significant_periods(result, segment_id, threshold=cfg.SIG_THRESHOLD)

        if segment_dir is not None:
            write_segment_results(segment_dir, segment_id, rows, settings)

        return {
            'status': 'success',
            'segment_id': segment_id,
            'samples': len(speed),
            'periods': len(result.period),
            'significant_periods': len(rows)
        }, rows

    except Exception as e:
        if fail_fast:
            raise
        return {
            'status': 'error',
            'segment_id': segment_id,
            'error': f"{type(e).__name__}: {e}"
        }, empty_results()


def _status_line(status: Dict) -> str:
    icon = STATUS_ICONS.get(status['status'], '?')
    detail = status.get('error') or f"{status.get('significant_periods')} significant periods"
    return f"{icon} {str(status['segment_id'])[:24]:24} | {status['status']:8} | {detail}"


def run_segments(
    samples: pd.DataFrame,
    segment_ids: List,
    cfg: Config,
    output_dirs: Optional[dict] = None,
    overwrite: bool = False,
    fail_fast: bool = False,
    verbose: bool = True
) -> Tuple[List[Dict], pd.DataFrame]:
    """Analyse all segments, sequentially or with a thread pool.

    Per-segment rows are collected separately and merged once at the end,
    so the result table is the same for any number of workers.

    Returns:
        Tuple of (status dicts in segment order, combined result table)
    """
    statuses: Dict[object, Dict] = {}
    frames: Dict[object, pd.DataFrame] = {}

    def record(status, rows):
        statuses[status['segment_id']] = status
        frames[status['segment_id']] = rows
        if verbose:
            tqdm.write(_status_line(status))

    pbar = tqdm(total=len(segment_ids), desc="Segments", unit="seg", disable=not verbose)

    if cfg.N_WORKERS > 1:
        with ThreadPoolExecutor(max_workers=cfg.N_WORKERS) as executor:
            future_to_segment = {
                executor.submit(process_single_segment, samples, seg, cfg,
                                output_dirs, overwrite, fail_fast): seg
                for seg in segment_ids
            }
            for future in as_completed(future_to_segment):
                record(*future.result())
                pbar.update(1)
    else:
        for seg in segment_ids:
            record(*process_single_segment(samples, seg, cfg, output_dirs,
                                           overwrite, fail_fast))
            pbar.update(1)
    pbar.close()

    ordered = [statuses[seg] for seg in segment_ids]
    combined = combine_segment_results(frames[seg] for seg in segment_ids)
    return ordered, combined


def print_summary(statuses: List[Dict]) -> None:
    """Print status counts, skip reasons and the first errors."""
    print("\n" + "="*60)
    print("Processing Summary")
    print("="*60)

    by_status = {}
    for s in statuses:
        by_status.setdefault(s['status'], []).append(s)

    print(f"Successful: {len(by_status.get('success', []))}")
    print(f"Cached:     {len(by_status.get('cached', []))}")
    print(f"Skipped:    {len(by_status.get('skipped', []))}")
    print(f"Errors:     {len(by_status.get('error', []))}")

    skipped = by_status.get('skipped', [])
    if skipped:
        skip_reasons = {}
        for s in skipped:
            reason = s.get('reason', 'unknown')
            skip_reasons[reason] = skip_reasons.get(reason, 0) + 1
        print("\nSkip reasons:")
        for reason, count in skip_reasons.items():
            print(f"  - {reason}: {count}")

    errors = by_status.get('error', [])
    if errors:
        print("\nErrors (showing first 5):")
        for err in errors[:5]:
            print(f"  - {err.get('segment_id', 'unknown')}: {err.get('error', 'unknown error')}")


def run_coherence_pipeline(
    input_path: Optional[str] = None,
    cfg: Optional[Config] = None,
    overwrite: bool = False,
    fail_fast: bool = False,
    verbose: bool = True
) -> Tuple[pd.DataFrame, List[Dict]]:
    """Run the complete coherence pipeline.

    Args:
        input_path: Merged dataset CSV (default: cfg.INPUT_FILE)
        cfg: Configuration (default: global CFG)
        overwrite: Whether to recompute segments with existing result files
        fail_fast: Stop at the first failing segment
        verbose: Print progress and summary

    Returns:
        Tuple of (combined result table, per-segment status dicts)
    """
    cfg = cfg or CFG
    log = print if verbose else (lambda *a, **k: None)

    log("="*60)
    log("Gesture-Speech Wavelet Coherence Pipeline")
    log("="*60)

    output_dirs = ensure_output_dirs(cfg)
    log(f"✓ Output directories ready: {cfg.OUT_BASE}")

    log("\nLoading merged dataset...")
    samples = load_merged_dataset(input_path, cfg)
    segment_ids = list_segment_ids(samples, cfg)
    log(f"✓ Loaded {len(samples)} labeled samples in {len(segment_ids)} segments")

    if not segment_ids:
        log("No labeled segments found.")
        return empty_results(), []

    log(f"\nAnalysing segments (backend={cfg.WAVELET_BACKEND}, "
        f"periods {cfg.LOWER_PERIOD}-{cfg.UPPER_PERIOD}s, workers={cfg.N_WORKERS})...")
    statuses, results = run_segments(samples, segment_ids, cfg, output_dirs,
                                     overwrite, fail_fast, verbose)

    if verbose:
        print_summary(statuses)

    n_ok = sum(s['status'] in ('success', 'cached') for s in statuses)
    if n_ok > 0 and cfg.MAKE_PVAL:
        results_file = save_results(results, output_dirs['combined'])
        log(f"\n✓ Combined results saved: {results_file}")
        log(f"  Significant rows: {len(results)}")
        log(f"  Segments with significant periods: {results['segment_id'].nunique()}")

        if cfg.SAVE_SUMMARY:
            analysed = [s['segment_id'] for s in statuses if s['status'] in ('success', 'cached')]
            summary_file = save_results(summarize_by_segment(results, analysed),
                                        output_dirs['combined'],
                                        "coherence_summary_by_segment.csv")
            log(f"✓ Segment summary saved: {summary_file}")
    elif n_ok == 0:
        log("\nNo segments processed successfully.")

    summary = {
        'config': {
            'input_file': str(input_path or cfg.INPUT_FILE),
            'backend': cfg.WAVELET_BACKEND,
            'sample_rate': cfg.SAMPLE_RATE,
            'dj': cfg.DJ,
            'lower_period': cfg.LOWER_PERIOD,
            'upper_period': cfg.UPPER_PERIOD,
            'make_pval': cfg.MAKE_PVAL,
            'n_sim': cfg.N_SIM,
            'surrogate_method': cfg.SURROGATE_METHOD,
            'seed': cfg.SEED,
            'sig_threshold': cfg.SIG_THRESHOLD,
            'drop_missing_envelope': cfg.DROP_MISSING_ENVELOPE
        },
        'segments_total': len(statuses),
        'segments_processed': sum(s['status'] == 'success' for s in statuses),
        'segments_cached': sum(s['status'] == 'cached' for s in statuses),
        'segments_skipped': sum(s['status'] == 'skipped' for s in statuses),
        'segments_errored': sum(s['status'] == 'error' for s in statuses),
        'significant_rows': len(results),
        'errors': [s for s in statuses if s['status'] in ('error', 'skipped')]
    }
    summary_path = Path(cfg.OUT_BASE) / "processing_summary.json"
    save_json_summary(summary_path, summary)
    log(f"\n✓ Processing summary saved: {summary_path}")

    log("\n" + "="*60)
    log("Pipeline complete!")
    log("="*60)
    return results, statuses


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Cross-wavelet coherence between gesture speed and speech envelope"
    )
    parser.add_argument('--input', default=None, help='Merged dataset CSV')
    parser.add_argument('--out-base', default=None, help='Output directory')
    parser.add_argument('--threshold', type=float, default=None,
                        help='Significance threshold for average coherence p-values')
    parser.add_argument('--workers', type=int, default=None,
                        help='Number of segments analysed concurrently')
    parser.add_argument('--backend', choices=WAVELET_BACKENDS, default=None,
                        help='Wavelet coherence backend')
    parser.add_argument('--no-pval', action='store_true',
                        help='Skip significance testing')
    parser.add_argument('--fail-fast', action='store_true',
                        help='Stop at the first segment that fails')
    parser.add_argument('--overwrite', action='store_true',
                        help='Overwrite existing segment result files')
    return parser


def config_from_args(args: argparse.Namespace, base: Optional[Config] = None) -> Config:
    """Apply command-line overrides to a configuration."""
    overrides = {}
    if args.out_base is not None:
        overrides['OUT_BASE'] = args.out_base
    if args.threshold is not None:
        overrides['SIG_THRESHOLD'] = args.threshold
    if args.workers is not None:
        overrides['N_WORKERS'] = args.workers
    if args.backend is not None:
        overrides['WAVELET_BACKEND'] = args.backend
    if args.no_pval:
        overrides['MAKE_PVAL'] = False
    return dataclasses.replace(base or CFG, **overrides)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    cfg = config_from_args(args)
    _, statuses = run_coherence_pipeline(
        input_path=args.input,
        cfg=cfg,
        overwrite=args.overwrite,
        fail_fast=args.fail_fast
    )
    return 1 if any(s['status'] == 'error' for s in statuses) else 0


if __name__ == "__main__":
    raise SystemExit(main())
