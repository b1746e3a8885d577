"""I/O utilities for the coherence pipeline.

This module handles reading the merged gesture/speech dataset, creating the
output directory structure and writing result tables and run summaries.
"""
from __future__ import annotations
from pathlib import Path
from typing import Dict, Optional
import json
import re
import zlib
import pandas as pd

from .config import CFG, Config


# ---------- Directory and file management ------------------------------------
def ensure_output_dirs(cfg: Optional[Config] = None) -> Dict[str, Path]:
    """Create the output directory structure if it doesn't exist.

    Returns:
        Dictionary mapping 'segments' and 'combined' to their directories
    """
    cfg = cfg or CFG
    base = Path(cfg.OUT_BASE)
    dirs = {
        "segments": base / "segments",
        "combined": base / "combined",
    }
    for d in dirs.values():
        d.mkdir(parents=True, exist_ok=True)
    return dirs


def segment_filename(segment_id, suffix: str = "_coherence") -> str:
    """Filesystem-safe CSV name for a segment label.

    The readable part keeps letters, digits and '_.-'; the CRC-32 of the full
    label keeps labels apart that sanitize to the same text.

    Examples:
        >>> segment_filename('GID_1')
        'GID_1_d183004e_coherence.csv'
        >>> segment_filename('GID 1')
        'GID_1_79246577_coherence.csv'
    """
    label = str(segment_id)
    safe = re.sub(r"[^A-Za-z0-9_.-]+", "_", label).strip("_") or "segment"
    return f"{safe}_{zlib.crc32(label.encode('utf-8')):08x}{suffix}.csv"


# ---------- Input --------------------------------------------------------------
def load_merged_dataset(path: Optional[str] = None, cfg: Optional[Config] = None) -> pd.DataFrame:
    """Load the merged motion/envelope dataset.

    Rows are kept in file order (time order). Rows with a missing segment
    label are dropped.

    Args:
        path: CSV file (default: cfg.INPUT_FILE)
        cfg: Configuration (default: global CFG)

    Returns:
        DataFrame with at least the segment, speed and envelope columns

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If required columns are missing
    """
    cfg = cfg or CFG
    filepath = Path(path or cfg.INPUT_FILE)
    if not filepath.exists():
        raise FileNotFoundError(f"Merged dataset not found: {filepath}")

    df = pd.read_csv(filepath)
    validate_columns(df, cfg)

    # Unlabeled samples lie between gestures
    return df[df[cfg.SEGMENT_COL].notna()].reset_index(drop=True)


def validate_columns(df: pd.DataFrame, cfg: Optional[Config] = None) -> None:
    """Check that the configured columns exist and speed/envelope are numeric.

    Raises:
        ValueError: Naming the missing or non-numeric columns
    """
    cfg = cfg or CFG
    missing = [c for c in cfg.REQUIRED_COLS if c not in df.columns]
    if missing:
        raise ValueError(
            f"Missing required columns: {missing}\n"
            f"Available columns: {list(df.columns)}"
        )
    non_numeric = [c for c in (cfg.SPEED_COL, cfg.ENVELOPE_COL)
                   if not pd.api.types.is_numeric_dtype(df[c])]
    if non_numeric:
        raise ValueError(f"Columns must be numeric: {non_numeric}")


# ---------- File writing operations -------------------------------------------
def write_segment_results(out_dir: Path, segment_id, rows: pd.DataFrame,
                          settings: Optional[dict] = None) -> Path:
    """Write one segment's significant periods to <out_dir>/<segment>_coherence.csv.

    The settings the rows were computed with go to a JSON file of the same
    name, which read_segment_results checks before reusing the rows.
    """
    out_path = Path(out_dir) / segment_filename(segment_id)
    rows.to_csv(out_path, index=False)
    save_json_summary(out_path.with_suffix(".json"), {
        "segment_id": str(segment_id),
        "settings": settings or {},
    })
    return out_path


def read_segment_results(out_dir: Path, segment_id,
                         settings: Optional[dict] = None) -> Optional[pd.DataFrame]:
    """Load previously written rows of a segment if they are still valid.

    Args:
        out_dir: Directory holding the per-segment files
        segment_id: Segment label
        settings: Settings the rows must have been computed with

    Returns:
        The stored rows tagged with segment_id, or None when the files are
        missing, were written for another label or with other settings
    """
    csv_path = Path(out_dir) / segment_filename(segment_id)
    meta_path = csv_path.with_suffix(".json")
    if not (csv_path.exists() and meta_path.exists()):
        return None

    with open(meta_path) as f:
        meta = json.load(f)
    expected = json.loads(json.dumps(settings or {}, default=str))
    if meta.get("segment_id") != str(segment_id) or meta.get("settings") != expected:
        return None

    rows = pd.read_csv(csv_path, dtype={"segment_id": str})
    if not (rows["segment_id"] == str(segment_id)).all():
        return None
    # CSV stores labels as text; restore the original label object
    rows["segment_id"] = [segment_id] * len(rows)
    return rows


def save_results(results: pd.DataFrame, out_dir: Path,
                 filename: str = "coherence_results_all.csv") -> Path:
    """Write the combined result table."""
    out_path = Path(out_dir) / filename
    out_path.parent.mkdir(parents=True, exist_ok=True)
    results.to_csv(out_path, index=False)
    return out_path


def save_json_summary(path: Path, payload: dict) -> None:
    """Save a dictionary as formatted JSON file.

    Args:
        path: Output file path
        payload: Dictionary to save as JSON
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(payload, f, indent=2, default=str)
