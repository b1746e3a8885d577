"""Shared fixtures for the coherence pipeline tests."""

import numpy as np
import pandas as pd
import pytest

from wavelet_coherence.utils.config import Config

SAMPLE_RATE = 100  # Hz, dt = 0.01 s


def sine(n: int, freq_hz: float = 10.0, phase: float = 0.0) -> np.ndarray:
    t = np.arange(n) / SAMPLE_RATE
    return np.sin(2 * np.pi * freq_hz * t + phase)


def merged_frame(segments: dict, gap: int = 3) -> pd.DataFrame:
    """Build a merged sample table from {label: (speed, envelope)}.

    Unlabeled rows are inserted between segments, as between gestures in the
    recorded data.
    """
    parts = []
    for label, (speed, envelope) in segments.items():
        parts.append(pd.DataFrame({
            "gesture_id": [None] * gap,
            "speed": np.zeros(gap),
            "envelope": np.zeros(gap),
        }))
        parts.append(pd.DataFrame({
            "gesture_id": [label] * len(speed),
            "speed": np.asarray(speed, dtype=float),
            "envelope": np.asarray(envelope, dtype=float),
        }))
    return pd.concat(parts, ignore_index=True)


@pytest.fixture
def make_config(tmp_path):
    """Factory for small, fast configurations writing under tmp_path."""
    def _make(**overrides):
        params = dict(
            INPUT_FILE=str(tmp_path / "merged.csv"),
            OUT_BASE=str(tmp_path / "processed"),
            SEGMENT_COL="gesture_id",
            SPEED_COL="speed",
            ENVELOPE_COL="envelope",
            SAMPLE_RATE=SAMPLE_RATE,
            WAVELET_BACKEND="pycwt",
            DJ=1 / 12,
            LOWER_PERIOD=0.05,
            UPPER_PERIOD=0.2,
            MAKE_PVAL=True,
            N_SIM=20,
            SURROGATE_METHOD="white_noise",
            SEED=7,
            SIG_THRESHOLD=0.1,
            MIN_SAMPLES=2,
            DROP_MISSING_ENVELOPE=True,
            N_WORKERS=1,
        )
        params.update(overrides)
        return Config(**params)
    return _make


@pytest.fixture
def rng():
    return np.random.default_rng(1234)
