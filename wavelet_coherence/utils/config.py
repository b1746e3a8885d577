"""
Configuration for the gesture-speech wavelet coherence pipeline.

This module centralizes all configuration parameters for the coherence
analysis, including paths, column names, wavelet parameters, significance
testing options, and output flags.
"""

from dataclasses import dataclass
from pathlib import Path
import os
from dotenv import load_dotenv

# Load environment variables from .env file in the project root (if present)
load_dotenv(Path(__file__).parent.parent.parent / ".env")

# Backends able to compute cross-wavelet coherence
WAVELET_BACKENDS = ("pycwt", "waveletcomp")

# Surrogate series generators used for the pycwt significance test
SURROGATE_METHODS = ("white_noise", "shuffle", "fourier_rand", "ar1")


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment ('1', 'true', 'yes' are True)."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    """Coherence analysis configuration.

    All parameters can be overridden via environment variables or by
    modifying this dataclass.
    """

    # === Path Configuration ===
    _BASE_DIR: str = str(Path(__file__).parent.parent)
    INPUT_FILE: str = os.getenv(
        "COHERENCE_INPUT_FILE",
        str(Path(_BASE_DIR) / "data" / "merged_gesture_speech.csv")
    )
    OUT_BASE: str = os.getenv(
        "COHERENCE_OUT_BASE",
        str(Path(_BASE_DIR) / "data" / "processed")
    )

    # === Input Columns ===
    SEGMENT_COL: str = os.getenv("COHERENCE_SEGMENT_COL", "gesture_id")
    SPEED_COL: str = os.getenv("COHERENCE_SPEED_COL", "speed")
    ENVELOPE_COL: str = os.getenv("COHERENCE_ENVELOPE_COL", "envelope")

    # === Sampling ===
    # Rate of the merged motion/envelope time series
    SAMPLE_RATE: float = float(os.getenv("COHERENCE_SAMPLE_RATE", 100))  # Hz

    # === Wavelet Parameters ===
    # Options: 'pycwt', 'waveletcomp' (R, needs rpy2)
    WAVELET_BACKEND: str = os.getenv("COHERENCE_BACKEND", "pycwt")
    DJ: float = float(os.getenv("COHERENCE_DJ", 1 / 50))  # Octave fraction between scales
    LOWER_PERIOD: float = float(os.getenv("COHERENCE_LOWER_PERIOD", 0.1))  # seconds
    UPPER_PERIOD: float = float(os.getenv("COHERENCE_UPPER_PERIOD", 1.0))  # seconds

    # === Significance Testing ===
    MAKE_PVAL: bool = _env_bool("COHERENCE_MAKE_PVAL", True)
    N_SIM: int = int(os.getenv("COHERENCE_N_SIM", 100))  # Surrogate simulations
    # Options: 'white_noise', 'shuffle', 'fourier_rand', 'ar1'
    SURROGATE_METHOD: str = os.getenv("COHERENCE_SURROGATE_METHOD", "white_noise")
    SEED: int = int(os.getenv("COHERENCE_SEED", 42))
    # Looser than 0.05: surrogate coherence tests are noisy on short segments
    SIG_THRESHOLD: float = float(os.getenv("COHERENCE_SIG_THRESHOLD", 0.1))

    # === Segment Filtering ===
    MIN_SAMPLES: int = int(os.getenv("COHERENCE_MIN_SAMPLES", 2))
    # Drop rows with missing envelope too (False keeps them and lets the
    # oracle reject the segment)
    DROP_MISSING_ENVELOPE: bool = _env_bool("COHERENCE_DROP_MISSING_ENVELOPE", True)

    # === Execution ===
    N_WORKERS: int = int(os.getenv("COHERENCE_WORKERS", 1))

    # === Output Flags ===
    SAVE_SEGMENT_RESULTS: bool = True   # Per-segment result CSVs
    SAVE_SUMMARY: bool = True           # Per-segment summary table

    # === Validation ===
    # Required columns in the merged dataset
    REQUIRED_COLS: list = None

    def __post_init__(self):
        """Initialize computed fields and validate configuration."""
        if self.REQUIRED_COLS is None:
            self.REQUIRED_COLS = [self.SEGMENT_COL, self.SPEED_COL, self.ENVELOPE_COL]

        if self.SAMPLE_RATE <= 0:
            raise ValueError(f"SAMPLE_RATE must be positive, got {self.SAMPLE_RATE}")
        if self.DJ <= 0:
            raise ValueError(f"DJ must be positive, got {self.DJ}")
        if not (0 < self.LOWER_PERIOD < self.UPPER_PERIOD):
            raise ValueError(
                "Period bounds must satisfy 0 < LOWER_PERIOD < UPPER_PERIOD, "
                f"got LOWER_PERIOD={self.LOWER_PERIOD}, UPPER_PERIOD={self.UPPER_PERIOD}"
            )
        if not (0.0 <= self.SIG_THRESHOLD <= 1.0):
            raise ValueError(f"SIG_THRESHOLD must lie in [0, 1], got {self.SIG_THRESHOLD}")
        if self.WAVELET_BACKEND not in WAVELET_BACKENDS:
            raise ValueError(
                f"Unknown WAVELET_BACKEND '{self.WAVELET_BACKEND}'. "
                f"Options: {WAVELET_BACKENDS}"
            )
        if self.SURROGATE_METHOD not in SURROGATE_METHODS:
            raise ValueError(
                f"Unknown SURROGATE_METHOD '{self.SURROGATE_METHOD}'. "
                f"Options: {SURROGATE_METHODS}"
            )
        if self.MAKE_PVAL and self.N_SIM < 1:
            raise ValueError(f"N_SIM must be >= 1 when MAKE_PVAL is set, got {self.N_SIM}")
        if self.MIN_SAMPLES < 2:
            raise ValueError(f"MIN_SAMPLES must be at least 2, got {self.MIN_SAMPLES}")
        if self.N_WORKERS < 1:
            raise ValueError(f"N_WORKERS must be >= 1, got {self.N_WORKERS}")

    @property
    def sampling_interval(self) -> float:
        """Time between consecutive samples in seconds."""
        return 1.0 / self.SAMPLE_RATE

    def analysis_settings(self) -> dict:
        """Settings that determine a segment's significant-period rows."""
        return {
            "segment_col": self.SEGMENT_COL,
            "speed_col": self.SPEED_COL,
            "envelope_col": self.ENVELOPE_COL,
            "sample_rate": float(self.SAMPLE_RATE),
            "backend": self.WAVELET_BACKEND,
            "dj": float(self.DJ),
            "lower_period": float(self.LOWER_PERIOD),
            "upper_period": float(self.UPPER_PERIOD),
            "n_sim": int(self.N_SIM),
            "surrogate_method": self.SURROGATE_METHOD,
            "seed": int(self.SEED),
            "sig_threshold": float(self.SIG_THRESHOLD),
            "min_samples": int(self.MIN_SAMPLES),
            "drop_missing_envelope": bool(self.DROP_MISSING_ENVELOPE),
        }


# Global configuration instance
CFG = Config()
