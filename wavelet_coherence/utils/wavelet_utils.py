"""
Cross-wavelet coherence analysis of paired time series.

The wavelet transform, coherence and phase computations are delegated to a
wavelet library; this module only adapts their outputs to one result layout:

- pycwt backend: coherence/phase via pycwt.wct, p-values from surrogate
  series run through the same transform
- waveletcomp backend: R's WaveletComp::analyze.coherency via rpy2

Both return a CoherenceResult with periods along axis 0 and time along axis 1.
"""

from __future__ import annotations
import threading
import zlib
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pandas as pd
import pycwt
from scipy.signal import lfilter

from .config import WAVELET_BACKENDS, SURROGATE_METHODS
from .segment_utils import SegmentDataError

# Morlet wavelet with the usual nondimensional frequency
MORLET_W0 = 6

# WaveletComp names of the surrogate generators
_WAVELETCOMP_METHODS = {
    "white_noise": "white.noise",
    "shuffle": "shuffle",
    "fourier_rand": "Fourier.rand",
    "ar1": "AR",
}


@dataclass
class CoherenceResult:
    """Output of one cross-wavelet coherence analysis.

    Attributes:
        coherence: Coherence magnitude, shape (n_periods, n_times)
        angle: Phase difference in radians, shape (n_periods, n_times)
        period: Analysed periods in seconds, shape (n_periods,)
        coherence_avg: Coherence averaged over time, shape (n_periods,)
        pval: Pointwise coherence p-values (None without significance testing)
        coherence_avg_pval: P-values of coherence_avg (None without testing)
        coi: Cone of influence as the largest reliable period in seconds at
            each time point, shape (n_times,)
    """
    coherence: np.ndarray
    angle: np.ndarray
    period: np.ndarray
    coherence_avg: np.ndarray
    pval: Optional[np.ndarray] = None
    coherence_avg_pval: Optional[np.ndarray] = None
    coi: Optional[np.ndarray] = None

    @property
    def has_pval(self) -> bool:
        return self.coherence_avg_pval is not None


def segment_seed(base_seed: int, segment_id) -> int:
    """Derive a stable per-segment seed so results do not depend on run order."""
    return int(np.random.SeedSequence([base_seed, zlib.crc32(str(segment_id).encode())])
               .generate_state(1)[0])


def validate_pair(x: np.ndarray, y: np.ndarray, dt: float, lower_period: float,
                  segment_id=None) -> Tuple[np.ndarray, np.ndarray]:
    """Check that two series can be analysed together.

    Raises:
        SegmentDataError: On length mismatch, missing/infinite values, constant
            series, or a segment shorter than the lowest analysed period
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if x.ndim != 1 or y.ndim != 1:
        raise SegmentDataError(segment_id, "series must be one-dimensional")
    if x.size != y.size:
        raise SegmentDataError(
            segment_id, f"series lengths differ (speed={x.size}, envelope={y.size})"
        )
    if not np.isfinite(x).all() or not np.isfinite(y).all():
        n_bad = int((~np.isfinite(x)).sum() + (~np.isfinite(y)).sum())
        raise SegmentDataError(segment_id, f"{n_bad} missing or infinite values in series")
    if np.std(x) == 0 or np.std(y) == 0:
        raise SegmentDataError(segment_id, "constant series has no wavelet power")
    if x.size * dt < lower_period:
        raise SegmentDataError(
            segment_id,
            f"duration {x.size * dt:.3f}s is shorter than the lowest period {lower_period}s"
        )
    return x, y


# ---------- pycwt backend -------------------------------------------------------
def _scale_grid(dj: float, lower_period: float, upper_period: float,
                mother: pycwt.Morlet) -> Tuple[float, int]:
    """Smallest scale and number of suborders covering [lower_period, upper_period]."""
    s0 = lower_period / mother.flambda()
    J = int(np.floor(np.log2(upper_period / lower_period) / dj))
    return s0, J


def _wct(x, y, dt, dj, s0, J, mother):
    """Coherence, phase, periods and cone of influence from pycwt.wct."""
    WCT, aWCT, coi, freq, _ = pycwt.wct(
        x, y, dt, dj=dj, s0=s0, J=J, sig=False, wavelet=mother, normalize=True
    )
    coherence = np.clip(np.real(np.asarray(WCT)), 0.0, 1.0)
    return coherence, np.asarray(aWCT, dtype=float), 1.0 / np.asarray(freq), np.asarray(coi)


def make_surrogate(series: np.ndarray, method: str, rng: np.random.Generator) -> np.ndarray:
    """Generate a surrogate series preserving the chosen null-model property.

    Args:
        series: Original series
        method: 'white_noise', 'shuffle', 'fourier_rand' or 'ar1'
        rng: Random generator

    Returns:
        Surrogate series of the same length
    """
    n = series.size
    if method == "white_noise":
        return rng.standard_normal(n)
    if method == "shuffle":
        return rng.permutation(series)
    if method == "fourier_rand":
        # Keep the amplitude spectrum, randomize phases
        mean = series.mean()
        spectrum = np.fft.rfft(series - mean)
        phases = rng.uniform(0.0, 2.0 * np.pi, spectrum.size)
        phases[0] = 0.0
        if n % 2 == 0:
            phases[-1] = 0.0
        return np.fft.irfft(np.abs(spectrum) * np.exp(1j * phases), n=n) + mean
    if method == "ar1":
        g, _, _ = pycwt.ar1(series)
        return lfilter([1.0], [1.0, -g], rng.standard_normal(n))
    raise ValueError(f"Unknown surrogate method '{method}'. Options: {SURROGATE_METHODS}")


def _analyze_pycwt(x, y, dt, dj, lower_period, upper_period, make_pval, n_sim,
                   method, seed) -> CoherenceResult:
    mother = pycwt.Morlet(MORLET_W0)
    s0, J = _scale_grid(dj, lower_period, upper_period, mother)

    coherence, angle, period, coi = _wct(x, y, dt, dj, s0, J, mother)
    coherence_avg = coherence.mean(axis=1)

    pval = avg_pval = None
    if make_pval:
        rng = np.random.default_rng(seed)
        exceed = np.zeros_like(coherence)
        exceed_avg = np.zeros_like(coherence_avg)
        for _ in range(n_sim):
            sim_coh = _wct(make_surrogate(x, method, rng), make_surrogate(y, method, rng),
                           dt, dj, s0, J, mother)[0]
            exceed += sim_coh >= coherence
            exceed_avg += sim_coh.mean(axis=1) >= coherence_avg
        pval = exceed / n_sim
        avg_pval = exceed_avg / n_sim

    return CoherenceResult(
        coherence=coherence,
        angle=angle,
        period=period,
        coherence_avg=coherence_avg,
        pval=pval,
        coherence_avg_pval=avg_pval,
        coi=coi,
    )


# ---------- WaveletComp backend (R) -------------------------------------------
# The embedded R session is shared by all threads; the backend keeps its
# data and results in R globals, so a whole analysis runs under this lock
_R_LOCK = threading.Lock()


def cone_of_influence(n_times: int, dt: float, mother: Optional[pycwt.Morlet] = None) -> np.ndarray:
    """Largest reliable period (seconds) at each time point.

    Same e-folding definition pycwt.wct uses, so both backends report the
    cone of influence on the period axis.
    """
    mother = mother or pycwt.Morlet(MORLET_W0)
    distance = n_times / 2 - np.abs(np.arange(n_times) - (n_times - 1) / 2)
    return mother.flambda() * dt * distance / np.sqrt(2)


def _analyze_waveletcomp(x, y, dt, dj, lower_period, upper_period, make_pval, n_sim,
                         method, seed) -> CoherenceResult:
    """Run WaveletComp::analyze.coherency through rpy2, one analysis at a time."""
    with _R_LOCK:
        result = _run_waveletcomp(x, y, dt, dj, lower_period, upper_period,
                                  make_pval, n_sim, method, seed)
    result.coi = cone_of_influence(len(x), dt)
    return result


def _run_waveletcomp(x, y, dt, dj, lower_period, upper_period, make_pval, n_sim,
                     method, seed) -> CoherenceResult:
    """Call WaveletComp and read the result back from the R session.

    R and the WaveletComp package must be installed; rpy2 is imported here so
    the pycwt backend works without an R installation.
    """
    import rpy2.robjects as ro
    from rpy2.robjects import numpy2ri, pandas2ri
    from rpy2.robjects.conversion import localconverter
    from rpy2.robjects.packages import importr

    importr("WaveletComp")

    with localconverter(ro.default_converter + pandas2ri.converter):
        ro.globalenv["dat"] = ro.conversion.py2rpy(pd.DataFrame({"x": x, "y": y}))

    params = "list(AR = list(p = 1))" if method == "ar1" else "NULL"
    ro.r(f"set.seed({int(seed) % 2**31})")
    ro.r(
        "wc <- WaveletComp::analyze.coherency(dat, my.pair = c('x', 'y'), "
        f"loess.span = 0, dt = {dt!r}, dj = {dj!r}, "
        f"lowerPeriod = {lower_period!r}, upperPeriod = {upper_period!r}, "
        f"make.pval = {'TRUE' if make_pval else 'FALSE'}, "
        f"method = '{_WAVELETCOMP_METHODS[method]}', params = {params}, "
        f"n.sim = {int(n_sim)}, verbose = FALSE)"
    )

    def fetch(name):
        if bool(ro.r(f"is.null(wc${name})")[0]):
            return None
        with localconverter(ro.default_converter + numpy2ri.converter):
            return np.asarray(ro.r(f"as.matrix(wc${name})"), dtype=float).squeeze()

    coherence = np.atleast_2d(fetch("Coherence"))
    return CoherenceResult(
        coherence=coherence,
        angle=np.atleast_2d(fetch("Angle")),
        period=np.atleast_1d(fetch("Period")),
        coherence_avg=np.atleast_1d(fetch("Coherence.avg")),
        pval=fetch("Coherence.pval") if make_pval else None,
        coherence_avg_pval=np.atleast_1d(fetch("Coherence.avg.pval")) if make_pval else None,
    )


_BACKENDS = {
    "pycwt": _analyze_pycwt,
    "waveletcomp": _analyze_waveletcomp,
}


def analyze_coherency(
    x: np.ndarray,
    y: np.ndarray,
    dt: float,
    dj: float,
    lower_period: float,
    upper_period: float,
    make_pval: bool = True,
    n_sim: int = 100,
    method: str = "white_noise",
    seed: int = 0,
    backend: str = "pycwt",
    segment_id=None
) -> CoherenceResult:
    """Cross-wavelet coherence of two equal-length series.

    Args:
        x: First series (gesture speed)
        y: Second series (speech envelope)
        dt: Sampling interval in seconds
        dj: Frequency resolution (fraction of an octave between scales)
        lower_period: Lowest analysed period in seconds
        upper_period: Highest analysed period in seconds
        make_pval: Whether to compute significance p-values
        n_sim: Number of surrogate simulations for the p-values
        method: Surrogate generator ('white_noise', 'shuffle', 'fourier_rand', 'ar1')
        seed: Random seed for the surrogates
        backend: 'pycwt' or 'waveletcomp'
        segment_id: Segment label used in error messages

    Returns:
        CoherenceResult

    Raises:
        ValueError: On invalid analysis parameters
        SegmentDataError: If the series cannot be analysed together
    """
    if backend not in _BACKENDS:
        raise ValueError(f"Unknown wavelet backend '{backend}'. Options: {WAVELET_BACKENDS}")
    if dt <= 0 or dj <= 0:
        raise ValueError(f"dt and dj must be positive, got dt={dt}, dj={dj}")
    if not (0 < lower_period < upper_period):
        raise ValueError(
            f"Period bounds must satisfy 0 < lower < upper, got {lower_period}, {upper_period}"
        )
    if make_pval and n_sim < 1:
        raise ValueError(f"n_sim must be >= 1 for significance testing, got {n_sim}")

    x, y = validate_pair(x, y, dt, lower_period, segment_id=segment_id)
    return _BACKENDS[backend](x, y, dt, dj, lower_period, upper_period,
                              make_pval, n_sim, method, seed)
