"""Tests for the cross-wavelet coherence analysis."""

import threading
import time

import numpy as np
import pytest

from conftest import SAMPLE_RATE, sine
from wavelet_coherence.utils.aggregate_utils import extract_significant_periods
from wavelet_coherence.utils.segment_utils import SegmentDataError
from wavelet_coherence.utils.wavelet_utils import (
    analyze_coherency,
    cone_of_influence,
    make_surrogate,
    segment_seed,
    validate_pair,
)
from wavelet_coherence.utils import wavelet_utils

DT = 1.0 / SAMPLE_RATE


def _analyze(x, y, **kwargs):
    params = dict(dt=DT, dj=1 / 12, lower_period=0.05, upper_period=0.2,
                  make_pval=True, n_sim=20, seed=3)
    params.update(kwargs)
    return analyze_coherency(x, y, **params)


def test_identical_sines_are_fully_coherent_and_in_phase():
    x = sine(50, freq_hz=10.0)

    res = _analyze(x, x.copy())
    rows = extract_significant_periods(res, "GID_1", threshold=0.1)

    assert len(rows) >= 1
    assert (rows["coherence"] > 0.99).all()
    assert np.abs(rows["phase"]).max() < 1e-6
    assert set(rows["segment_id"]) == {"GID_1"}


def test_sine_against_noise_is_rarely_significant():
    x = sine(400, freq_hz=10.0)

    shares = []
    for seed in range(5):
        y = np.random.default_rng(seed).standard_normal(400)
        res = _analyze(x, y, upper_period=0.5, n_sim=50, seed=seed)
        rows = extract_significant_periods(res, "GID_2", threshold=0.1)
        shares.append(len(rows) / len(res.period))

    assert np.mean(shares) <= 0.3


def test_result_shapes_and_period_band():
    x = sine(120)
    res = _analyze(x, x + 0.1 * np.cos(np.arange(120)))

    n_periods = res.period.size
    assert res.coherence.shape == (n_periods, 120)
    assert res.angle.shape == (n_periods, 120)
    assert res.pval.shape == (n_periods, 120)
    assert res.coherence_avg.shape == (n_periods,)
    assert res.coherence_avg_pval.shape == (n_periods,)
    assert res.period[0] == pytest.approx(0.05)
    assert res.period.max() <= 0.2 + 1e-9
    assert np.all(np.diff(res.period) > 0)
    assert np.all((res.coherence >= 0) & (res.coherence <= 1))
    assert np.all((res.coherence_avg_pval >= 0) & (res.coherence_avg_pval <= 1))


def test_without_significance_testing_no_pvalues():
    x = sine(80)
    res = _analyze(x, x, make_pval=False)
    assert res.pval is None
    assert res.coherence_avg_pval is None
    assert not res.has_pval


def test_same_seed_gives_same_pvalues(rng):
    x = sine(100)
    y = rng.standard_normal(100)

    first = _analyze(x, y, seed=11)
    second = _analyze(x, y, seed=11)

    np.testing.assert_array_equal(first.coherence_avg_pval, second.coherence_avg_pval)
    np.testing.assert_array_equal(first.coherence, second.coherence)


@pytest.mark.parametrize("method", ["white_noise", "shuffle", "fourier_rand", "ar1"])
def test_all_surrogate_methods_run(method, rng):
    x = sine(100) + 0.3 * rng.standard_normal(100)
    res = _analyze(x, x, n_sim=3, method=method)
    assert res.coherence_avg_pval.shape == res.period.shape


def test_mismatched_lengths_name_the_segment():
    with pytest.raises(SegmentDataError, match="GID_4.*lengths differ"):
        _analyze(sine(50), sine(49), segment_id="GID_4")


def test_missing_values_are_rejected():
    y = sine(50)
    y[10] = np.nan
    with pytest.raises(SegmentDataError, match="missing"):
        _analyze(sine(50), y, segment_id="GID_5")


def test_constant_series_is_rejected():
    with pytest.raises(SegmentDataError, match="constant"):
        _analyze(np.ones(50), sine(50))


def test_segment_shorter_than_lowest_period_is_rejected():
    with pytest.raises(SegmentDataError, match="shorter than the lowest period"):
        validate_pair(sine(4), sine(4), DT, lower_period=0.05, segment_id="GID_6")


@pytest.mark.parametrize("kwargs", [
    dict(lower_period=0.2, upper_period=0.1),
    dict(dj=0),
    dict(backend="matlab"),
    dict(n_sim=0),
])
def test_invalid_parameters_are_rejected(kwargs):
    with pytest.raises(ValueError):
        _analyze(sine(50), sine(50), **kwargs)


def test_surrogates_preserve_their_null_property(rng):
    x = sine(64) + 0.5

    shuffled = make_surrogate(x, "shuffle", rng)
    np.testing.assert_allclose(np.sort(shuffled), np.sort(x))

    fourier = make_surrogate(x, "fourier_rand", rng)
    np.testing.assert_allclose(
        np.abs(np.fft.rfft(fourier - fourier.mean())),
        np.abs(np.fft.rfft(x - x.mean())),
        atol=1e-8,
    )

    assert make_surrogate(x, "white_noise", rng).shape == x.shape
    with pytest.raises(ValueError):
        make_surrogate(x, "bootstrap", rng)


def test_segment_seed_is_stable_and_label_specific():
    assert segment_seed(42, "GID_1") == segment_seed(42, "GID_1")
    assert segment_seed(42, "GID_1") != segment_seed(42, "GID_2")
    assert segment_seed(42, "GID_1") != segment_seed(43, "GID_1")


def _r_available():
    try:
        from rpy2.robjects.packages import isinstalled
        return isinstalled("WaveletComp")
    except Exception:
        return False


@pytest.mark.skipif(not _r_available(), reason="R with WaveletComp not available")
def test_waveletcomp_backend_returns_same_layout():
    x = sine(100)
    res = _analyze(x, x, backend="waveletcomp", n_sim=5)

    n_periods = res.period.size
    assert res.coherence.shape == (n_periods, 100)
    assert res.coherence_avg_pval.shape == (n_periods,)
    assert res.coherence_avg.max() > 0.99
    assert res.coi.shape == (100,)


def test_cone_of_influence_peaks_mid_series():
    coi = cone_of_influence(101, DT)

    assert coi.shape == (101,)
    np.testing.assert_allclose(coi, coi[::-1])
    assert coi.argmax() == 50
    assert np.all(np.diff(coi[:51]) > 0)


def test_pycwt_backend_reports_cone_of_influence_per_time_point():
    x = sine(120)
    res = _analyze(x, x, make_pval=False)
    assert res.coi.shape == (120,)
    assert res.coi[60] > res.coi[0]


def test_waveletcomp_analyses_do_not_overlap(monkeypatch):
    active = []
    overlap = []

    def fake_run(x, y, *args):
        active.append(1)
        overlap.append(len(active))
        time.sleep(0.02)
        active.pop()
        n_periods = 3
        return wavelet_utils.CoherenceResult(
            coherence=np.ones((n_periods, len(x))),
            angle=np.zeros((n_periods, len(x))),
            period=np.array([0.05, 0.1, 0.2]),
            coherence_avg=np.ones(n_periods),
        )

    monkeypatch.setattr(wavelet_utils, "_run_waveletcomp", fake_run)

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(
            _analyze(sine(100), sine(100), backend="waveletcomp", make_pval=False)))
        for _ in range(4)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 4
    assert max(overlap) == 1
    assert all(r.coi.shape == (100,) for r in results)
