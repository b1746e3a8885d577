"""Tests for dataset loading and result writing."""

import json

import numpy as np
import pandas as pd
import pytest

from wavelet_coherence.utils.io_utils import (
    ensure_output_dirs,
    load_merged_dataset,
    save_json_summary,
    read_segment_results,
    segment_filename,
    validate_columns,
    write_segment_results,
)


def test_unlabeled_rows_are_dropped_in_order(tmp_path, make_config):
    path = tmp_path / "merged.csv"
    pd.DataFrame({
        "gesture_id": [None, "GID_1", "GID_1", None, "GID_2"],
        "speed": [0.0, 1.0, 2.0, 0.0, 3.0],
        "envelope": [0.0, 0.1, 0.2, 0.0, 0.3],
    }).to_csv(path, index=False)

    df = load_merged_dataset(str(path), make_config())

    assert list(df["gesture_id"]) == ["GID_1", "GID_1", "GID_2"]
    assert list(df["speed"]) == [1.0, 2.0, 3.0]


def test_non_numeric_signal_columns_are_rejected(make_config):
    df = pd.DataFrame({"gesture_id": ["GID_1"], "speed": ["fast"], "envelope": [0.1]})
    with pytest.raises(ValueError, match="numeric.*speed"):
        validate_columns(df, make_config())


def test_output_dirs_are_created(make_config, tmp_path):
    dirs = ensure_output_dirs(make_config(OUT_BASE=str(tmp_path / "out")))
    assert dirs["segments"].is_dir()
    assert dirs["combined"].is_dir()


@pytest.mark.parametrize("label, name", [
    ("GID_1", "GID_1_d183004e_coherence.csv"),
    ("p01/g 3", "p01_g_3_76a2beb7_coherence.csv"),
    (12, "12_4f5344cd_coherence.csv"),
    ("///", "segment_759dddfb_coherence.csv"),
])
def test_segment_filename_is_filesystem_safe(label, name):
    assert segment_filename(label) == name


def test_labels_that_sanitize_alike_get_distinct_files():
    names = {segment_filename(label) for label in ["GID 1", "GID_1", "GID/1", "GID__1"]}
    assert len(names) == 4


def _rows(label):
    return pd.DataFrame({
        "segment_id": [label, label],
        "coherence": [0.9, 0.8],
        "period": [0.1, 0.2],
        "pvalue": [0.01, 0.02],
        "phase": [0.0, 0.1],
        "phase_relation": ["in_phase", "in_phase_speed_leads"],
    })


def test_stored_rows_are_read_back_with_matching_settings(tmp_path):
    settings = {"sig_threshold": 0.1, "dj": 1 / 12, "data_sha1": "abc"}
    write_segment_results(tmp_path, 12, _rows(12), settings)

    rows = read_segment_results(tmp_path, 12, settings)

    assert rows is not None
    assert rows["segment_id"].tolist() == [12, 12]
    np.testing.assert_allclose(rows["coherence"], [0.9, 0.8])


def test_stored_rows_with_other_settings_are_not_reused(tmp_path):
    write_segment_results(tmp_path, "GID_1", _rows("GID_1"), {"sig_threshold": 0.1})

    assert read_segment_results(tmp_path, "GID_1", {"sig_threshold": 0.0}) is None
    assert read_segment_results(tmp_path, "GID_2", {"sig_threshold": 0.1}) is None


def test_stored_rows_of_another_label_are_not_reused(tmp_path):
    settings = {"sig_threshold": 0.1}
    path = write_segment_results(tmp_path, "GID_1", _rows("GID_1"), settings)
    # Rows in the file belong to a different segment
    _rows("GID 1").to_csv(path, index=False)

    assert read_segment_results(tmp_path, "GID_1", settings) is None


def test_missing_settings_file_means_no_reuse(tmp_path):
    path = write_segment_results(tmp_path, "GID_1", _rows("GID_1"), {"sig_threshold": 0.1})
    path.with_suffix(".json").unlink()

    assert read_segment_results(tmp_path, "GID_1", {"sig_threshold": 0.1}) is None


def test_json_summary_handles_numpy_scalars(tmp_path):
    path = tmp_path / "nested" / "summary.json"
    save_json_summary(path, {"n": np.int64(3), "label": "GID_1"})
    assert json.loads(path.read_text()) == {"n": "3", "label": "GID_1"}
