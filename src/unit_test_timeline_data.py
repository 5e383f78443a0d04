"""
Test suite for sirs_cohort.timeline_data

Validates duplicate averaging, the long-to-wide pivot and the vitals/labs outer join.
"""
import numpy as np
import pandas as pd

from sirs_cohort.measurement_data import LAB_COLUMNS, MEASUREMENT_COLUMNS, VITAL_COLUMNS
from sirs_cohort.timeline_data import (
    build_timeline,
    deduplicate_measurements,
    merge_timelines,
    pivot_measurements,
)
from sirs_cohort.utils import MEASUREMENT_KEY_COLUMNS, TIMELINE_KEY_COLUMNS


def _ts(s: str) -> pd.Timestamp:
    """Helper to create UTC timestamps."""
    return pd.Timestamp(s, tz="UTC")


def _measurements(rows: list) -> pd.DataFrame:
    """Build a loaded-measurements frame from (subject, hadm, icustay, time, name, value) tuples."""
    df = pd.DataFrame(rows, columns=["subject_id", "hadm_id", "icustay_id", "charttime", "measurement", "valuenum"])
    df["charttime"] = pd.to_datetime(df["charttime"], utc=True)
    df["valuenum"] = df["valuenum"].astype("float64")
    for column in ["subject_id", "hadm_id", "icustay_id"]:
        df[column] = df[column].astype("int64")
    return df


class TestDeduplicateMeasurements:
    """Averaging of simultaneous duplicate readings."""

    def setup_method(self):
        self.measurements = _measurements([
            (1, 101, 1001, "2100-01-01 00:00", "respiratory_rate", 18),
            (1, 101, 1001, "2100-01-01 00:00", "respiratory_rate", 22),
            (1, 101, 1001, "2100-01-01 00:00", "heart_rate", 88),
            (1, 101, 1001, "2100-01-01 01:00", "respiratory_rate", 16),
            (1, 101, 1001, "2100-01-01 02:00", "heart_rate", 90),
            (1, 101, 1001, "2100-01-01 02:00", "heart_rate", np.nan),
            (1, 101, 1001, "2100-01-01 03:00", "heart_rate", np.nan),
        ])

    def test_duplicates_are_averaged(self):
        dedup = deduplicate_measurements(self.measurements)

        rr = dedup[(dedup["measurement"] == "respiratory_rate") & (dedup["charttime"] == _ts("2100-01-01 00:00"))]
        assert len(rr) == 1, "Duplicate readings should collapse to one row"
        assert rr["valuenum"].iloc[0] == 20.0, "18 and 22 should average to 20"

    def test_keys_are_unique(self):
        dedup = deduplicate_measurements(self.measurements)

        assert not dedup.duplicated(MEASUREMENT_KEY_COLUMNS).any()
        assert len(dedup) == 5

    def test_absent_readings_are_ignored_in_the_mean(self):
        dedup = deduplicate_measurements(self.measurements).set_index(["charttime", "measurement"])

        assert dedup.loc[(_ts("2100-01-01 02:00"), "heart_rate"), "valuenum"] == 90.0
        assert np.isnan(dedup.loc[(_ts("2100-01-01 03:00"), "heart_rate"), "valuenum"]), (
            "A key with only absent readings stays absent"
        )

    def test_types_and_timezone_are_preserved(self):
        dedup = deduplicate_measurements(self.measurements)

        assert dedup["icustay_id"].dtype == np.int64
        assert dedup["valuenum"].dtype == np.float64
        assert str(dedup["charttime"].dt.tz) == "UTC"
        assert dedup["charttime"].min() == _ts("2100-01-01 00:00")


class TestPivotMeasurements:
    """Long-to-wide reshape."""

    def test_one_row_per_timestamp_with_all_columns(self):
        measurements = _measurements([
            (1, 101, 1001, "2100-01-01 00:00", "heart_rate", 88),
            (1, 101, 1001, "2100-01-01 00:00", "heart_rate", 92),
            (1, 101, 1001, "2100-01-01 00:00", "temperature", 37.2),
            (1, 101, 1001, "2100-01-01 01:00", "spo2", 97),
        ])

        wide = pivot_measurements(measurements, VITAL_COLUMNS)

        assert list(wide.columns) == TIMELINE_KEY_COLUMNS + VITAL_COLUMNS
        assert len(wide) == 2, "One row per (subject, admission, stay, chart time)"
        first = wide.iloc[0]
        assert first["heart_rate"] == 90.0
        assert first["temperature"] == 37.2
        assert np.isnan(first["spo2"]), "No reading at that time should be absent, not zero"
        assert wide["mean_bp"].isna().all(), "Never observed columns are present and empty"

    def test_empty_input_gives_empty_timeline(self):
        empty = _measurements([])

        wide = pivot_measurements(empty, LAB_COLUMNS)

        assert wide.empty
        assert list(wide.columns) == TIMELINE_KEY_COLUMNS + LAB_COLUMNS


class TestMergeTimelines:
    """Full outer join of vitals and labs."""

    def setup_method(self):
        self.vitals = _measurements([
            (1, 101, 1001, "2100-01-01 00:00", "heart_rate", 95),
            (1, 101, 1001, "2100-01-01 01:00", "heart_rate", 97),
            (2, 201, 2001, "2100-03-01 00:00", "temperature", 36.5),
        ])
        self.labs = _measurements([
            (1, 101, 1001, "2100-01-01 01:00", "wbc_count", 13),
            (1, 101, 1001, "2100-01-01 02:00", "wbc_count", 11),
        ])

    def test_every_key_appears_exactly_once(self):
        merged = merge_timelines(
            pivot_measurements(self.vitals, VITAL_COLUMNS),
            pivot_measurements(self.labs, LAB_COLUMNS),
        )

        keys = pd.concat([self.vitals, self.labs])[TIMELINE_KEY_COLUMNS].drop_duplicates()
        assert len(merged) == len(keys) == 4
        assert not merged.duplicated(TIMELINE_KEY_COLUMNS).any()

    def test_one_sided_rows_keep_absent_columns(self):
        merged = merge_timelines(
            pivot_measurements(self.vitals, VITAL_COLUMNS),
            pivot_measurements(self.labs, LAB_COLUMNS),
        ).set_index(TIMELINE_KEY_COLUMNS)

        vitals_only = merged.loc[(1, 101, 1001, _ts("2100-01-01 00:00"))]
        labs_only = merged.loc[(1, 101, 1001, _ts("2100-01-01 02:00"))]
        both = merged.loc[(1, 101, 1001, _ts("2100-01-01 01:00"))]

        assert np.isnan(vitals_only["wbc_count"])
        assert np.isnan(labs_only["heart_rate"])
        assert both["heart_rate"] == 97.0 and both["wbc_count"] == 13.0

    def test_build_timeline_is_sorted_with_fixed_columns(self):
        timeline = build_timeline(self.vitals, self.labs)

        assert list(timeline.columns) == TIMELINE_KEY_COLUMNS + MEASUREMENT_COLUMNS
        assert timeline["icustay_id"].tolist() == [1001, 1001, 1001, 2001]
        assert timeline["charttime"].is_monotonic_increasing
