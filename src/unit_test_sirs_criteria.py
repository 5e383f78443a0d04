"""
Test suite for sirs_cohort.sirs_criteria

Validates forward fill within ICU stays and the four SIRS criteria, including the
rule that an unknown value never satisfies a criterion.
"""
import numpy as np
import pandas as pd

from sirs_cohort.measurement_data import MEASUREMENT_COLUMNS
from sirs_cohort.sirs_criteria import (
    CRITERIA_COLUMNS,
    annotate_sirs,
    evaluate_sirs_criteria,
    forward_fill_within_stay,
)
from sirs_cohort.utils import TIMELINE_KEY_COLUMNS


def _timeline(rows: list) -> pd.DataFrame:
    """Build a timeline from dicts holding keys and any subset of measurement values."""
    records = []
    for row in rows:
        record = {"subject_id": 1, "hadm_id": 101, "icustay_id": 1001}
        record.update({name: np.nan for name in MEASUREMENT_COLUMNS})
        record.update(row)
        records.append(record)
    df = pd.DataFrame(records, columns=TIMELINE_KEY_COLUMNS + MEASUREMENT_COLUMNS)
    df["charttime"] = pd.to_datetime(df["charttime"], utc=True)
    df[MEASUREMENT_COLUMNS] = df[MEASUREMENT_COLUMNS].astype("float64")
    return df


class TestEvaluateSirsCriteria:
    """Row-wise criteria evaluation."""

    def test_all_criteria_met(self):
        timeline = _timeline([{
            "charttime": "2100-01-01 00:00",
            "temperature": 39, "heart_rate": 95, "respiratory_rate": 25, "wbc_count": 13,
        }])

        row = evaluate_sirs_criteria(timeline).iloc[0]

        assert all(row[col] for col in CRITERIA_COLUMNS), "All four criteria should be met"
        assert row["criteria_count"] == 4
        assert row["meets_threshold"]

    def test_no_criteria_met(self):
        timeline = _timeline([{
            "charttime": "2100-01-01 00:00",
            "temperature": 37, "heart_rate": 70, "respiratory_rate": 14, "wbc_count": 8,
        }])

        row = evaluate_sirs_criteria(timeline).iloc[0]

        assert not any(row[col] for col in CRITERIA_COLUMNS)
        assert row["criteria_count"] == 0
        assert not row["meets_threshold"]

    def test_missing_values_count_as_not_met(self):
        timeline = _timeline([{"charttime": "2100-01-01 00:00", "heart_rate": 95}])

        row = evaluate_sirs_criteria(timeline).iloc[0]

        assert not row["sirs_crit1"], "Unknown temperature must not satisfy criterion 1"
        assert row["criteria_count"] == 1, "Criteria count stays defined when values are unknown"
        assert not row["meets_threshold"]

    def test_thresholds_are_strict(self):
        timeline = _timeline([{
            "charttime": "2100-01-01 00:00",
            "temperature": 38, "heart_rate": 90, "respiratory_rate": 20, "paco2": 32, "wbc_count": 12, "bands": 10,
        }])

        row = evaluate_sirs_criteria(timeline).iloc[0]

        assert row["criteria_count"] == 0, "Values exactly on a threshold do not satisfy it"

    def test_alternative_operands(self):
        timeline = _timeline([
            {"charttime": "2100-01-01 00:00", "temperature": 35.5, "paco2": 30, "bands": 12},
            {"charttime": "2100-01-01 01:00", "wbc_count": 3.5},
        ])

        annotated = evaluate_sirs_criteria(timeline)

        first, second = annotated.iloc[0], annotated.iloc[1]
        assert first["sirs_crit1"], "Hypothermia satisfies criterion 1"
        assert first["sirs_crit3"], "PaCO2 below 32 satisfies criterion 3"
        assert first["sirs_crit4"], "Bands above 10 % satisfy criterion 4"
        assert first["criteria_count"] == 3 and first["meets_threshold"]
        assert second["sirs_crit4"] and second["criteria_count"] == 1

    def test_column_types(self):
        annotated = evaluate_sirs_criteria(_timeline([{"charttime": "2100-01-01 00:00"}]))

        for col in CRITERIA_COLUMNS + ["meets_threshold"]:
            assert annotated[col].dtype == bool, f"{col} should be boolean"
        assert annotated["criteria_count"].dtype == np.int64


class TestForwardFillWithinStay:
    """Last observation carried forward, bounded by ICU stay."""

    def test_values_carry_forward_within_a_stay(self):
        timeline = _timeline([
            {"charttime": "2100-01-01 00:00", "heart_rate": 80},
            {"charttime": "2100-01-01 01:00", "wbc_count": 9},
            {"charttime": "2100-01-01 02:00", "heart_rate": 85},
        ])

        filled = forward_fill_within_stay(timeline)

        assert filled["heart_rate"].tolist() == [80.0, 80.0, 85.0]
        assert np.isnan(filled["wbc_count"].iloc[0]), "Nothing to carry before the first observation"
        assert filled["wbc_count"].tolist()[1:] == [9.0, 9.0]

    def test_values_never_cross_stay_boundaries(self):
        # Stay 1000 sorts before stay 1001 although its chart time is later
        timeline = _timeline([
            {"icustay_id": 1001, "charttime": "2100-01-01 08:00", "temperature": 37},
            {"icustay_id": 1000, "charttime": "2100-01-01 12:00", "heart_rate": 80},
        ])

        filled = forward_fill_within_stay(timeline)

        stay_a = filled[filled["icustay_id"] == 1001].iloc[0]
        assert np.isnan(stay_a["heart_rate"]), "Heart rate from another stay must not be carried over"

    def test_rows_are_sorted_and_input_untouched(self):
        timeline = _timeline([
            {"charttime": "2100-01-01 02:00", "heart_rate": 85},
            {"charttime": "2100-01-01 00:00", "heart_rate": 80},
            {"charttime": "2100-01-01 01:00"},
        ])

        filled = forward_fill_within_stay(timeline)

        assert filled["charttime"].is_monotonic_increasing
        assert filled["heart_rate"].tolist() == [80.0, 80.0, 85.0]
        assert np.isnan(timeline["heart_rate"].iloc[2]), "Input timeline must not be modified"


class TestAnnotateSirs:
    """Fill followed by evaluation."""

    def test_filled_values_feed_the_criteria(self):
        timeline = _timeline([
            {"charttime": "2100-01-01 00:00", "temperature": 39, "heart_rate": 95},
            {"charttime": "2100-01-01 01:00", "wbc_count": 13},
        ])

        annotated = annotate_sirs(timeline)

        assert annotated["criteria_count"].tolist() == [2, 3]
        assert annotated["meets_threshold"].tolist() == [True, True]
