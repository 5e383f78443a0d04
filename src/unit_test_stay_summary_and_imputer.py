"""
Test suite for sirs_cohort.stay_summary and sirs_cohort.cohort_imputer

Validates per-stay aggregation, identifier hierarchy checks and KNN imputation.
"""
import warnings

import numpy as np
import pandas as pd
import pytest

from sirs_cohort.cohort_imputer import CohortImputer
from sirs_cohort.errors import EmptyGroupWarning, ImputationFailure, MalformedInputError
from sirs_cohort.logging_utils import logger
from sirs_cohort.measurement_data import MEASUREMENT_COLUMNS
from sirs_cohort.sirs_criteria import annotate_sirs
from sirs_cohort.stay_summary import SUMMARY_COLUMNS, summarize_stays
from sirs_cohort.utils import ID_COLUMNS, TIMELINE_KEY_COLUMNS


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


def _summarize_quietly(annotated: pd.DataFrame) -> pd.DataFrame:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=EmptyGroupWarning)
        return summarize_stays(annotated)


class TestSummarizeStays:
    """Aggregation to one row per ICU stay."""

    def setup_method(self):
        self.annotated = annotate_sirs(_timeline([
            {"charttime": "2100-01-01 00:00", "heart_rate": 80, "temperature": 39},
            {"charttime": "2100-01-01 01:00", "heart_rate": 100, "albumin": 3.0},
            {"charttime": "2100-01-01 02:00", "respiratory_rate": 25},
            {"subject_id": 2, "hadm_id": 201, "icustay_id": 2001, "charttime": "2100-02-01 00:00", "heart_rate": 70},
        ]))

    def test_one_row_per_stay_with_expected_columns(self):
        summary = _summarize_quietly(self.annotated)

        assert list(summary.columns) == SUMMARY_COLUMNS
        assert summary["icustay_id"].tolist() == [1001, 2001]
        assert summary["subject_id"].tolist() == [1, 2], "Parent identifiers are carried through"

    def test_means_use_forward_filled_rows(self):
        summary = _summarize_quietly(self.annotated).set_index("icustay_id")

        # heart_rate rows after fill: 80, 100, 100
        assert summary.loc[1001, "heart_rate_mean"] == pytest.approx(280 / 3)
        # albumin rows after fill: NaN, 3.0, 3.0
        assert summary.loc[1001, "albumin_mean"] == pytest.approx(3.0)

    def test_max_criteria_count(self):
        summary = _summarize_quietly(self.annotated).set_index("icustay_id")

        # Row 3: temperature 39, heart rate 100, respiratory rate 25 -> 3 criteria
        assert summary.loc[1001, "criteria_count_max"] == 3
        assert summary.loc[2001, "criteria_count_max"] == 0

    def test_stay_without_readings_gets_absent_mean_and_warning(self):
        with pytest.warns(EmptyGroupWarning, match="albumin"):
            summary = summarize_stays(self.annotated)

        assert np.isnan(summary.set_index("icustay_id").loc[2001, "albumin_mean"]), (
            "No albumin readings should give an absent mean, not zero"
        )

    def test_row_order_does_not_change_the_summary(self):
        shuffled = self.annotated.sample(frac=1, random_state=7)

        pd.testing.assert_frame_equal(_summarize_quietly(self.annotated), _summarize_quietly(shuffled))

    def test_stay_under_two_admissions_raises(self):
        broken = annotate_sirs(_timeline([
            {"charttime": "2100-01-01 00:00", "heart_rate": 80},
            {"hadm_id": 102, "charttime": "2100-01-01 01:00", "heart_rate": 82},
        ]))

        with pytest.raises(MalformedInputError) as excinfo:
            summarize_stays(broken)

        assert "1001" in str(excinfo.value)


class TestCohortImputer:
    """KNN imputation of the stay summary."""

    def setup_method(self):
        self.summary = pd.DataFrame({
            "subject_id": [1, 2, 3],
            "hadm_id": [101, 201, 301],
            "icustay_id": [1001, 2001, 3001],
            "albumin_mean": [3.0, np.nan, 4.0],
            "heart_rate_mean": [80.0, 82.0, 100.0],
            "criteria_count_max": np.array([1, 1, 3], dtype=np.int64),
        })

    def test_missing_values_are_filled_from_nearest_stay(self):
        _, imputed = CohortImputer(n_neighbors=1).fit_transform(self.summary)

        assert imputed["albumin_mean"].tolist() == [3.0, 3.0, 4.0], "Stay 2001 is closest to stay 1001"
        assert not imputed.isna().any().any()

    def test_identifiers_and_complete_columns_are_untouched(self):
        _, imputed = CohortImputer(n_neighbors=2).fit_transform(self.summary)

        pd.testing.assert_frame_equal(imputed[ID_COLUMNS], self.summary[ID_COLUMNS])
        pd.testing.assert_series_equal(imputed["criteria_count_max"], self.summary["criteria_count_max"])
        assert imputed.loc[1, "albumin_mean"] == pytest.approx(3.5), "Two neighbors average to 3.5"
        assert np.isnan(self.summary.loc[1, "albumin_mean"]), "Input summary must not be modified"

    def test_identifiers_are_not_features(self):
        imputer, _ = CohortImputer().fit_transform(self.summary)

        assert imputer.feature_columns == ["albumin_mean", "heart_rate_mean", "criteria_count_max"]

    def test_imputation_is_deterministic(self):
        _, first = CohortImputer(n_neighbors=2).fit_transform(self.summary)
        _, second = CohortImputer(n_neighbors=2).fit_transform(self.summary)

        pd.testing.assert_frame_equal(first, second)

    def test_distance_ties_are_broken_reproducibly(self):
        # Stays 2 and 3 sit at distance 0 from stay 1; stays 4-9 are tied further out
        summary = pd.DataFrame({
            "subject_id": range(1, 10),
            "hadm_id": range(101, 110),
            "icustay_id": range(1001, 1010),
            "heart_rate_mean": [80.0, 80.0, 80.0] + [81.0] * 6,
            "albumin_mean": [np.nan, 10.0, 10.0, 0.0, 1.0, 2.0, 3.0, 4.0, 5.0],
        })

        _, first = CohortImputer(n_neighbors=3).fit_transform(summary)
        _, second = CohortImputer(n_neighbors=3).fit_transform(summary)

        value = first.loc[0, "albumin_mean"]
        assert value == second.loc[0, "albumin_mean"], "Tied donors must be chosen the same way every run"
        assert any(value == pytest.approx((20.0 + v) / 3) for v in range(6)), (
            "Both zero-distance stays are used, plus exactly one of the tied stays"
        )

    def test_failed_fit_keeps_log_nesting(self):
        level = logger._nesting_level

        with pytest.raises(ImputationFailure):
            CohortImputer().fit_transform(self.summary.iloc[0:0])

        assert logger._nesting_level == level, "A failed stage must still close its log level"

    def test_entirely_missing_column_raises(self):
        self.summary["bands_mean"] = np.nan

        with pytest.raises(ImputationFailure) as excinfo:
            CohortImputer().fit(self.summary)

        assert "bands_mean" in str(excinfo.value)

    def test_empty_summary_raises(self):
        with pytest.raises(ImputationFailure):
            CohortImputer().fit(self.summary.iloc[0:0])

    def test_transform_before_fit_raises(self):
        with pytest.raises(ImputationFailure):
            CohortImputer().transform(self.summary)

    def test_save_and_load(self, tmp_path):
        imputer, imputed = CohortImputer(n_neighbors=1).fit_transform(self.summary)
        path = tmp_path / "imputer.pkl"

        imputer.save(path)
        loaded = CohortImputer.load(path)

        pd.testing.assert_frame_equal(loaded.transform(self.summary), imputed)
