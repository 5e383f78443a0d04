"""
End-to-end test of the SIRS cohort pipeline on small synthetic MIMIC-III exports.

Three ICU stays are written to vitals and labs CSV files:
- Stay 1001: febrile, tachycardic, tachypneic, leukocytosis (all four criteria)
- Stay 1002: normal values, with a duplicated respiratory rate reading
- Stay 2001 (second patient): normal values except heart rate, no albumin measured
"""
import numpy as np
import pandas as pd
import pytest

from sirs_cohort import cohort_pipeline
from sirs_cohort.cohort_pipeline import CohortPipeline, save_cohort, save_timeline
from sirs_cohort.errors import EmptyGroupWarning, ImputationFailure
from sirs_cohort.stay_summary import SUMMARY_COLUMNS, summarize_stays

BASE_VITALS = {
    "HeartRate": 80, "SysBP": 120, "DiasBP": 70, "MeanBP": 85,
    "RespRate": 14, "TempC": 37, "SpO2": 98, "Glucose": 110,
}
BASE_LABS = {
    "ANION GAP": 12, "ALBUMIN": 3.5, "BANDS": 2, "BICARBONATE": 24, "BILIRUBIN": 0.8,
    "CREATININE": 1.0, "CHLORIDE": 100, "GLUCOSE": 105, "HEMATOCRIT": 38, "HEMOGLOBIN": 12.5,
    "LACTATE": 1.2, "PLATELET": 250, "POTASSIUM": 4.0, "PTT": 30, "INR": 1.1, "PT": 12,
    "SODIUM": 140, "BUN": 15, "WBC": 8, "PACO2": 40,
}

STAYS = [
    {
        "ids": (1, 101, 1001), "start": pd.Timestamp("2100-01-01 00:00"),
        "vitals": {"TempC": 39, "HeartRate": 95, "RespRate": 25}, "labs": {"WBC": 13}, "drop_labs": [],
    },
    {
        "ids": (1, 101, 1002), "start": pd.Timestamp("2100-01-05 00:00"),
        "vitals": {}, "labs": {}, "drop_labs": [],
    },
    {
        "ids": (2, 201, 2001), "start": pd.Timestamp("2100-03-01 00:00"),
        "vitals": {"HeartRate": 100}, "labs": {}, "drop_labs": ["ALBUMIN"],
    },
]


def _export_rows(stay: dict, base: dict, overrides: dict, hours: list, skip: list) -> list:
    subject_id, hadm_id, icustay_id = stay["ids"]
    rows = []
    for hour in hours:
        charttime = (stay["start"] + pd.Timedelta(hours=hour)).strftime("%Y-%m-%d %H:%M:%S")
        for code, value in {**base, **overrides}.items():
            if code not in skip:
                rows.append([subject_id, hadm_id, icustay_id, charttime, code, value])
    return rows


def _write_exports(directory, stays=STAYS, drop_everywhere=()):
    vitals_rows, labs_rows = [], []
    for stay in stays:
        vitals_rows += _export_rows(stay, BASE_VITALS, stay["vitals"], [0, 2], [])
        labs_rows += _export_rows(stay, BASE_LABS, stay["labs"], [1], list(stay["drop_labs"]) + list(drop_everywhere))

    # Duplicate simultaneous respiratory rate readings for stay 1002: 12 and 16
    vitals_rows = [row for row in vitals_rows if not (row[2] == 1002 and row[4] == "RespRate")]
    for hour in [0, 2]:
        charttime = (STAYS[1]["start"] + pd.Timedelta(hours=hour)).strftime("%Y-%m-%d %H:%M:%S")
        vitals_rows.append([1, 101, 1002, charttime, "RespRate", 12])
        vitals_rows.append([1, 101, 1002, charttime, "RespRate", 16])

    columns = ["subject_id", "hadm_id", "icustay_id", "charttime"]
    vitals_path = directory / "vitals.csv"
    labs_path = directory / "labs.csv"
    pd.DataFrame(vitals_rows, columns=columns + ["vitalid", "valuenum"]).to_csv(vitals_path, index=False)
    pd.DataFrame(labs_rows, columns=columns + ["label", "valuenum"]).to_csv(labs_path, index=False)
    return vitals_path, labs_path


class TestCohortPipeline:
    """Full pipeline from CSV exports to the imputed cohort table."""

    @pytest.fixture(autouse=True)
    def _build(self, tmp_path):
        self.tmp_path = tmp_path
        self.vitals_path, self.labs_path = _write_exports(tmp_path)
        self.pipeline = CohortPipeline(n_neighbors=2)
        with pytest.warns(EmptyGroupWarning):
            self.annotated, self.cohort = self.pipeline.build(self.vitals_path, self.labs_path)

    def test_timeline_has_every_timestamp_once(self):
        # Vitals at hours 0 and 2, labs at hour 1, for three stays
        assert len(self.annotated) == 9
        assert not self.annotated.duplicated(["subject_id", "hadm_id", "icustay_id", "charttime"]).any()

    def test_cohort_has_one_complete_row_per_stay(self):
        assert list(self.cohort.columns) == SUMMARY_COLUMNS
        assert self.cohort["icustay_id"].tolist() == [1001, 1002, 2001]
        assert not self.cohort.isna().any().any(), "Final cohort must be fully populated"

    def test_sirs_counts_per_stay(self):
        counts = self.cohort.set_index("icustay_id")["criteria_count_max"]

        assert counts[1001] == 4
        assert counts[1002] == 0
        assert counts[2001] == 1

    def test_duplicates_are_averaged(self):
        cohort = self.cohort.set_index("icustay_id")

        assert cohort.loc[1002, "respiratory_rate_mean"] == pytest.approx(14.0)

    def test_missing_albumin_is_absent_then_imputed(self):
        with pytest.warns(EmptyGroupWarning):
            summary = summarize_stays(self.annotated).set_index("icustay_id")
        cohort = self.cohort.set_index("icustay_id")

        assert np.isnan(summary.loc[2001, "albumin_mean"]), "No albumin readings before imputation"
        assert cohort.loc[2001, "albumin_mean"] == pytest.approx(3.5), "Both neighbors have albumin 3.5"

    def test_outputs_are_written(self):
        cohort_path = self.tmp_path / "cohort.csv"
        timeline_path = self.tmp_path / "timeline.csv"

        save_cohort(self.cohort, cohort_path)
        save_timeline(self.annotated, timeline_path)

        written = pd.read_csv(cohort_path)
        assert written["icustay_id"].tolist() == [1001, 1002, 2001]
        timeline = pd.read_csv(timeline_path)
        assert timeline["charttime"].iloc[0].startswith("2100-01-01T00:00:00")
        assert "meets_threshold" in timeline.columns


class TestCohortPipelineFailures:
    """Fatal conditions abort the run."""

    def test_measurement_missing_for_whole_cohort_fails_imputation(self, tmp_path):
        vitals_path, labs_path = _write_exports(tmp_path, drop_everywhere=["BANDS"])

        with pytest.warns(EmptyGroupWarning):
            with pytest.raises(ImputationFailure) as excinfo:
                CohortPipeline().build(vitals_path, labs_path)

        assert "bands_mean" in str(excinfo.value)


class TestMain:
    """Default entry point with the standard file layout."""

    def test_main_writes_all_artifacts(self, tmp_path, monkeypatch):
        (tmp_path / "csvs").mkdir()
        _write_exports(tmp_path / "csvs")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TZ", "UTC")

        with pytest.warns(EmptyGroupWarning):
            cohort_pipeline.main()

        data_dir = tmp_path / cohort_pipeline.DATA_DIR
        assert (data_dir / cohort_pipeline.COHORT_FILE).exists()
        assert (data_dir / cohort_pipeline.TIMELINE_FILE).exists()
        assert (data_dir / cohort_pipeline.IMPUTER_FILE).exists()
