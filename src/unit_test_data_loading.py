"""
Test suite for sirs_cohort.data_loading

Covers header validation, strict parsing of identifiers, chart times and values,
code mapping, and plausible-range filtering.
"""
import numpy as np
import pandas as pd
import pytest

from sirs_cohort.data_loading import filter_plausible_values, load_labs, load_vitals
from sirs_cohort.errors import MalformedInputError
from sirs_cohort.logging_utils import logger


def _ts(s: str) -> pd.Timestamp:
    """Helper to create UTC timestamps."""
    return pd.Timestamp(s, tz="UTC")


def _write_csv(path, header: str, rows: list) -> str:
    path.write_text("\n".join([header] + rows) + "\n")
    return str(path)


VITALS_HEADER = "subject_id,hadm_id,icustay_id,charttime,vitalid,valuenum"
LABS_HEADER = "SUBJECT_ID,HADM_ID,ICUSTAY_ID,CHARTTIME,LABEL,VALUENUM"


class TestLoadMeasurements:
    """Loading of the vitals and labs exports."""

    def test_vitals_are_parsed_and_mapped(self, tmp_path):
        path = _write_csv(tmp_path / "vitals.csv", VITALS_HEADER, [
            "1,101,1001,2100-01-01 00:00:00,HeartRate,95",
            "1,101,1001,2100-01-01 01:00:00, tempc ,38.5",
            "1,101,1001,2100-01-01 02:00:00,RespRate,",
        ])

        vitals = load_vitals(path)

        assert list(vitals.columns) == ["subject_id", "hadm_id", "icustay_id", "charttime", "measurement", "valuenum"]
        assert vitals["measurement"].tolist() == ["heart_rate", "temperature", "respiratory_rate"]
        assert vitals["subject_id"].dtype == np.int64, "Identifiers should be int64"
        assert vitals["valuenum"].dtype == np.float64, "Values should be float64"
        assert str(vitals["charttime"].dt.tz) == "UTC", "Chart times should be UTC"
        assert vitals["charttime"].iloc[1] == _ts("2100-01-01 01:00:00")
        assert vitals["valuenum"].iloc[0] == 95.0
        assert np.isnan(vitals["valuenum"].iloc[2]), "Empty value should load as an absent reading"

    def test_upper_case_headers_are_accepted(self, tmp_path):
        path = _write_csv(tmp_path / "labs.csv", LABS_HEADER, [
            "2,201,2001,2100-02-01 06:00:00,WBC,13.2",
            "2,201,2001,2100-02-01 06:00:00,ANION GAP,14",
        ])

        labs = load_labs(path)

        assert labs["measurement"].tolist() == ["wbc_count", "anion_gap"]
        assert labs["icustay_id"].tolist() == [2001, 2001]

    def test_missing_column_raises(self, tmp_path):
        path = _write_csv(tmp_path / "vitals.csv", "subject_id,hadm_id,icustay_id,charttime,vitalid", [
            "1,101,1001,2100-01-01 00:00:00,HeartRate",
        ])

        with pytest.raises(MalformedInputError) as excinfo:
            load_vitals(path)

        assert "valuenum" in str(excinfo.value)
        assert "vitals.csv" in str(excinfo.value), "Error should name the file"

    def test_unparseable_value_raises_with_line(self, tmp_path):
        path = _write_csv(tmp_path / "vitals.csv", VITALS_HEADER, [
            "1,101,1001,2100-01-01 00:00:00,HeartRate,95",
            "1,101,1001,2100-01-01 01:00:00,HeartRate,abc",
        ])

        with pytest.raises(MalformedInputError) as excinfo:
            load_vitals(path)

        message = str(excinfo.value)
        assert "valuenum" in message and "'abc'" in message
        assert "line 3" in message, f"Error should point at the data line: {message}"

    def test_blank_lines_do_not_shift_reported_line(self, tmp_path):
        path = _write_csv(tmp_path / "vitals.csv", VITALS_HEADER, [
            "1,101,1001,2100-01-01 00:00:00,HeartRate,95",
            "",
            "1,101,1001,2100-01-01 01:00:00,HeartRate,abc",
        ])

        with pytest.raises(MalformedInputError) as excinfo:
            load_vitals(path)

        assert "line 4" in str(excinfo.value), f"Blank line 3 must be counted: {excinfo.value}"

    def test_truncated_row_raises(self, tmp_path):
        path = _write_csv(tmp_path / "vitals.csv", VITALS_HEADER, [
            "1,101,1001,2100-01-01 00:00:00,HeartRate,95",
            "1,101,1001,2100-01-01 01:00:00,HeartRate",
        ])

        with pytest.raises(MalformedInputError) as excinfo:
            load_vitals(path)

        message = str(excinfo.value)
        assert "line 3" in message, f"Error should point at the short row: {message}"
        assert "expected 6 fields" in message

    def test_row_with_extra_field_raises(self, tmp_path):
        path = _write_csv(tmp_path / "labs.csv", LABS_HEADER, [
            "2,201,2001,2100-02-01 06:00:00,WBC,13.2,7",
        ])

        with pytest.raises(MalformedInputError) as excinfo:
            load_labs(path)

        assert "line 2" in str(excinfo.value)

    def test_empty_file_raises(self, tmp_path):
        path = tmp_path / "labs.csv"
        path.write_text("")

        with pytest.raises(MalformedInputError):
            load_labs(str(path))

    def test_failed_load_keeps_log_nesting(self, tmp_path):
        path = _write_csv(tmp_path / "vitals.csv", VITALS_HEADER, [
            "1,101,1001,2100-01-01 00:00:00,HeartRate,abc",
        ])
        level = logger._nesting_level

        with pytest.raises(MalformedInputError):
            load_vitals(path)

        assert logger._nesting_level == level, "A failed stage must still close its log level"

    def test_missing_identifier_raises(self, tmp_path):
        path = _write_csv(tmp_path / "labs.csv", LABS_HEADER, [
            "2,201,,2100-02-01 06:00:00,WBC,13.2",
        ])

        with pytest.raises(MalformedInputError) as excinfo:
            load_labs(path)

        assert "icustay_id" in str(excinfo.value)

    def test_fractional_identifier_raises(self, tmp_path):
        path = _write_csv(tmp_path / "labs.csv", LABS_HEADER, [
            "2,201.5,2001,2100-02-01 06:00:00,WBC,13.2",
        ])

        with pytest.raises(MalformedInputError):
            load_labs(path)

    def test_unparseable_charttime_raises(self, tmp_path):
        path = _write_csv(tmp_path / "vitals.csv", VITALS_HEADER, [
            "1,101,1001,2100-01-01 00:00:00,HeartRate,95",
            "1,101,1001,not a date,HeartRate,96",
        ])

        with pytest.raises(MalformedInputError) as excinfo:
            load_vitals(path)

        assert "charttime" in str(excinfo.value)

    def test_unknown_codes_are_dropped(self, tmp_path):
        path = _write_csv(tmp_path / "labs.csv", LABS_HEADER, [
            "2,201,2001,2100-02-01 06:00:00,WBC,13.2",
            "2,201,2001,2100-02-01 06:00:00,TROPONIN,0.4",
        ])

        labs = load_labs(path)

        assert labs["measurement"].tolist() == ["wbc_count"], "Unknown lab codes have no column and are dropped"


class TestFilterPlausibleValues:
    """Optional plausible-range filtering."""

    def setup_method(self):
        self.measurements = pd.DataFrame({
            "subject_id": [1, 1, 1, 1],
            "hadm_id": [101, 101, 101, 101],
            "icustay_id": [1001, 1001, 1001, 1001],
            "charttime": pd.to_datetime(["2100-01-01 00:00"] * 4, utc=True),
            "measurement": ["heart_rate", "heart_rate", "temperature", "temperature"],
            "valuenum": [80.0, 400.0, np.nan, 5.0],
        })

    def test_out_of_range_values_are_dropped(self):
        filtered = filter_plausible_values(self.measurements)

        assert filtered["valuenum"].tolist()[0] == 80.0
        assert len(filtered) == 2, "Heart rate 400 and temperature 5 C are implausible"
        assert filtered["valuenum"].isna().sum() == 1, "Absent readings are kept"

    def test_input_is_not_modified(self):
        filter_plausible_values(self.measurements)
        assert len(self.measurements) == 4
