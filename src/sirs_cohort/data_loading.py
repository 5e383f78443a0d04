"""
Loading of the Pre-Extracted MIMIC-III Vital Sign and Lab Exports

Both exports are long-format CSV files with one row per measurement:

    subject_id, hadm_id, icustay_id, charttime, <type column>, valuenum

Loading validates the header, parses every column strictly and maps the raw
measurement codes to standardized column names. A file that cannot be parsed
aborts the run: a partial cohort is worse than none, so no malformed row is ever
silently dropped. Empty 'valuenum' cells are absent readings and are kept as NaN;
a row that lacks the 'valuenum' field altogether is malformed.

Output schema (both exports):
    subject_id (int64), hadm_id (int64), icustay_id (int64),
    charttime (datetime64[ns, UTC]), measurement (str), valuenum (float64)
"""
import csv

import numpy as np
import pandas as pd

from .errors import MalformedInputError
from .logging_utils import logger
from .measurement_data import (
    LAB_CODE_MAP,
    LABS_TYPE_COLUMN,
    VALUE_RANGES,
    VITAL_CODE_MAP,
    VITALS_TYPE_COLUMN,
    normalize_code,
)
from .utils import ID_COLUMNS, MEASUREMENT_COLUMN, TIME_COLUMN, VALUE_COLUMN, to_utc

def _scan_data_lines(csv_path, source: str) -> list:
    """
    Check that every data row has as many fields as the header.

    Returns:
        list: File line number of each data row, in order. Blank lines are
              skipped, as read_csv skips them.
    """
    try:
        with open(csv_path, newline='') as f:
            reader = csv.reader(f)
            header = next((row for row in reader if row), None)
            if header is None:
                raise MalformedInputError(f"{source}: file is empty")
            lines = []
            for row in reader:
                if not row:
                    continue
                if len(row) != len(header):
                    raise MalformedInputError(
                        f"{source}: expected {len(header)} fields on line {reader.line_num}, found {len(row)}"
                    )
                lines.append(reader.line_num)
    except (csv.Error, UnicodeDecodeError) as exc:
        raise MalformedInputError(f"{source}: could not read file: {exc}") from exc
    return lines


def _assert_required_columns(df: pd.DataFrame, cols: list, source: str) -> None:
    """Raise MalformedInputError if any required column is missing."""
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise MalformedInputError(f"{source}: missing required columns {missing}")


def _raise_for_first(bad: pd.Series, raw: pd.Series, column: str, source: str) -> None:
    """Raise MalformedInputError describing the first flagged row, if any."""
    if not bad.any():
        return
    # raw is indexed by file line number
    position = int(np.argmax(bad.to_numpy()))
    line = raw.index[position]
    raise MalformedInputError(
        f"{source}: invalid {column} value {raw.iloc[position]!r} on line {line} "
        f"({int(bad.sum())} invalid value(s) in total)"
    )


def _parse_identifier(raw: pd.Series, column: str, source: str) -> pd.Series:
    """Parse an identifier column as int64; every row must hold an integer."""
    values = pd.to_numeric(raw.str.strip(), errors='coerce')
    bad = values.isna() | (values % 1 != 0)
    _raise_for_first(bad, raw, column, source)
    return values.astype('int64')


def _parse_value(raw: pd.Series, source: str) -> pd.Series:
    """Parse measurement values as float64; empty cells stay NaN, garbage fails."""
    values = pd.to_numeric(raw.str.strip(), errors='coerce')
    bad = values.isna() & raw.notna()
    _raise_for_first(bad, raw, VALUE_COLUMN, source)
    return values.astype('float64')


def _parse_charttime(raw: pd.Series, source: str) -> pd.Series:
    """Parse chart times as UTC; every row must hold a timestamp."""
    _raise_for_first(raw.isna(), raw, TIME_COLUMN, source)
    text = raw.str.strip()
    try:
        return to_utc(text)
    except (ValueError, TypeError) as exc:
        # Locate the offending row for the error message
        parsed = pd.to_datetime(text, utc=True, errors='coerce')
        _raise_for_first(parsed.isna(), raw, TIME_COLUMN, source)
        raise MalformedInputError(f"{source}: could not parse {TIME_COLUMN}: {exc}") from exc


def _map_codes(raw: pd.Series, code_map: dict, type_column: str, source: str) -> pd.Series:
    """Map raw measurement codes to column names; unknown codes map to NaN."""
    _raise_for_first(raw.isna(), raw, type_column, source)
    return raw.map(normalize_code).map(code_map)


def load_measurements(csv_path, type_column: str, code_map: dict) -> pd.DataFrame:
    """
    Load one long-format measurement export.

    Args:
        csv_path: Path to the CSV export
        type_column (str): Column holding the measurement code ('vitalid' or 'label')
        code_map (dict): Normalized code -> standardized column name

    Returns:
        pd.DataFrame: Measurements with columns subject_id, hadm_id, icustay_id,
                      charttime, measurement, valuenum. Rows with codes that are
                      not in code_map are dropped and counted in the log.

    Raises:
        MalformedInputError: If a row has fewer or more fields than the header,
                             a required column is missing, an identifier,
                             chart time or code is empty or unparseable, or a
                             non-empty value is not numeric. Errors name the
                             file line of the offending row.
    """
    logger.log_start("load_measurements")
    source = str(csv_path)

    try:
        # Short rows would otherwise be padded with NaN and read as absent values
        lines = _scan_data_lines(csv_path, source)
        try:
            raw = pd.read_csv(csv_path, dtype=str, on_bad_lines='error')
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as exc:
            raise MalformedInputError(f"{source}: could not read file: {exc}") from exc
        if len(raw) != len(lines):
            raise MalformedInputError(f"{source}: found {len(raw)} data rows, expected {len(lines)}")
        raw.index = pd.Index(lines, name='line')

        # MIMIC exports come with either upper- or lower-case headers
        raw.columns = raw.columns.str.strip().str.lower()
        _assert_required_columns(raw, ID_COLUMNS + [TIME_COLUMN, type_column, VALUE_COLUMN], source)

        measurements = pd.DataFrame({
            column: _parse_identifier(raw[column], column, source) for column in ID_COLUMNS
        })
        measurements[TIME_COLUMN] = _parse_charttime(raw[TIME_COLUMN], source)
        measurements[MEASUREMENT_COLUMN] = _map_codes(raw[type_column], code_map, type_column, source)
        measurements[VALUE_COLUMN] = _parse_value(raw[VALUE_COLUMN], source)

        unknown = measurements[MEASUREMENT_COLUMN].isna()
        if unknown.any():
            unknown_codes = sorted(raw.loc[unknown, type_column].map(normalize_code).unique())
            logger.log_info(f"{source}: dropped {int(unknown.sum())} rows with unknown codes {unknown_codes}")
            measurements = measurements[~unknown]
        measurements = measurements.reset_index(drop=True)

        logger.log_info(f"{source}: {len(measurements)} rows loaded")
    finally:
        logger.log_end("load_measurements")
    return measurements


def load_vitals(csv_path) -> pd.DataFrame:
    """Load the vital signs export (codes in the 'vitalid' column)."""
    return load_measurements(csv_path, VITALS_TYPE_COLUMN, VITAL_CODE_MAP)


def load_labs(csv_path) -> pd.DataFrame:
    """Load the lab results export (codes in the 'label' column)."""
    return load_measurements(csv_path, LABS_TYPE_COLUMN, LAB_CODE_MAP)


def filter_plausible_values(measurements: pd.DataFrame, value_ranges: dict = VALUE_RANGES) -> pd.DataFrame:
    """
    Drop readings outside clinically plausible ranges.

    Args:
        measurements (pd.DataFrame): Output of load_measurements
        value_ranges (dict): Column name -> (min, max), bounds inclusive

    Returns:
        pd.DataFrame: Measurements without out-of-range readings. Absent readings
                      and measurements without a configured range are kept.
    """
    logger.log_start("filter_plausible_values")

    names = measurements[MEASUREMENT_COLUMN]
    low = names.map({name: bounds[0] for name, bounds in value_ranges.items()})
    high = names.map({name: bounds[1] for name, bounds in value_ranges.items()})
    values = measurements[VALUE_COLUMN]

    keep = values.isna() | low.isna() | ((values >= low) & (values <= high))
    dropped = int((~keep).sum())
    if dropped:
        logger.log_info(f"dropped {dropped} out-of-range readings")

    logger.log_end("filter_plausible_values")
    return measurements[keep].reset_index(drop=True)
