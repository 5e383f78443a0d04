"""
Timeline Construction from Long-Format Measurements

This module reshapes the loaded vital sign and lab measurements into a single
per-timestamp timeline for every ICU stay.

Processing steps:
1. Deduplication: readings sharing subject, admission, ICU stay, chart time and
   measurement are replaced by their arithmetic mean. Simultaneous duplicate
   readings are expected in MIMIC-III and are not treated as errors.
2. Pivot: each measurement becomes a column; one row per
   (subject_id, hadm_id, icustay_id, charttime).
3. Merge: vitals and labs timelines are outer-joined so that every chart time
   from either source appears exactly once. Columns without a reading at that
   time are NaN, never zero.
"""
import duckdb
import pandas as pd

from .logging_utils import logger
from .measurement_data import LAB_COLUMNS, MEASUREMENT_COLUMNS, VITAL_COLUMNS
from .utils import (
    MEASUREMENT_COLUMN,
    MEASUREMENT_KEY_COLUMNS,
    TIME_COLUMN,
    TIMELINE_KEY_COLUMNS,
    UTC,
    VALUE_COLUMN,
)

# Average every (stay, chart time, measurement) group. NaN readings are absent
# and excluded, so a group holding only NaN readings averages to NULL.
DEDUP_SQL = f"""
    SELECT
        m.subject_id,
        m.hadm_id,
        m.icustay_id,
        m.{TIME_COLUMN},
        m.{MEASUREMENT_COLUMN},
        AVG(m.{VALUE_COLUMN}::DOUBLE) FILTER (WHERE m.{VALUE_COLUMN} IS NOT NULL AND NOT isnan(m.{VALUE_COLUMN})) AS {VALUE_COLUMN},
        COUNT(*) AS n_readings
    FROM tmp_measurements m
    GROUP BY m.subject_id, m.hadm_id, m.icustay_id, m.{TIME_COLUMN}, m.{MEASUREMENT_COLUMN}
    ORDER BY m.subject_id, m.hadm_id, m.icustay_id, m.{TIME_COLUMN}, m.{MEASUREMENT_COLUMN}
    """


def deduplicate_measurements(measurements: pd.DataFrame) -> pd.DataFrame:
    """
    Collapse duplicate readings to their arithmetic mean.

    Args:
        measurements (pd.DataFrame): Long-format measurements from data_loading

    Returns:
        pd.DataFrame: Same columns, with exactly one row per
                      (subject_id, hadm_id, icustay_id, charttime, measurement),
                      sorted by those keys.

    Example:
        Two RespRate readings of 18 and 22 at the same chart time in the same
        stay collapse to a single reading of 20.
    """
    logger.log_start("deduplicate_measurements")

    if measurements.empty:
        logger.log_end("deduplicate_measurements")
        return measurements[MEASUREMENT_KEY_COLUMNS + [VALUE_COLUMN]].reset_index(drop=True)

    # DuckDB receives naive UTC wall-clock times; the UTC zone is restored afterwards
    frame = measurements[MEASUREMENT_KEY_COLUMNS + [VALUE_COLUMN]].copy()
    frame[TIME_COLUMN] = frame[TIME_COLUMN].dt.tz_convert(UTC).dt.tz_localize(None)

    con = duckdb.connect(database=":memory:")
    try:
        con.register("tmp_measurements", frame)
        df = con.execute(DEDUP_SQL).fetchdf()
    finally:
        con.close()

    collapsed = int((df['n_readings'] - 1).sum())
    if collapsed:
        logger.log_info(f"averaged {collapsed} duplicate readings into {int((df['n_readings'] > 1).sum())} keys")

    df[TIME_COLUMN] = pd.to_datetime(df[TIME_COLUMN]).dt.tz_localize(UTC).astype(measurements[TIME_COLUMN].dtype)
    df[VALUE_COLUMN] = df[VALUE_COLUMN].astype('float64')
    for column in ['subject_id', 'hadm_id', 'icustay_id']:
        df[column] = df[column].astype('int64')
    df = df.drop(columns=['n_readings'])

    logger.log_end("deduplicate_measurements")
    return df


def pivot_measurements(measurements: pd.DataFrame, columns: list) -> pd.DataFrame:
    """
    Deduplicate and pivot measurements into one row per chart time.

    Args:
        measurements (pd.DataFrame): Long-format measurements from data_loading
        columns (list): Full, ordered list of measurement columns for the output.
                        Columns never observed are present and entirely NaN.

    Returns:
        pd.DataFrame: Timeline key columns followed by the measurement columns
    """
    logger.log_start("pivot_measurements")

    deduplicated = deduplicate_measurements(measurements)

    if deduplicated.empty:
        wide = deduplicated[TIMELINE_KEY_COLUMNS].copy()
        for column in columns:
            wide[column] = pd.Series(dtype='float64')
        logger.log_end("pivot_measurements")
        return wide

    wide = deduplicated.pivot(index=TIMELINE_KEY_COLUMNS, columns=MEASUREMENT_COLUMN, values=VALUE_COLUMN)
    wide = wide.reindex(columns=columns).astype('float64')
    wide.columns.name = None
    wide = wide.reset_index()

    logger.log_info(f"{len(wide)} timeline rows from {len(deduplicated)} readings")
    logger.log_end("pivot_measurements")
    return wide


def merge_timelines(vitals_wide: pd.DataFrame, labs_wide: pd.DataFrame) -> pd.DataFrame:
    """
    Full outer join of the vitals and labs timelines.

    Args:
        vitals_wide (pd.DataFrame): Pivoted vitals
        labs_wide (pd.DataFrame): Pivoted labs

    Returns:
        pd.DataFrame: One row per (subject_id, hadm_id, icustay_id, charttime)
                      present in either input, sorted by those keys. Columns
                      that only one side carries are NaN on rows from the other.
    """
    logger.log_start("merge_timelines")

    merged = pd.merge(
        vitals_wide,
        labs_wide,
        on=TIMELINE_KEY_COLUMNS,
        how='outer',
        validate='one_to_one',
    )
    merged = merged.sort_values(TIMELINE_KEY_COLUMNS, kind='mergesort').reset_index(drop=True)

    logger.log_info(f"{len(merged)} merged timeline rows")
    logger.log_end("merge_timelines")
    return merged


def build_timeline(vitals: pd.DataFrame, labs: pd.DataFrame) -> pd.DataFrame:
    """
    Build the unified per-timestamp timeline from loaded vitals and labs.

    Returns:
        pd.DataFrame: Timeline key columns followed by MEASUREMENT_COLUMNS
                      (vitals first, then labs).
    """
    logger.log_start("build_timeline")

    vitals_wide = pivot_measurements(vitals, VITAL_COLUMNS)
    labs_wide = pivot_measurements(labs, LAB_COLUMNS)
    timeline = merge_timelines(vitals_wide, labs_wide)[TIMELINE_KEY_COLUMNS + MEASUREMENT_COLUMNS]

    logger.log_end("build_timeline")
    return timeline
