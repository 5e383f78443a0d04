"""
Shared constants and helpers for the SIRS cohort pipeline.

This module defines the identifier and timeline key columns used by every stage,
the process-wide UTC timezone setup, and a missingness report used for logging.
"""
import os
import time

import pandas as pd

# Identifier hierarchy: patient -> hospital admission -> ICU stay
ID_COLUMNS = ['subject_id', 'hadm_id', 'icustay_id']
STAY_COLUMNS = ID_COLUMNS

# One timeline row per ICU stay and chart time
TIME_COLUMN = 'charttime'
TIMELINE_KEY_COLUMNS = ID_COLUMNS + [TIME_COLUMN]

# Long-format measurement columns after loading
MEASUREMENT_COLUMN = 'measurement'
VALUE_COLUMN = 'valuenum'
MEASUREMENT_KEY_COLUMNS = TIMELINE_KEY_COLUMNS + [MEASUREMENT_COLUMN]

UTC = 'UTC'


def fix_process_timezone() -> None:
    """
    Pin the process timezone to UTC.

    MIMIC-III chart times are naive but represent UTC wall-clock time, so every
    timestamp interpretation in the process must happen in UTC.
    """
    os.environ['TZ'] = UTC
    # time.tzset is unavailable on Windows
    if hasattr(time, 'tzset'):
        time.tzset()


def to_utc(series: pd.Series) -> pd.Series:
    """
    Parse a series of chart times as UTC timestamps.

    Args:
        series (pd.Series): Raw chart times (strings or datetimes, naive or aware)

    Returns:
        pd.Series: Timezone-aware datetime series in UTC

    Example:
        >>> to_utc(pd.Series(['2100-01-01 08:00:00'])).iloc[0]
        Timestamp('2100-01-01 08:00:00+0000', tz='UTC')
    """
    return pd.to_datetime(series, utc=True)


def get_missingness_report(df: pd.DataFrame, exclude: list = None) -> pd.Series:
    """
    Fraction of missing values per column.

    Args:
        df (pd.DataFrame): Table to inspect
        exclude (list): Columns to leave out of the report (e.g. identifiers)

    Returns:
        pd.Series: Missing fraction per column, sorted from most to least missing.
                   Empty tables report 0.0 for every column.
    """
    columns = [col for col in df.columns if col not in (exclude or [])]
    if df.empty:
        return pd.Series(0.0, index=columns, dtype=float)
    return df[columns].isna().mean().sort_values(ascending=False, kind='mergesort')
