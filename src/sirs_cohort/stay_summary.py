"""
Per-ICU-Stay Summary of the SIRS-Annotated Timeline

Each ICU stay is reduced to one row: the mean of every measurement over the rows
where it is present, and the highest SIRS criteria count reached during the stay.
A stay with no reading for a measurement gets a NaN mean, which is filled later
by the cohort imputer.
"""
import warnings

import pandas as pd

from .errors import EmptyGroupWarning, MalformedInputError
from .logging_utils import logger
from .measurement_data import MEASUREMENT_COLUMNS
from .sirs_criteria import COUNT_COLUMN
from .utils import ID_COLUMNS, TIMELINE_KEY_COLUMNS

MEAN_SUFFIX = '_mean'
MAX_SUFFIX = '_max'
COUNT_MAX_COLUMN = f"{COUNT_COLUMN}{MAX_SUFFIX}"
SUMMARY_MEAN_COLUMNS = [f"{name}{MEAN_SUFFIX}" for name in MEASUREMENT_COLUMNS]
SUMMARY_COLUMNS = ID_COLUMNS + SUMMARY_MEAN_COLUMNS + [COUNT_MAX_COLUMN]


def _assert_single_parent(annotated: pd.DataFrame) -> None:
    """
    Every ICU stay must belong to exactly one admission of one patient.

    Raises:
        MalformedInputError: Listing the ICU stays that map to several parents
    """
    parents = annotated.groupby('icustay_id')[['subject_id', 'hadm_id']].nunique()
    broken = parents[(parents > 1).any(axis=1)].index.tolist()
    if broken:
        raise MalformedInputError(
            f"icustay_id values linked to more than one (subject_id, hadm_id): {broken[:20]}"
        )


def summarize_stays(annotated: pd.DataFrame, columns: list = MEASUREMENT_COLUMNS) -> pd.DataFrame:
    """
    Aggregate the annotated timeline to one row per ICU stay.

    Args:
        annotated (pd.DataFrame): Output of sirs_criteria.annotate_sirs
        columns (list): Measurement columns to average

    Returns:
        pd.DataFrame: subject_id, hadm_id, icustay_id, one '<name>_mean' column per
                      measurement and criteria_count_max, sorted by icustay_id.
                      The result depends only on the input values, never on row order.

    Raises:
        MalformedInputError: If an icustay_id appears under several admissions or patients

    Warns:
        EmptyGroupWarning: Once per measurement that is absent for some stays
    """
    logger.log_start("summarize_stays")
    try:
        _assert_single_parent(annotated)

        # Fixed row order keeps the floating point sums identical across runs
        ordered = annotated.sort_values(TIMELINE_KEY_COLUMNS, kind='mergesort')
        grouped = ordered.groupby(ID_COLUMNS, sort=True)
        means = grouped[columns].mean()
        means.columns = [f"{name}{MEAN_SUFFIX}" for name in columns]
        count_max = grouped[COUNT_COLUMN].max().rename(COUNT_MAX_COLUMN)

        summary = pd.concat([means, count_max], axis=1).reset_index()
        summary = summary.sort_values('icustay_id', kind='mergesort').reset_index(drop=True)

        for column in means.columns:
            n_empty = int(summary[column].isna().sum())
            if n_empty:
                warnings.warn(
                    f"{n_empty} of {len(summary)} ICU stays have no {column[:-len(MEAN_SUFFIX)]} readings",
                    EmptyGroupWarning,
                    stacklevel=2,
                )

        logger.log_info(f"{len(summary)} ICU stays summarized")
    finally:
        logger.log_end("summarize_stays")
    return summary
