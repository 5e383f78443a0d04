"""
SIRS Criteria Evaluation on the ICU Stay Timeline

Every timeline row is annotated with the four Systemic Inflammatory Response
Syndrome criteria after carrying the last observed value of each measurement
forward within its ICU stay.

Criteria (thresholds are strict):
1. Temperature > 38 C or < 36 C
2. Heart rate > 90 beats/min
3. Respiratory rate > 20 breaths/min or PaCO2 < 32 mmHg
4. WBC count < 4 or > 12 K/uL, or band neutrophils > 10 %

A measurement with no observation so far in the stay makes its comparison false:
a patient with an unknown value is assumed not to meet that criterion. The
unknown value does not make the criteria count missing.
"""
import pandas as pd

from .logging_utils import logger
from .measurement_data import MEASUREMENT_COLUMNS
from .utils import STAY_COLUMNS, TIMELINE_KEY_COLUMNS

# SIRS thresholds
TEMPERATURE_HIGH_C = 38
TEMPERATURE_LOW_C = 36
HEART_RATE_HIGH = 90
RESPIRATORY_RATE_HIGH = 20
PACO2_LOW_MMHG = 32
WBC_LOW = 4
WBC_HIGH = 12
BANDS_HIGH_PCT = 10
MIN_CRITERIA_MET = 2

CRITERIA_COLUMNS = ['sirs_crit1', 'sirs_crit2', 'sirs_crit3', 'sirs_crit4']
COUNT_COLUMN = 'criteria_count'
THRESHOLD_COLUMN = 'meets_threshold'


def forward_fill_within_stay(timeline: pd.DataFrame, columns: list = MEASUREMENT_COLUMNS) -> pd.DataFrame:
    """
    Carry the last observed value of each column forward within its ICU stay.

    Rows are ordered by (subject_id, hadm_id, icustay_id, charttime) first. Values
    are never carried across a (subject_id, hadm_id, icustay_id) boundary, and
    gaps before the first observation in a stay stay NaN.

    Args:
        timeline (pd.DataFrame): Merged timeline from timeline_data.build_timeline
        columns (list): Columns to fill, in a fixed order

    Returns:
        pd.DataFrame: New, key-sorted timeline with the columns forward-filled
    """
    logger.log_start("forward_fill_within_stay")

    filled = timeline.sort_values(TIMELINE_KEY_COLUMNS, kind='mergesort').reset_index(drop=True)
    missing_before = int(filled[columns].isna().sum().sum())
    filled[columns] = filled.groupby(STAY_COLUMNS, sort=False)[columns].ffill()
    missing_after = int(filled[columns].isna().sum().sum())

    logger.log_info(f"forward fill resolved {missing_before - missing_after} of {missing_before} missing values")
    logger.log_end("forward_fill_within_stay")
    return filled


def evaluate_sirs_criteria(timeline: pd.DataFrame) -> pd.DataFrame:
    """
    Evaluate the four SIRS criteria row by row.

    Args:
        timeline (pd.DataFrame): Timeline with temperature, heart_rate,
                                 respiratory_rate, paco2, wbc_count and bands columns

    Returns:
        pd.DataFrame: Copy of the timeline with sirs_crit1..sirs_crit4 (bool),
                      criteria_count (int 0-4) and meets_threshold (bool) added

    Example:
        temperature=39, heart_rate=95, respiratory_rate=25, wbc_count=13
        -> all four criteria true, criteria_count=4, meets_threshold=True
    """
    logger.log_start("evaluate_sirs_criteria")

    annotated = timeline.copy()

    # Comparisons against NaN are False, which is the intended unknown-means-unmet rule
    temperature = annotated['temperature']
    annotated['sirs_crit1'] = (temperature > TEMPERATURE_HIGH_C) | (temperature < TEMPERATURE_LOW_C)
    annotated['sirs_crit2'] = annotated['heart_rate'] > HEART_RATE_HIGH
    annotated['sirs_crit3'] = (annotated['respiratory_rate'] > RESPIRATORY_RATE_HIGH) | (annotated['paco2'] < PACO2_LOW_MMHG)
    wbc = annotated['wbc_count']
    annotated['sirs_crit4'] = (wbc < WBC_LOW) | (wbc > WBC_HIGH) | (annotated['bands'] > BANDS_HIGH_PCT)

    annotated[CRITERIA_COLUMNS] = annotated[CRITERIA_COLUMNS].astype(bool)
    annotated[COUNT_COLUMN] = annotated[CRITERIA_COLUMNS].sum(axis=1).astype('int64')
    annotated[THRESHOLD_COLUMN] = annotated[COUNT_COLUMN] >= MIN_CRITERIA_MET

    logger.log_info(f"{int(annotated[THRESHOLD_COLUMN].sum())} of {len(annotated)} rows meet the SIRS threshold")
    logger.log_end("evaluate_sirs_criteria")
    return annotated


def annotate_sirs(timeline: pd.DataFrame) -> pd.DataFrame:
    """Forward-fill within each ICU stay, then evaluate the SIRS criteria."""
    logger.log_start("annotate_sirs")
    annotated = evaluate_sirs_criteria(forward_fill_within_stay(timeline))
    logger.log_end("annotate_sirs")
    return annotated
