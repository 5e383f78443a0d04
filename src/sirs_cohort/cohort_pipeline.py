"""
SIRS Cohort Pipeline Orchestration

This module runs the complete cohort construction workflow:
1. Loading the vitals and labs exports (optionally dropping implausible values)
2. Building the merged per-timestamp timeline
3. Forward-filling within ICU stays and evaluating the SIRS criteria
4. Summarizing each ICU stay and imputing remaining gaps with KNN
5. Writing the cohort table, the annotated timeline and the fitted imputer

File structure:
- csvs/vitals.csv: Vital signs export (subject_id, hadm_id, icustay_id, charttime, vitalid, valuenum)
- csvs/labs.csv: Lab results export (subject_id, hadm_id, icustay_id, charttime, label, valuenum)
- data/: Directory for the cohort table, the annotated timeline and the imputer

The run either completes or fails as a whole; after fixing the reported input
problem it is simply run again.
"""
from pathlib import Path
from typing import Tuple

import pandas as pd

from .cohort_imputer import DEFAULT_N_NEIGHBORS, CohortImputer
from .data_loading import filter_plausible_values, load_labs, load_vitals
from .logging_utils import logger
from .sirs_criteria import MIN_CRITERIA_MET, THRESHOLD_COLUMN, annotate_sirs
from .stay_summary import COUNT_MAX_COLUMN, summarize_stays
from .timeline_data import build_timeline
from .utils import ID_COLUMNS, fix_process_timezone, get_missingness_report

# Input CSV file paths
VITALS_CSV = "csvs/vitals.csv"
LABS_CSV = "csvs/labs.csv"

# Output directory and file names
DATA_DIR = "data"
COHORT_FILE = "sirs_cohort.csv"          # One row per ICU stay, fully imputed
TIMELINE_FILE = "sirs_timeline.csv"      # Per-timestamp SIRS annotations
IMPUTER_FILE = "cohort_imputer.pkl"      # Fitted KNN imputer

# Number of most-missing columns shown in the log
MISSINGNESS_LOG_TOP = 5


def _log_missingness(label: str, df: pd.DataFrame) -> None:
    """Log the overall and the worst per-column missing fractions."""
    report = get_missingness_report(df, exclude=ID_COLUMNS)
    overall = float(report.mean()) if len(report) else 0.0
    worst = ", ".join(f"{col}={frac:.2f}" for col, frac in report.head(MISSINGNESS_LOG_TOP).items())
    logger.log_info(f"{label}: {overall:.1%} missing overall; most missing: {worst}")


class CohortPipeline:
    """
    End-to-end builder of the SIRS cohort table.

    Attributes:
        apply_value_ranges (bool): Drop readings outside plausible clinical ranges
        imputer (CohortImputer): KNN imputer, fitted by build()
    """

    def __init__(self, n_neighbors: int = DEFAULT_N_NEIGHBORS, apply_value_ranges: bool = False):
        logger.log_start("CohortPipeline.__init__")
        self.apply_value_ranges = apply_value_ranges
        self.imputer = CohortImputer(n_neighbors=n_neighbors)
        logger.log_end("CohortPipeline.__init__")

    def build(self, vitals_path, labs_path) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """
        Build the cohort from the two exports.

        Args:
            vitals_path: Path to the vitals CSV export
            labs_path: Path to the labs CSV export

        Returns:
            Tuple containing:
                - annotated (pd.DataFrame): Per-timestamp timeline with forward-filled
                  measurements and SIRS criteria columns
                - cohort (pd.DataFrame): One row per ICU stay, identifiers,
                  '<name>_mean' columns and criteria_count_max, no missing values

        Raises:
            MalformedInputError: If an export cannot be parsed or breaks the identifier hierarchy
            ImputationFailure: If the stay summary cannot be imputed
        """
        logger.log_start("CohortPipeline.build")
        try:
            vitals = load_vitals(vitals_path)
            labs = load_labs(labs_path)
            if self.apply_value_ranges:
                vitals = filter_plausible_values(vitals)
                labs = filter_plausible_values(labs)

            timeline = build_timeline(vitals, labs)
            annotated = annotate_sirs(timeline)

            summary = summarize_stays(annotated)
            _log_missingness("stay summary before imputation", summary)
            self.imputer, cohort = self.imputer.fit_transform(summary)
            _log_missingness("stay summary after imputation", cohort)

            n_meeting = int((cohort[COUNT_MAX_COLUMN] >= MIN_CRITERIA_MET).sum())
            logger.log_info(f"{n_meeting} of {len(cohort)} ICU stays met the SIRS threshold at least once")
            logger.log_info(f"{int(annotated[THRESHOLD_COLUMN].sum())} of {len(annotated)} timeline rows meet it")
        finally:
            logger.log_end("CohortPipeline.build")
        return annotated, cohort


def save_cohort(cohort: pd.DataFrame, filepath) -> None:
    """Write the imputed cohort table as CSV, one row per ICU stay."""
    logger.log_start("save_cohort")
    cohort.to_csv(filepath, index=False)
    logger.log_end("save_cohort")


def save_timeline(annotated: pd.DataFrame, filepath) -> None:
    """
    Write the SIRS-annotated timeline as CSV.

    Chart times are written in ISO 8601 with an explicit UTC offset. This table is
    the read-only input of per-patient plotting outside this package.
    """
    logger.log_start("save_timeline")
    annotated.to_csv(filepath, index=False, date_format='%Y-%m-%dT%H:%M:%S%z')
    logger.log_end("save_timeline")


def main():
    """
    Run the pipeline on the default input files and write all artifacts to data/.
    """
    logger.log_start("main")
    try:
        fix_process_timezone()
        data_path = Path(DATA_DIR)
        data_path.mkdir(exist_ok=True)

        pipeline = CohortPipeline()
        annotated, cohort = pipeline.build(VITALS_CSV, LABS_CSV)

        save_cohort(cohort, data_path / COHORT_FILE)
        save_timeline(annotated, data_path / TIMELINE_FILE)
        pipeline.imputer.save(data_path / IMPUTER_FILE)
    finally:
        logger.log_end("main")


if __name__ == "__main__":
    main()
