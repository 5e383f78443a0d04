"""
K-Nearest-Neighbor Imputation for the ICU Stay Summary

This module fills the measurement means that remain missing after aggregation,
so that downstream models receive a fully populated numeric table.

The CohortImputer class handles:
1. Selection of the feature columns (everything except the identifiers)
2. Fitting a scikit-learn KNNImputer once on the full stay summary
3. Filling every missing feature value from the nearest stays
4. Persistence of the fitted imputer for later reuse

Distances are computed only over feature columns; subject_id, hadm_id and
icustay_id never enter the distance metric. The imputation is deterministic:
there is no random state, and the output is a fixed function of the table as
produced by stay_summary.summarize_stays (sorted by icustay_id). Donors tied at
the k-th smallest distance are chosen by numpy's introselect partition
(np.argpartition inside KNNImputer) over that row order. The choice is
reproducible for identical input, but it does not prefer lower icustay_id.
"""
import pickle
from typing import List, Tuple

import pandas as pd
from sklearn.impute import KNNImputer

from .errors import ImputationFailure
from .logging_utils import logger
from .utils import ID_COLUMNS

DEFAULT_N_NEIGHBORS = 5      # Number of neighboring stays averaged per missing value
DEFAULT_WEIGHTS = 'uniform'  # Neighbors contribute equally


class CohortImputer:
    """
    KNN imputer for the per-ICU-stay summary table.

    Attributes:
        n_neighbors (int): Number of neighboring stays used for each missing value
        weights (str): KNNImputer weighting ('uniform' or 'distance')
        feature_columns (List[str]): Feature columns seen during fit, in order
        knn_imputer (KNNImputer): Fitted scikit-learn imputer, None before fit
    """

    def __init__(self, n_neighbors: int = DEFAULT_N_NEIGHBORS, weights: str = DEFAULT_WEIGHTS):
        logger.log_start("CohortImputer.__init__")
        self.n_neighbors = n_neighbors
        self.weights = weights
        self.feature_columns = []
        self.knn_imputer = None
        logger.log_end("CohortImputer.__init__")

    def _get_feature_columns(self, summary: pd.DataFrame) -> List[str]:
        """Every column except the identifiers, in table order."""
        return [col for col in summary.columns if col not in ID_COLUMNS]

    def fit(self, summary: pd.DataFrame) -> 'CohortImputer':
        """
        Fit the KNN imputer on the full stay summary.

        Args:
            summary (pd.DataFrame): Output of stay_summary.summarize_stays

        Returns:
            CohortImputer: self, fitted

        Raises:
            ImputationFailure: If the table has no rows, or a feature column has
                               no value for any stay (no neighbor could supply one)
        """
        logger.log_start("CohortImputer.fit")
        try:
            if summary.empty:
                raise ImputationFailure("cannot fit the imputer on an empty stay summary")

            feature_columns = self._get_feature_columns(summary)
            features = summary[feature_columns].astype('float64')
            empty_columns = [col for col in feature_columns if features[col].isna().all()]
            if empty_columns:
                raise ImputationFailure(f"no ICU stay has a value for columns {empty_columns}")

            # A cohort smaller than n_neighbors still imputes from every available stay
            n_neighbors = min(self.n_neighbors, len(summary))
            self.knn_imputer = KNNImputer(n_neighbors=n_neighbors, weights=self.weights)
            self.knn_imputer.fit(features.to_numpy())
            self.feature_columns = feature_columns
        finally:
            logger.log_end("CohortImputer.fit")
        return self

    def transform(self, summary: pd.DataFrame) -> pd.DataFrame:
        """
        Fill missing feature values using the fitted imputer.

        Args:
            summary (pd.DataFrame): Stay summary with the columns seen during fit

        Returns:
            pd.DataFrame: New table, same columns and row order, identifiers
                          untouched, no missing feature values

        Raises:
            ImputationFailure: If the imputer is not fitted or columns are missing
        """
        logger.log_start("CohortImputer.transform")
        try:
            if self.knn_imputer is None:
                raise ImputationFailure("CohortImputer must be fitted before transform")
            missing = [col for col in self.feature_columns if col not in summary.columns]
            if missing:
                raise ImputationFailure(f"stay summary lacks fitted feature columns {missing}")

            imputed = summary.copy()
            filled = self.knn_imputer.transform(summary[self.feature_columns].astype('float64').to_numpy())
            imputed[self.feature_columns] = pd.DataFrame(filled, columns=self.feature_columns, index=summary.index)
            # Complete columns keep their original values and dtypes (e.g. integer criteria counts)
            complete_columns = [col for col in self.feature_columns if summary[col].notna().all()]
            if complete_columns:
                imputed[complete_columns] = summary[complete_columns]

            logger.log_info(f"imputed {int(summary[self.feature_columns].isna().sum().sum())} missing values")
        finally:
            logger.log_end("CohortImputer.transform")
        return imputed

    def fit_transform(self, summary: pd.DataFrame) -> Tuple['CohortImputer', pd.DataFrame]:
        """
        Fit on the stay summary and fill it.

        Returns:
            Tuple containing:
                - self: The fitted imputer
                - imputed (pd.DataFrame): Stay summary without missing feature values
        """
        logger.log_start("CohortImputer.fit_transform")
        try:
            self.fit(summary)
            imputed = self.transform(summary)
        finally:
            logger.log_end("CohortImputer.fit_transform")
        return self, imputed

    def save(self, filepath: str) -> None:
        """Save the fitted imputer to disk with pickle."""
        logger.log_start("CohortImputer.save")
        with open(filepath, 'wb') as f:
            pickle.dump(self, f)
        logger.log_end("CohortImputer.save")

    @classmethod
    def load(cls, filepath: str) -> 'CohortImputer':
        """Load an imputer saved with save()."""
        logger.log_start("CohortImputer.load")
        with open(filepath, 'rb') as f:
            imputer = pickle.load(f)
        logger.log_end("CohortImputer.load")
        return imputer
