"""
SIRS Cohort Builder for MIMIC-III ICU Stays

This package turns two pre-extracted MIMIC-III exports (vital signs and lab results)
into a per-ICU-stay feature table annotated with Systemic Inflammatory Response
Syndrome (SIRS) criteria.

The package is organized into several components:
- Measurement metadata (code tables, plausible value ranges, column orderings)
- Loading and validation of the long-format CSV exports
- Deduplication, pivoting and merging into a per-timestamp timeline
- Forward fill within ICU stays and SIRS criteria evaluation
- Per-stay aggregation and KNN imputation of remaining gaps

Main workflow:
1. Load vitals and labs CSV files
2. Average duplicate simultaneous readings and pivot to wide form
3. Outer-join vitals and labs into one timeline per ICU stay
4. Forward-fill within each stay and evaluate the four SIRS criteria
5. Aggregate per stay and impute remaining missing values
"""
