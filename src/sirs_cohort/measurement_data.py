"""
Measurement Metadata for MIMIC-III Vital Signs and Lab Results

This module maps the measurement codes found in the pre-extracted MIMIC-III exports
to the column names used throughout the pipeline, together with clinically
plausible value ranges for optional quality filtering.

Two exports are supported:
1. Vital signs: one row per charted vital, code in the 'vitalid' column
2. Lab results: one row per lab value, code in the 'label' column

The column orderings defined here are the fixed, fully-ordered column sets used
by the pivot, forward fill and aggregation stages.
"""

# Column holding the measurement code in each export
VITALS_TYPE_COLUMN = 'vitalid'
LABS_TYPE_COLUMN = 'label'

# Vital sign metadata: export code, standardized name, and plausible range
VITAL_METADATA = [
    {'code': 'HeartRate', 'name': 'heart_rate', 'min': 0, 'max': 300},            # beats/min
    {'code': 'SysBP', 'name': 'systolic_bp', 'min': 0, 'max': 400},               # mmHg
    {'code': 'DiasBP', 'name': 'diastolic_bp', 'min': 0, 'max': 300},             # mmHg
    {'code': 'MeanBP', 'name': 'mean_bp', 'min': 0, 'max': 300},                  # mmHg
    {'code': 'RespRate', 'name': 'respiratory_rate', 'min': 0, 'max': 70},        # breaths/min
    {'code': 'TempC', 'name': 'temperature', 'min': 10, 'max': 50},               # Celsius
    {'code': 'SpO2', 'name': 'spo2', 'min': 0, 'max': 100},                       # %
    {'code': 'Glucose', 'name': 'glucose_bedside', 'min': 0, 'max': 2000},        # mg/dL, point of care
]

# Lab metadata: export label, standardized name, and plausible range
LAB_METADATA = [
    {'code': 'ANION GAP', 'name': 'anion_gap', 'min': 0, 'max': 10000},           # mEq/L
    {'code': 'ALBUMIN', 'name': 'albumin', 'min': 0, 'max': 10},                  # g/dL
    {'code': 'BANDS', 'name': 'bands', 'min': 0, 'max': 100},                     # %
    {'code': 'BICARBONATE', 'name': 'bicarbonate', 'min': 0, 'max': 10000},       # mEq/L
    {'code': 'BILIRUBIN', 'name': 'bilirubin', 'min': 0, 'max': 150},             # mg/dL
    {'code': 'CREATININE', 'name': 'creatinine', 'min': 0, 'max': 150},           # mg/dL
    {'code': 'CHLORIDE', 'name': 'chloride', 'min': 0, 'max': 10000},             # mEq/L
    {'code': 'GLUCOSE', 'name': 'glucose', 'min': 0, 'max': 10000},               # mg/dL
    {'code': 'HEMATOCRIT', 'name': 'hematocrit', 'min': 0, 'max': 100},           # %
    {'code': 'HEMOGLOBIN', 'name': 'hemoglobin', 'min': 0, 'max': 50},            # g/dL
    {'code': 'LACTATE', 'name': 'lactate', 'min': 0, 'max': 50},                  # mmol/L
    {'code': 'PLATELET', 'name': 'platelet_count', 'min': 0, 'max': 10000},       # K/uL
    {'code': 'POTASSIUM', 'name': 'potassium', 'min': 0, 'max': 30},              # mEq/L
    {'code': 'PTT', 'name': 'ptt', 'min': 0, 'max': 150},                         # seconds
    {'code': 'INR', 'name': 'inr', 'min': 0, 'max': 50},
    {'code': 'PT', 'name': 'pt', 'min': 0, 'max': 150},                           # seconds
    {'code': 'SODIUM', 'name': 'sodium', 'min': 0, 'max': 200},                   # mEq/L
    {'code': 'BUN', 'name': 'bun', 'min': 0, 'max': 300},                         # mg/dL
    {'code': 'WBC', 'name': 'wbc_count', 'min': 0, 'max': 1000},                  # K/uL
    {'code': 'PACO2', 'name': 'paco2', 'min': 0, 'max': 200},                     # mmHg, arterial
]


def normalize_code(code) -> str:
    """Codes are matched case-insensitively with surrounding whitespace removed."""
    return str(code).strip().upper()


def build_code_map(metadata: list) -> dict:
    """Map normalized export codes to standardized column names."""
    return {normalize_code(meta['code']): meta['name'] for meta in metadata}


VITAL_CODE_MAP = build_code_map(VITAL_METADATA)
LAB_CODE_MAP = build_code_map(LAB_METADATA)

# Fixed column orderings for the wide timeline
VITAL_COLUMNS = [meta['name'] for meta in VITAL_METADATA]
LAB_COLUMNS = [meta['name'] for meta in LAB_METADATA]
MEASUREMENT_COLUMNS = VITAL_COLUMNS + LAB_COLUMNS

# name -> (min, max)
VALUE_RANGES = {meta['name']: (meta['min'], meta['max']) for meta in VITAL_METADATA + LAB_METADATA}
