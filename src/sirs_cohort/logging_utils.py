"""
Logging Utilities for the SIRS Cohort Pipeline

Each pipeline stage brackets its work with a start and a finish line. Lines are
indented by call depth, so a full run prints as a tree of stages with
millisecond timestamps, and stage-level counts (duplicate readings collapsed,
unknown codes dropped, missing values left) are printed at the depth of the stage
that produced them.

Example output:
    10:30:45.123 Started CohortPipeline.build
        10:30:45.124 Started load_measurements
        10:30:45.480 vitals.csv: 1204 rows loaded
        10:30:45.481 Finished load_measurements
"""
from datetime import datetime


class NestedLogger:
    """
    A logger that indents its output by the current stage nesting depth.

    Attributes:
        _nesting_level (int): Current indentation level (0 = no indentation)
    """

    def __init__(self):
        self._nesting_level = 0

    def _get_timestamp(self) -> str:
        """Timestamp in format 'HH:MM:SS.mmm'."""
        return datetime.now().strftime('%H:%M:%S.%f')[:-3]

    def _get_indent(self) -> str:
        return "    " * self._nesting_level

    def log_start(self, function_name: str) -> None:
        """
        Print a 'Started' line and increase nesting for the stages it calls.

        Args:
            function_name (str): Name of the stage being started
        """
        print(f"{self._get_indent()}{self._get_timestamp()} Started {function_name}")
        self._nesting_level += 1

    def log_end(self, function_name: str) -> None:
        """
        Decrease nesting and print a 'Finished' line.

        Args:
            function_name (str): Name of the stage being completed
        """
        if self._nesting_level > 0:
            self._nesting_level -= 1
        print(f"{self._get_indent()}{self._get_timestamp()} Finished {function_name}")

    def log_info(self, message: str) -> None:
        """
        Print a message at the current nesting level without changing it.

        Args:
            message (str): Free-form message, usually a count or a summary figure
        """
        print(f"{self._get_indent()}{self._get_timestamp()} {message}")


# Shared instance so that nesting is consistent across modules
logger = NestedLogger()
