"""
Error taxonomy shared by the evaluator, data fetcher and alert engine
"""

from typing import List


class InsufficientDataError(Exception):
    """Fewer closed candles than an indicator needs"""

    def __init__(self, needed: int, got: int):
        super().__init__(f"Insufficient data: need {needed} points, got {got}")
        self.needed = needed
        self.got = got


class UpstreamUnavailableError(Exception):
    """Exchange timed out or returned an error"""


class ConfigCorruptionError(Exception):
    """Persisted alert store could not be read"""


class AlertValidationError(ValueError):
    """Rejected alert definition, with one human-readable reason per problem"""

    def __init__(self, reasons: List[str]):
        super().__init__("; ".join(reasons))
        self.reasons = list(reasons)
