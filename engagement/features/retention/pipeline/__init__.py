"""
Pure computation for the retention feature: visit patterns and campaign
classification. Nothing here performs I/O.
"""

from .classifier import classify_bucket, classify_campaign
from .pattern import HISTORY_WINDOW, calculate_visit_pattern

__all__ = ["HISTORY_WINDOW", "calculate_visit_pattern", "classify_bucket", "classify_campaign"]
