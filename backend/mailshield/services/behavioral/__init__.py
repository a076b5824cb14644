"""
MailShield Behavioral Services

Tenant baselines, anomaly detection and analyst feedback.
"""

from .anomaly import AnomalyDetector, anomaly_signals
from .baseline import BaselineStore, calculate_baseline
from .feedback import AdjustmentTable, DimensionAdjustment, FeedbackLog, build_adjustment_table

__all__ = [
    "AnomalyDetector",
    "anomaly_signals",
    "BaselineStore",
    "calculate_baseline",
    "AdjustmentTable",
    "DimensionAdjustment",
    "FeedbackLog",
    "build_adjustment_table",
]
