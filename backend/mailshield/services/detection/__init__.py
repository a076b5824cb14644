"""
MailShield Deterministic Detection
"""

from .engine import DeterministicEngine, get_deterministic_engine, run_deterministic_analysis
from .deduplicator import (
    calculate_deduplication_impact,
    deduplicate_signals,
    group_signals_by_category,
)
from .scoring import combine_layers, score_signals, signal_contribution

__all__ = [
    "DeterministicEngine",
    "get_deterministic_engine",
    "run_deterministic_analysis",
    "calculate_deduplication_impact",
    "deduplicate_signals",
    "group_signals_by_category",
    "combine_layers",
    "score_signals",
    "signal_contribution",
]
