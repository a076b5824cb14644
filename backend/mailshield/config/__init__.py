"""
MailShield Configuration Package
"""

from .settings import Settings, get_settings
from .scoring import (
    AnomalyConfig,
    AnomalyWeights,
    ConsensusConfig,
    DomainAgeConfig,
    ScoringConfig,
    TravelConfig,
    get_scoring_config,
    reset_scoring_config,
    set_scoring_config,
)

__all__ = [
    "Settings",
    "get_settings",
    "AnomalyConfig",
    "AnomalyWeights",
    "ConsensusConfig",
    "DomainAgeConfig",
    "ScoringConfig",
    "TravelConfig",
    "get_scoring_config",
    "reset_scoring_config",
    "set_scoring_config",
]
