"""
MailShield Scoring Configuration

Tunable constants for the detectors that are not simple rule weights:
domain-age amplification, behavioral anomaly weighting, impossible travel
and threat-intel consensus. Defaults are empirically tuned values; every
detector validates its config at construction time.

Usage:
    from mailshield.config.scoring import get_scoring_config

    config = get_scoring_config()
    weights = config.anomaly.weights
"""

import os
import logging
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

from mailshield.utils.constants import (
    DEFAULT_FEED_RELIABILITY,
    FEED_RELIABILITY,
    IMPOSSIBLE_TRAVEL_SPEED_MPH,
    TRAVEL_PATTERN_RADIUS_MILES,
)
from mailshield.utils.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


# =============================================================================
# DOMAIN AGE
# =============================================================================

@dataclass
class DomainAgeConfig:
    """Age bands (days, inclusive upper bounds) and amplification multipliers."""

    critical_days: int = 7
    high_days: int = 30
    moderate_days: int = 90
    low_days: int = 365

    critical_multiplier: float = 2.0
    high_multiplier: float = 1.5
    moderate_multiplier: float = 1.2
    low_multiplier: float = 1.1
    lookalike_min_multiplier: float = 1.5

    # Signal type values amplified when the domain is young or a lookalike
    amplifiable_types: List[str] = field(default_factory=lambda: [
        "bec_display_name_spoof",
        "bec_title_spoof",
        "bec_free_email_executive",
        "bec_reply_to_mismatch",
        "bec_cousin_domain",
        "unicode_spoof",
        "display_name_spoof",
        "credential_request",
        "financial_request",
        "homoglyph",
        "cousin_domain",
    ])

    def validate(self) -> None:
        bands = [self.critical_days, self.high_days, self.moderate_days, self.low_days]
        if any(b <= 0 for b in bands) or bands != sorted(bands) or len(set(bands)) != 4:
            raise ConfigurationError(f"Domain age bands must be positive and increasing: {bands}")
        for name in ("critical_multiplier", "high_multiplier", "moderate_multiplier",
                     "low_multiplier", "lookalike_min_multiplier"):
            if getattr(self, name) < 1.0:
                raise ConfigurationError(f"{name} must be >= 1.0")


# =============================================================================
# BEHAVIORAL ANOMALY
# =============================================================================

@dataclass
class AnomalyWeights:
    """Relative weight of each dimension in the composite score."""

    volume: float = 0.35
    time: float = 0.15
    recipient: float = 0.30
    content: float = 0.20

    def as_dict(self) -> Dict[str, float]:
        return {
            "volume": self.volume,
            "time": self.time,
            "recipient": self.recipient,
            "content": self.content,
        }


@dataclass
class AnomalyConfig:
    """Per-tenant anomaly detection settings."""

    volume_z_threshold: float = 3.0
    hour_probability_threshold: float = 0.02
    urgency_threshold: float = 0.7
    weekend_activity_threshold: float = 0.1

    enable_volume: bool = True
    enable_time: bool = True
    enable_recipient: bool = True
    enable_content: bool = True

    weights: AnomalyWeights = field(default_factory=AnomalyWeights)

    anomaly_score_threshold: int = 30
    alert_threshold: int = 85

    # Feedback learning
    feedback_min_samples: int = 3
    feedback_damping: float = 0.2

    def enabled(self, dimension: str) -> bool:
        return getattr(self, f"enable_{dimension}")

    def validate(self) -> None:
        if self.volume_z_threshold <= 0:
            raise ConfigurationError("volume_z_threshold must be positive")
        if not 0 < self.hour_probability_threshold < 1:
            raise ConfigurationError("hour_probability_threshold must be in (0, 1)")
        if not 0 < self.urgency_threshold <= 1:
            raise ConfigurationError("urgency_threshold must be in (0, 1]")
        if not 0 <= self.weekend_activity_threshold <= 1:
            raise ConfigurationError("weekend_activity_threshold must be in [0, 1]")
        weights = self.weights.as_dict()
        if any(w < 0 for w in weights.values()):
            raise ConfigurationError("Anomaly weights must be non-negative")
        if abs(sum(weights.values()) - 1.0) > 0.01:
            raise ConfigurationError(f"Anomaly weights must sum to 1.0 (got {sum(weights.values()):.2f})")
        for dimension, weight in weights.items():
            if self.enabled(dimension) and weight == 0:
                raise ConfigurationError(f"Dimension '{dimension}' is enabled but has zero weight")
        if not 0 <= self.anomaly_score_threshold <= 100:
            raise ConfigurationError("anomaly_score_threshold must be within 0-100")
        if not 0 < self.alert_threshold <= 100:
            raise ConfigurationError("alert_threshold must be within 1-100")
        if self.feedback_min_samples < 1:
            raise ConfigurationError("feedback_min_samples must be >= 1")
        if not 0 <= self.feedback_damping <= 1:
            raise ConfigurationError("feedback_damping must be within 0-1")


# =============================================================================
# IMPOSSIBLE TRAVEL
# =============================================================================

@dataclass
class TravelConfig:
    max_speed_mph: float = IMPOSSIBLE_TRAVEL_SPEED_MPH
    pattern_radius_miles: float = TRAVEL_PATTERN_RADIUS_MILES
    vpn_factor: float = 0.6
    known_pattern_factor: float = 0.25

    def validate(self) -> None:
        if self.max_speed_mph <= 0:
            raise ConfigurationError("max_speed_mph must be positive")
        if self.pattern_radius_miles < 0:
            raise ConfigurationError("pattern_radius_miles must be non-negative")
        for name in ("vpn_factor", "known_pattern_factor"):
            if not 0 <= getattr(self, name) <= 1:
                raise ConfigurationError(f"{name} must be within 0-1")


# =============================================================================
# THREAT INTEL CONSENSUS
# =============================================================================

@dataclass
class ConsensusConfig:
    feed_reliability: Dict[str, float] = field(default_factory=lambda: dict(FEED_RELIABILITY))
    default_reliability: float = DEFAULT_FEED_RELIABILITY
    disagreement_threshold: float = 0.7
    unanimity_floor: float = 0.8
    multi_source_bonus: float = 1.1
    multi_source_minimum: int = 3

    def reliability_for(self, source: str) -> float:
        return self.feed_reliability.get(source.lower(), self.default_reliability)

    def validate(self) -> None:
        for source, value in self.feed_reliability.items():
            if not 0 < value <= 1:
                raise ConfigurationError(f"Reliability for '{source}' must be within (0, 1]")
        if not 0 < self.default_reliability <= 1:
            raise ConfigurationError("default_reliability must be within (0, 1]")
        if not 0 < self.disagreement_threshold <= 1:
            raise ConfigurationError("disagreement_threshold must be within (0, 1]")
        if not 0 < self.unanimity_floor <= 1:
            raise ConfigurationError("unanimity_floor must be within (0, 1]")
        if self.multi_source_bonus < 1:
            raise ConfigurationError("multi_source_bonus must be >= 1")


# =============================================================================
# MASTER CONFIG
# =============================================================================

def _apply(section: Any, values: Dict[str, Any]) -> None:
    names = {f.name for f in fields(section)}
    for key, value in values.items():
        if key not in names:
            logger.warning(f"Ignoring unknown scoring option {type(section).__name__}.{key}")
            continue
        current = getattr(section, key)
        if hasattr(current, "__dataclass_fields__") and isinstance(value, dict):
            _apply(current, value)
        else:
            setattr(section, key, value)


@dataclass
class ScoringConfig:
    """Master scoring configuration."""

    domain_age: DomainAgeConfig = field(default_factory=DomainAgeConfig)
    anomaly: AnomalyConfig = field(default_factory=AnomalyConfig)
    travel: TravelConfig = field(default_factory=TravelConfig)
    consensus: ConsensusConfig = field(default_factory=ConsensusConfig)

    def validate(self) -> None:
        self.domain_age.validate()
        self.anomaly.validate()
        self.travel.validate()
        self.consensus.validate()

    def to_dict(self) -> Dict[str, Any]:
        anomaly = dict(self.anomaly.__dict__)
        anomaly["weights"] = self.anomaly.weights.as_dict()
        return {
            "domain_age": dict(self.domain_age.__dict__),
            "anomaly": anomaly,
            "travel": dict(self.travel.__dict__),
            "consensus": dict(self.consensus.__dict__),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScoringConfig":
        """Create config from a (partial) nested dictionary."""
        config = cls()
        for section in ("domain_age", "anomaly", "travel", "consensus"):
            if section in data:
                _apply(getattr(config, section), data[section])
        config.validate()
        return config

    @classmethod
    def from_env(cls) -> "ScoringConfig":
        """Create config from environment variables."""
        config = cls()

        # Anomaly
        if os.getenv("ANOMALY_Z_THRESHOLD"):
            config.anomaly.volume_z_threshold = float(os.getenv("ANOMALY_Z_THRESHOLD"))
        if os.getenv("ANOMALY_HOUR_THRESHOLD"):
            config.anomaly.hour_probability_threshold = float(os.getenv("ANOMALY_HOUR_THRESHOLD"))
        if os.getenv("ANOMALY_ALERT_THRESHOLD"):
            config.anomaly.alert_threshold = int(os.getenv("ANOMALY_ALERT_THRESHOLD"))

        # Domain age
        if os.getenv("DOMAIN_AGE_HIGH_MULTIPLIER"):
            config.domain_age.high_multiplier = float(os.getenv("DOMAIN_AGE_HIGH_MULTIPLIER"))
        if os.getenv("DOMAIN_AGE_CRITICAL_MULTIPLIER"):
            config.domain_age.critical_multiplier = float(os.getenv("DOMAIN_AGE_CRITICAL_MULTIPLIER"))

        # Travel
        if os.getenv("TRAVEL_MAX_SPEED_MPH"):
            config.travel.max_speed_mph = float(os.getenv("TRAVEL_MAX_SPEED_MPH"))
        if os.getenv("TRAVEL_PATTERN_RADIUS_MILES"):
            config.travel.pattern_radius_miles = float(os.getenv("TRAVEL_PATTERN_RADIUS_MILES"))

        # Consensus
        if os.getenv("CONSENSUS_DISAGREEMENT_THRESHOLD"):
            config.consensus.disagreement_threshold = float(os.getenv("CONSENSUS_DISAGREEMENT_THRESHOLD"))

        config.validate()
        return config


# =============================================================================
# SINGLETON ACCESS
# =============================================================================

_scoring_config: Optional[ScoringConfig] = None


def get_scoring_config() -> ScoringConfig:
    """Get the global scoring configuration."""
    global _scoring_config
    if _scoring_config is None:
        _scoring_config = ScoringConfig.from_env()
        logger.info("Scoring configuration loaded")
    return _scoring_config


def set_scoring_config(config: ScoringConfig) -> ScoringConfig:
    """Replace the global scoring configuration after validating it."""
    global _scoring_config
    config.validate()
    _scoring_config = config
    logger.info("Scoring configuration replaced")
    return config


def reset_scoring_config() -> None:
    """Reset scoring config to defaults."""
    global _scoring_config
    _scoring_config = None
    logger.info("Scoring configuration reset to defaults")
