"""
MailShield Deterministic Detection Engine

Runs every registered rule against a parsed email, deduplicates the
resulting signals and produces the deterministic LayerResult.
"""

import time
import logging
from typing import Any, Dict, Iterable, List, Optional

from mailshield.models.email import ParsedEmail
from mailshield.models.signals import LayerName, LayerResult, Signal
from mailshield.services.detection.deduplicator import deduplicate_signals
from mailshield.services.detection.rules import DetectionRule, RuleContext, rule_registry
from mailshield.services.detection.scoring import score_signals
from mailshield.utils.constants import DETERMINISTIC_CONFIDENCE

logger = logging.getLogger(__name__)


class DeterministicEngine:
    """
    Deterministic detection engine.

    Rules never perform I/O. A rule that raises is logged and skipped so
    the layer still completes with the remaining rules.
    """

    def __init__(self, rules: Optional[List[DetectionRule]] = None):
        self._rules = rules

    @property
    def rules(self) -> List[DetectionRule]:
        """Get all registered rules (lazy loaded)."""
        if self._rules is None:
            self._rules = rule_registry.get_all_rules()
        return self._rules

    def reload_rules(self) -> None:
        self._rules = rule_registry.get_all_rules()

    def analyze(
        self,
        email: ParsedEmail,
        known_tracking_domains: Optional[Iterable[str]] = None,
    ) -> LayerResult:
        """
        Run deterministic analysis on a parsed email.

        Args:
            email: Parsed email
            known_tracking_domains: Tenant allow-list of tracking domains

        Returns:
            LayerResult with layer=deterministic and confidence 0.8
        """
        start = time.perf_counter()
        context = RuleContext(known_tracking_domains=list(known_tracking_domains or []))

        raw_signals: List[Signal] = []
        failed_rules: List[str] = []
        for rule in self.rules:
            try:
                raw_signals.extend(rule.evaluate(email, context))
            except Exception as e:
                logger.error(f"Error in rule {rule.rule_id}: {e}")
                failed_rules.append(rule.rule_id)

        signals = deduplicate_signals(raw_signals)
        score = score_signals(signals)
        elapsed_ms = (time.perf_counter() - start) * 1000

        logger.debug(
            f"Deterministic analysis complete: score={score}, "
            f"signals={len(signals)} (raw {len(raw_signals)})"
        )

        metadata: Dict[str, Any] = {"raw_signal_count": len(raw_signals)}
        if failed_rules:
            metadata["failed_rules"] = failed_rules

        return LayerResult(
            layer=LayerName.DETERMINISTIC,
            score=score,
            confidence=DETERMINISTIC_CONFIDENCE,
            signals=signals,
            processing_time_ms=elapsed_ms,
            metadata=metadata,
        )

    def get_rule_summary(self) -> Dict[str, Any]:
        """Rule counts by category."""
        by_category: Dict[str, int] = {}
        for rule in self.rules:
            by_category[rule.category] = by_category.get(rule.category, 0) + 1
        return {"total_rules": len(self.rules), "by_category": by_category}


# Singleton instance
_engine: Optional[DeterministicEngine] = None


def get_deterministic_engine() -> DeterministicEngine:
    """Get the deterministic engine singleton."""
    global _engine
    if _engine is None:
        _engine = DeterministicEngine()
    return _engine


def run_deterministic_analysis(
    email: ParsedEmail,
    known_tracking_domains: Optional[Iterable[str]] = None,
) -> LayerResult:
    """Convenience function to analyze an email."""
    return get_deterministic_engine().analyze(email, known_tracking_domains)
