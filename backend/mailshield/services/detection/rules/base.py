"""
MailShield Detection Rule Base Class

Abstract base class and registry for deterministic detection rules.
Rules are pure functions of the parsed email: no network I/O.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

from mailshield.models.email import ParsedEmail
from mailshield.models.signals import Signal
from mailshield.utils.helpers import extract_urls, strip_html

logger = logging.getLogger(__name__)


@dataclass
class RuleContext:
    """Per-call context handed to every rule."""
    known_tracking_domains: List[str] = field(default_factory=list)


class DetectionRule(ABC):
    """
    Abstract base class for all detection rules.

    Each rule must define:
    - rule_id: Unique identifier (e.g., "AUTH-001")
    - name: Human-readable name
    - category: authentication, sender, headers, content or url

    Each rule must implement:
    - evaluate(): return the Signals the rule fires (possibly empty)
    """

    rule_id: str = "BASE-000"
    name: str = "Base Rule"
    category: str = "general"

    def __init__(self):
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        """
        Evaluate rule against email.

        Args:
            email: Parsed email data
            context: Tenant reputation context

        Returns:
            Signals fired by this rule
        """

    def get_content_text(self, email: ParsedEmail) -> str:
        """Subject plus body text, falling back to stripped HTML."""
        body = email.body_text or strip_html(email.body_html or "")
        return f"{email.subject} {body}"

    def get_urls(self, email: ParsedEmail) -> List[str]:
        """Parser-supplied URLs, or URLs extracted from the body."""
        if email.urls:
            return list(dict.fromkeys(email.urls))
        return extract_urls(email.body_html or email.body_text or "")

    def get_sender_domain(self, email: ParsedEmail) -> Optional[str]:
        if email.sender and email.sender.domain:
            return email.sender.domain.lower()
        return None


class RuleRegistry:
    """Registry of all detection rules."""

    _instance = None
    _rules: List[DetectionRule] = []

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._rules = []
        return cls._instance

    def register(self, rule: DetectionRule) -> None:
        """Register a detection rule."""
        if any(r.rule_id == rule.rule_id for r in self._rules):
            logger.debug(f"Rule {rule.rule_id} already registered")
            return
        self._rules.append(rule)

    def get_all_rules(self) -> List[DetectionRule]:
        """Get all registered rules."""
        return list(self._rules)

    def get_rules_by_category(self, category: str) -> List[DetectionRule]:
        """Get rules by category."""
        return [r for r in self._rules if r.category == category]

    def clear(self) -> None:
        """Clear all registered rules."""
        self._rules = []


# Global registry
rule_registry = RuleRegistry()


def register_rule(rule_class: type) -> type:
    """Decorator to register a rule class."""
    rule_registry.register(rule_class())
    return rule_class
