"""
MailShield Detection Rules

All detection rules are automatically registered via the @register_rule decorator.
"""

from .base import (
    DetectionRule,
    RuleContext,
    RuleRegistry,
    rule_registry,
    register_rule,
)

# Import all rule modules to trigger registration
from . import authentication
from . import sender
from . import headers
from . import content
from . import urls


def get_all_rules():
    """Get all registered detection rules."""
    return rule_registry.get_all_rules()


def get_rules_by_category(category: str):
    """Get rules by category."""
    return rule_registry.get_rules_by_category(category)


__all__ = [
    'DetectionRule',
    'RuleContext',
    'RuleRegistry',
    'rule_registry',
    'register_rule',
    'get_all_rules',
    'get_rules_by_category',
]
