"""
MailShield Header Detection Rules
"""

from typing import List

from mailshield.models.email import ParsedEmail
from mailshield.models.signals import DeterministicSignalType, Severity, Signal

from .base import DetectionRule, RuleContext, register_rule


@register_rule
class ReplyToMismatchRule(DetectionRule):
    """Replies would go to a different domain than the sender's."""

    rule_id = "HDR-001"
    name = "Reply-To Mismatch"
    category = "headers"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        reply_to = email.reply_to
        if not reply_to or not reply_to.domain:
            return []
        if reply_to.domain == email.sender.domain:
            return []
        return [Signal(
            type=DeterministicSignalType.REPLY_TO_MISMATCH,
            severity=Severity.WARNING,
            score=15,
            detail=(
                f"Reply-To domain ({reply_to.domain}) differs from "
                f"From domain ({email.sender.domain})"
            ),
            metadata={"reply_to_domain": reply_to.domain, "from_domain": email.sender.domain},
        )]


@register_rule
class MissingMessageIdRule(DetectionRule):
    rule_id = "HDR-002"
    name = "Missing Message-ID"
    category = "headers"

    def evaluate(self, email: ParsedEmail, context: RuleContext) -> List[Signal]:
        if email.has_message_id:
            return []
        return [Signal(
            type=DeterministicSignalType.HEADER_ANOMALY,
            severity=Severity.WARNING,
            score=10,
            detail="Missing Message-ID header",
            metadata={"header": "message-id"},
        )]
