"""
MailShield Impersonation Models

VIP directory entries and BEC impersonation results.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from .signals import ImpersonationSignalType, Severity, Signal


class VIPRole(str, Enum):
    EXECUTIVE = "executive"
    FINANCE = "finance"
    HR = "hr"
    IT = "it"
    LEGAL = "legal"
    BOARD = "board"
    ASSISTANT = "assistant"
    CUSTOM = "custom"


class RiskLevel(str, Enum):
    """Impersonation risk / per-indicator level."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# Per-indicator level -> shared signal severity and score contribution
LEVEL_SEVERITY = {
    RiskLevel.LOW: Severity.INFO,
    RiskLevel.MEDIUM: Severity.WARNING,
    RiskLevel.HIGH: Severity.WARNING,
    RiskLevel.CRITICAL: Severity.CRITICAL,
}

LEVEL_SCORE = {
    RiskLevel.LOW: 5,
    RiskLevel.MEDIUM: 15,
    RiskLevel.HIGH: 25,
    RiskLevel.CRITICAL: 40,
}


class VIP(BaseModel):
    """Protected person owned by the external VIP directory."""
    id: Optional[str] = None
    tenant_id: str
    email: str
    display_name: str
    title: Optional[str] = None
    department: Optional[str] = None
    role: VIPRole = VIPRole.CUSTOM
    aliases: List[str] = Field(default_factory=list)


class VIPImpersonationCheck(BaseModel):
    is_impersonation: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    matched_vip: Optional[VIP] = None
    reason: Optional[str] = None


class ImpersonationIndicator(BaseModel):
    """One impersonation finding with its four-level severity."""
    type: ImpersonationSignalType
    level: RiskLevel
    detail: str
    confidence: float = Field(0.0, ge=0.0, le=1.0)

    def to_signal(self) -> Signal:
        return Signal(
            type=self.type,
            severity=LEVEL_SEVERITY[self.level],
            score=LEVEL_SCORE[self.level],
            detail=self.detail,
            metadata={"level": self.level.value, "confidence": self.confidence},
        )


class ImpersonationResult(BaseModel):
    is_impersonation: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    impersonation_type: Optional[ImpersonationSignalType] = None
    indicators: List[ImpersonationIndicator] = Field(default_factory=list)
    explanation: str = "No impersonation indicators detected"
    matched_vip: Optional[VIP] = None
    risk_level: RiskLevel = RiskLevel.LOW
    risk_score: float = Field(0.0, ge=0.0, le=1.0)

    @property
    def signals(self) -> List[Signal]:
        return [indicator.to_signal() for indicator in self.indicators]
