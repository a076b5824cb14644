"""
MailShield Account-Takeover Models

Login locations, whitelisted travel patterns and impossible-travel results.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class GeoPoint(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    label: Optional[str] = None


class LoginLocation(BaseModel):
    """A single login event with optional geolocation."""
    user_id: str
    timestamp: datetime
    ip: Optional[str] = None
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)
    city: Optional[str] = None
    country: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @property
    def label(self) -> str:
        parts = [p for p in (self.city, self.country) if p]
        return ", ".join(parts) if parts else (self.ip or "unknown")


class TravelPattern(BaseModel):
    """Whitelisted route for a user; matched in both directions."""
    user_id: str
    origin: GeoPoint
    destination: GeoPoint
    frequency: int = Field(1, ge=1)
    added_by: Optional[str] = None
    created_at: Optional[datetime] = None


class TravelCheckResult(BaseModel):
    is_impossible: bool = False
    missing_geo_data: bool = False
    distance_miles: float = 0.0
    time_diff_hours: float = 0.0
    speed_mph: float = 0.0
    is_vpn_suspected: bool = False
    vpn_provider: Optional[str] = None
    is_known_pattern: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    risk_score: int = Field(0, ge=0, le=100)
    severity: AlertSeverity = AlertSeverity.LOW


class ImpossibleTravelAlert(BaseModel):
    """Derived alert; never persisted by the detector."""
    alert_id: str
    user_id: str
    severity: AlertSeverity
    risk_score: int = Field(..., ge=0, le=100)
    previous_login: LoginLocation
    current_login: LoginLocation
    distance_miles: float
    time_diff_hours: float
    speed_mph: float
    is_vpn_suspected: bool = False
    is_known_pattern: bool = False
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    detected_at: datetime
