"""
MailShield Custom Exceptions

Centralized exception classes for error handling.
"""

from typing import Optional


class MailShieldError(Exception):
    """Base exception for all MailShield errors."""
    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


# ============================================================================
# Configuration Exceptions
# ============================================================================

class ConfigurationError(MailShieldError):
    """Detector or application configuration is invalid."""
    pass


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationError(MailShieldError):
    """Input validation failed."""
    pass


# ============================================================================
# Detection Exceptions
# ============================================================================

class DetectionError(MailShieldError):
    """Error during threat detection."""
    pass


class ScoringError(DetectionError):
    """Signal could not be converted into a score contribution."""
    pass


# ============================================================================
# Enrichment Exceptions
# ============================================================================

class EnrichmentError(MailShieldError):
    """Error during threat intelligence enrichment."""
    pass


class FeedUnavailableError(EnrichmentError):
    """Threat feed returned an error or could not be reached."""
    pass


class FeedTimeoutError(EnrichmentError):
    """Threat feed did not answer before its deadline."""
    pass


class FeedNotConfiguredError(EnrichmentError):
    """Threat feed is missing credentials."""
    pass


# ============================================================================
# Security Exceptions
# ============================================================================

class RateLimitError(MailShieldError):
    """Caller exceeded its request budget."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message)


class WebhookSignatureError(MailShieldError):
    """Webhook signature verification failed."""

    TIMESTAMP_INVALID = "TIMESTAMP_INVALID"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"

    def __init__(self, message: str, code: str):
        self.code = code
        super().__init__(message)
