"""
MailShield - email risk scoring and detection core.
"""

from mailshield.utils.constants import APP_VERSION

__version__ = APP_VERSION
