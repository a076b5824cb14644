"""
MailShield Data Models

Pydantic models and dataclasses shared by the detection layers.
"""

from .signals import *
from .email import *
from .url import *
from .threat_intel import *
from .behavior import *
from .ato import *
from .impersonation import *
