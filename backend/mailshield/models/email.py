"""
MailShield Email Data Models

Pydantic models for the parsed email handed to the detection core.
"""

import re
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from mailshield.utils.helpers import extract_urls


ADDRESS_PATTERN = re.compile(r'^(?:"?([^"<]*)"?\s*)?<?([^<>\s]+@[^<>\s]+)>?$')


class EmailAddress(BaseModel):
    """Parsed email address with display name."""
    email: str = Field(..., description="Normalized email address")
    domain: str = Field(..., description="Domain part of email")
    display_name: Optional[str] = Field(None, description="Display name if present")

    @property
    def local_part(self) -> str:
        return self.email.split('@', 1)[0]

    @classmethod
    def parse(cls, raw: str) -> "EmailAddress":
        """Parse ``"Display Name" <user@domain>`` or a bare address."""
        raw = (raw or "").strip()
        match = ADDRESS_PATTERN.match(raw)
        if match:
            address = match.group(2).lower()
            display_name = (match.group(1) or "").strip() or None
        else:
            address = raw.lower()
            display_name = None
        domain = address.rsplit('@', 1)[1] if '@' in address else ""
        return cls(email=address, domain=domain, display_name=display_name)

    @field_validator("email", "domain")
    @classmethod
    def _lowercase(cls, value: str) -> str:
        return value.strip().lower()


class AttachmentInfo(BaseModel):
    """Email attachment metadata."""
    filename: str = Field(..., description="Attachment filename")
    content_type: str = Field("application/octet-stream", description="MIME content type")
    size_bytes: int = Field(0, ge=0, description="File size in bytes")
    sha256: Optional[str] = Field(None, description="SHA256 hash")


class ParsedEmail(BaseModel):
    """Parsed inbound email as supplied by the ingestion pipeline."""
    message_id: Optional[str] = Field(None, description="Message-ID header value")
    headers: Dict[str, str] = Field(default_factory=dict, description="Header map, lowercase keys")
    sender: EmailAddress = Field(..., description="Structured From address")
    reply_to: Optional[EmailAddress] = Field(None, description="Structured Reply-To address")
    recipients: List[str] = Field(default_factory=list, description="To/Cc recipient addresses")
    subject: str = Field("", description="Subject line")
    body_text: Optional[str] = Field(None, description="Plain text body")
    body_html: Optional[str] = Field(None, description="HTML body")
    urls: List[str] = Field(default_factory=list, description="URLs extracted by the parser")
    attachments: List[AttachmentInfo] = Field(default_factory=list)

    @field_validator("headers")
    @classmethod
    def _lowercase_header_names(cls, value: Dict[str, str]) -> Dict[str, str]:
        return {k.lower(): v for k, v in value.items()}

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    @property
    def has_message_id(self) -> bool:
        return bool(self.message_id or self.headers.get("message-id"))

    @property
    def all_urls(self) -> List[str]:
        """Parser-supplied URLs, or URLs extracted from the body."""
        if self.urls:
            return list(dict.fromkeys(self.urls))
        return extract_urls(self.body_html or self.body_text or "")
