"""
MailShield URL Obfuscation Detection

Encoding and addressing tricks that hide where a link really goes.
Ordinary query-string encoding (``q=hello%20world``, ``+`` for spaces)
is not obfuscation and is not flagged.
"""

import re
import base64
import binascii
import logging
from typing import List, Optional
from urllib.parse import unquote

from mailshield.models.url import ObfuscationResult
from mailshield.utils.constants import PROTECTED_BRANDS, SHORTENER_DOMAINS
from mailshield.utils.helpers import domain_matches

from .lookalike import detect_lookalike_domain

logger = logging.getLogger(__name__)


MAX_URL_LENGTH = 1500
MAX_QUERY_PARAMS = 20

CREDENTIAL_PREFIX = re.compile(r"^https?://([^@/?#]+)@([^/?#]+)", re.I)
DOUBLE_ENCODING = re.compile(r"%25[0-9a-f]{2}", re.I)
ENCODED_SEPARATORS = re.compile(r"%2[ef]", re.I)
DECIMAL_IP = re.compile(r"^https?://(\d{8,})(?=[/?#:]|$)", re.I)
HEX_IP = re.compile(r"^https?://(?:0x[0-9a-f]+(?:[./:?#]|$)|(?:[0-9]+\.)*0x[0-9a-f]+\.)", re.I)
FULLWIDTH = re.compile(r"[\uff01-\uff5e]")
BASE64_PARAM = re.compile(r"[?&](?:url|redirect|goto|link|next)=([A-Za-z0-9+/=]{20,})")
URL_PARAM = re.compile(r"url=", re.I)
HOST_TOKEN = re.compile(r"[a-z0-9.-]+")


def _decode_decimal_ip(value: str) -> Optional[str]:
    number = int(value)
    if number > 0xFFFFFFFF:
        return None
    return ".".join(str((number >> shift) & 255) for shift in (24, 16, 8, 0))


def _decode_base64_url(value: str) -> Optional[str]:
    padded = value + "=" * (-len(value) % 4)
    try:
        decoded = base64.b64decode(padded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return decoded if decoded.startswith("http") else None


def count_shortener_hosts(url: str) -> int:
    """Shortener hostnames anywhere in the URL, including nested/encoded ones."""
    tokens = HOST_TOKEN.findall(unquote(url).lower())
    return sum(
        1 for token in tokens
        if any(domain_matches(token, s) for s in SHORTENER_DOMAINS)
    )


def detect_url_obfuscation(url: str) -> ObfuscationResult:
    """
    Detect URL obfuscation techniques.

    When several techniques are present the last one found is reported as
    ``technique``; every finding is listed in ``signals`` and the risk
    score is the strongest finding plus length/parameter penalties.
    """
    if not url:
        return ObfuscationResult(url="")

    signals: List[str] = []
    risk_score = 0
    technique: Optional[str] = None
    decoded_url: Optional[str] = None

    if len(url) > MAX_URL_LENGTH:
        signals.append("excessive_url_length")
        risk_score += 3

    query = url.split("?", 1)[1] if "?" in url else ""
    if query and len(query.split("&")) > MAX_QUERY_PARAMS:
        signals.append("excessive_parameters")
        risk_score += 2

    credential = CREDENTIAL_PREFIX.match(url)
    if credential:
        technique = "credential_prefix"
        decoded_url = f"https://{credential.group(2)}/"
        risk_score = max(risk_score, 9)
        signals.append("credential_prefix_attack")

        # https://paypal.com@evil.example/ - brand shown as the "user"
        prefix = credential.group(1).lower().split(":", 1)[0]
        if _names_brand(prefix):
            risk_score = 10
            signals.append("brand_in_credential_prefix")

    if DOUBLE_ENCODING.search(url):
        technique = "double_encoding"
        risk_score = max(risk_score, 8)
        signals.append("double_encoding")

    if technique is None and ENCODED_SEPARATORS.search(url.split("?", 1)[0]):
        technique = "percent_encoding"
        risk_score = max(risk_score, 6)
        signals.append("encoded_hostname_characters")

    decimal_ip = DECIMAL_IP.match(url)
    if decimal_ip:
        ip = _decode_decimal_ip(decimal_ip.group(1))
        if ip:
            technique = "decimal_ip"
            risk_score = max(risk_score, 8)
            signals.append("decimal_ip_address")
            decoded_url = url.replace(decimal_ip.group(1), ip, 1)

    if HEX_IP.match(url):
        technique = "hex_ip"
        risk_score = max(risk_score, 8)
        signals.append("hex_ip_address")

    if FULLWIDTH.search(url):
        technique = "unicode_normalization"
        risk_score = max(risk_score, 7)
        signals.append("fullwidth_unicode")

    shortener_count = count_shortener_hosts(url)
    if shortener_count >= 2 or (shortener_count == 1 and URL_PARAM.search(url)):
        technique = "shortener_chain"
        risk_score = max(risk_score, 5)
        signals.append("url_shortener_chain")

    base64_param = BASE64_PARAM.search(url)
    if base64_param:
        payload = _decode_base64_url(base64_param.group(1))
        if payload:
            technique = "base64_payload"
            decoded_url = payload
            risk_score = max(risk_score, 6)
            signals.append("base64_encoded_url")

    if technique:
        logger.debug(f"URL obfuscation ({technique}) in {url[:120]}")

    return ObfuscationResult(
        url=url,
        is_obfuscated=technique is not None,
        technique=technique,
        risk_score=min(10, risk_score),
        signals=signals,
        decoded_url=decoded_url,
    )


def _names_brand(prefix: str) -> bool:
    """Credential prefix that is a brand domain or imitates one."""
    if any(domain_matches(prefix, brand) for brand in PROTECTED_BRANDS):
        return True
    return detect_lookalike_domain(prefix).is_lookalike
