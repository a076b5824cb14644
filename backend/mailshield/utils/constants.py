"""
MailShield Constants - Central location for ALL constant values.
"""

from typing import Dict, List, Tuple

# APPLICATION INFO
APP_NAME: str = "MailShield"
APP_FULL_NAME: str = "MailShield Detection Core"
APP_VERSION: str = "1.0.0"
APP_DESCRIPTION: str = "Email risk scoring and detection service"

# RISK SCORING
MAX_LAYER_SCORE: int = 100
DETERMINISTIC_CONFIDENCE: float = 0.8

# TIMEOUTS (seconds)
FEED_TIMEOUT_DEFAULT: float = 3.0
CLICK_TIME_TIMEOUT: float = 3.0
PIPELINE_BUDGET_DEFAULT: float = 8.0

# CACHE (seconds)
CACHE_TTL_THREAT_INTEL: int = 300
CACHE_TTL_CLICK_TIME: int = 300
CACHE_TTL_URL: int = 3600
CACHE_TTL_DOMAIN: int = 4 * 3600
CACHE_TTL_IP: int = 2 * 3600
CACHE_MAX_ENTRIES: int = 10000

# WEBHOOKS
WEBHOOK_TOLERANCE_SECONDS: int = 300
WEBHOOK_FUTURE_SKEW_SECONDS: int = 30
WEBHOOK_SIGNATURE_HEADER: str = "x-webhook-signature"
WEBHOOK_TIMESTAMP_HEADER: str = "x-webhook-timestamp"

# EXTERNAL API URLS
URLHAUS_API_URL: str = "https://urlhaus-api.abuse.ch/v1"
PHISHTANK_API_URL: str = "https://checkurl.phishtank.com/checkurl/"

# Static per-feed reliability weights (0-1)
FEED_RELIABILITY: Dict[str, float] = {
    "virustotal": 0.95,
    "urlhaus": 0.85,
    "phishtank": 0.80,
    "openphish": 0.75,
}
DEFAULT_FEED_RELIABILITY: float = 0.5

# DOMAIN LISTS
FREE_EMAIL_PROVIDERS: List[str] = [
    "gmail.com", "yahoo.com", "hotmail.com", "outlook.com", "aol.com",
    "icloud.com", "mail.com", "protonmail.com", "zoho.com", "yandex.com",
    "gmx.com", "live.com", "msn.com", "fastmail.com",
]

DISPOSABLE_DOMAINS: List[str] = [
    "tempmail.com", "guerrillamail.com", "mailinator.com", "10minutemail.com",
    "throwaway.email", "temp-mail.org", "fakeinbox.com", "trashmail.com",
]

# Sender-side brand list for homoglyph / cousin checks
BRAND_DOMAINS: List[str] = [
    "paypal.com", "amazon.com", "microsoft.com", "apple.com", "google.com",
    "facebook.com", "netflix.com", "bankofamerica.com", "chase.com", "wellsfargo.com",
    "dropbox.com", "linkedin.com", "twitter.com", "instagram.com", "adobe.com",
]

# Authority terms that make a free-email display name suspicious
AUTHORITY_TERMS: List[str] = [
    "ceo", "cfo", "president", "director", "manager", "admin", "support",
]

SHORTENER_DOMAINS: List[str] = [
    "bit.ly", "tinyurl.com", "t.co", "goo.gl", "ow.ly", "is.gd",
    "buff.ly", "rebrand.ly", "cutt.ly", "short.link", "tiny.cc",
    "shorturl.at", "rb.gy", "bl.ink", "lnkd.in", "soo.gd",
]

HIGH_RISK_TLDS: List[str] = [
    ".tk", ".ml", ".ga", ".cf", ".gq",
    ".xyz", ".top", ".work", ".click", ".link",
    ".ru", ".cn", ".su",
    ".info", ".biz",
]

REPUTABLE_REGISTRARS: List[str] = [
    "markmonitor", "corporatedomains", "cscglobal", "network solutions", "verisign",
]

# ccTLDs a brand legitimately operates under
LEGITIMATE_BRAND_TLDS: List[str] = [
    "org", "net", "io", "uk", "de", "fr", "jp", "au", "ca",
]

# Brand domain -> known misspellings seen in the wild
PROTECTED_BRANDS: Dict[str, List[str]] = {
    "google.com": ["google", "goog1e", "g00gle", "gooogle", "gogle", "gogole"],
    "microsoft.com": ["microsoft", "micros0ft", "micr0s0ft", "micr0soft",
                      "microsofl", "microsft", "micosoft", "mlcrosoft"],
    "apple.com": ["apple", "app1e", "appie", "aple", "aplle"],
    "amazon.com": ["amazon", "amaz0n", "arnazon", "amazom", "amazn"],
    "facebook.com": ["facebook", "faceb00k", "facebok", "faebook"],
    "paypal.com": ["paypal", "paypa1", "paypai", "papal", "pay-pal"],
    "netflix.com": ["netflix", "netf1ix", "netflik", "netfilx"],
    "dropbox.com": ["dropbox", "dr0pbox", "dropb0x"],
    "linkedin.com": ["linkedin", "1inkedin", "linkedln"],
    "twitter.com": ["twitter", "twltter", "tw1tter"],
    "instagram.com": ["instagram", "1nstagram", "instagran"],
    "chase.com": ["chase", "chasee", "chasse"],
    "wellsfargo.com": ["wellsfargo", "we11sfargo", "welsfargo"],
    "bankofamerica.com": ["bankofamerica", "bank0famerica", "bankofamerrica"],
    "citibank.com": ["citibank", "c1tibank", "citibanck"],
    "usps.com": ["usps", "uspss", "ussp"],
    "fedex.com": ["fedex", "fed3x", "fedx"],
    "ups.com": ["ups", "upps"],
    "dhl.com": ["dhl", "dh1"],
}

TRUSTED_BRANDS: List[str] = [
    "microsoft.com", "google.com", "amazon.com", "apple.com",
    "facebook.com", "linkedin.com", "twitter.com", "github.com",
]

# Visually confusable non-ASCII characters, keyed by the Latin letter they mimic
UNICODE_HOMOGLYPHS: Dict[str, List[str]] = {
    "a": ["а", "ɑ", "α", "ạ", "ą", "ä"],
    "b": ["ƅ", "ь"],
    "c": ["с", "ϲ", "ç", "ć"],
    "d": ["ԁ", "ɗ", "ð"],
    "e": ["е", "ё", "ε", "ę", "ė", "℮"],
    "g": ["ɡ", "ց", "ġ"],
    "h": ["һ", "հ", "ħ"],
    "i": ["і", "ı", "ι", "ị", "ï"],
    "j": ["ј", "ʝ", "ĵ"],
    "k": ["κ", "к", "ķ"],
    "l": ["ӏ", "ɭ", "ł"],
    "m": ["м", "ṃ"],
    "n": ["п", "ո", "η", "ñ", "ņ"],
    "o": ["о", "ο", "ọ", "ö", "ø", "ө"],
    "p": ["р", "ρ"],
    "q": ["ԛ", "գ"],
    "r": ["г", "ɾ", "ŕ"],
    "s": ["ѕ", "ꜱ", "ś", "ș"],
    "t": ["т", "ţ"],
    "u": ["υ", "ս", "ц", "ù"],
    "v": ["ѵ", "ν"],
    "w": ["ѡ", "ω", "ш"],
    "x": ["х", "χ", "ҳ"],
    "y": ["у", "ү", "ý", "γ"],
    "z": ["ᴢ", "ʐ", "ż"],
}

# ASCII look-alike characters (digit/symbol for letter)
ASCII_CONFUSABLES: Dict[str, List[str]] = {
    "a": ["@", "4"],
    "e": ["3"],
    "i": ["1", "l", "|"],
    "l": ["1", "i", "|"],
    "o": ["0"],
    "s": ["$", "5"],
}

# Multi-character substitutions used against an organization's own domain
COUSIN_SUBSTITUTIONS: List[Tuple[str, str]] = [
    ("o", "0"), ("l", "1"), ("i", "1"), ("s", "5"),
    ("a", "4"), ("e", "3"), ("rn", "m"), ("vv", "w"),
]

# CONTENT PATTERNS
URGENCY_PATTERNS: List[str] = [
    r"urgent", r"immediate(ly)?", r"asap", r"right away", r"act now",
    r"expires? (today|soon|immediately)", r"limited time", r"don't delay",
    r"account (will be |has been )?(suspended|closed|terminated|locked)",
    r"verify (your )?(account|identity)", r"confirm (your )?(account|identity)",
    r"unauthorized (access|activity|transaction)",
    r"suspicious (activity|login|transaction)",
]

FINANCIAL_PATTERNS: List[str] = [
    r"wire transfer", r"bank transfer", r"payment request",
    r"invoice attached", r"pay(ment)? immediately",
    r"update (your )?(payment|billing|bank)",
    r"gift card", r"bitcoin", r"cryptocurrency",
]

CREDENTIAL_PATTERNS: List[str] = [
    r"enter (your )?(password|credentials|login)",
    r"verify (your )?(password|credentials|login)",
    r"reset (your )?(password)",
    r"click (here |the link )?(to )?(login|sign in|verify)",
    r"(username|password|ssn|social security)",
]

# Subject keywords scored by the behavioral content check
ANOMALY_URGENCY_KEYWORDS: List[str] = [
    "urgent", "asap", "immediately", "now", "critical", "emergency",
    "deadline", "expire", "suspend", "terminate", "action required",
    "final warning", "last chance", "time sensitive", "respond immediately",
]

# BEC
EXECUTIVE_TITLE_PATTERNS: List[str] = [
    r"\b(?:ceo|chief executive)\b",
    r"\b(?:cfo|chief financial)\b",
    r"\b(?:coo|chief operating)\b",
    r"\b(?:cto|chief technology)\b",
    r"\b(?:cio|chief information)\b",
    r"\b(?:president|vice president|vp)\b",
    r"\b(?:director|managing director)\b",
    r"\b(?:chairman|chairwoman|chair)\b",
    r"\b(?:founder|co-founder)\b",
    r"\b(?:owner|partner)\b",
]

EXECUTIVE_TITLES: List[str] = [
    "ceo", "chief executive", "president",
    "cfo", "chief financial", "finance director",
    "coo", "chief operating", "operations director",
    "cto", "chief technology", "chief technical",
    "cio", "chief information",
    "ciso", "chief security",
    "cmo", "chief marketing",
    "cpo", "chief product", "chief people",
]

FINANCE_TITLES: List[str] = [
    "cfo", "chief financial",
    "controller", "comptroller",
    "treasurer", "finance director",
    "accounts payable", "accounts receivable",
    "financial analyst", "finance manager",
    "bookkeeper", "accountant",
]

# ATO
EARTH_RADIUS_MILES: float = 3958.8
IMPOSSIBLE_TRAVEL_SPEED_MPH: float = 500.0
TRAVEL_PATTERN_RADIUS_MILES: float = 50.0

# Hosting / VPN address prefixes (provider -> IPv4 prefixes)
DATACENTER_IP_RANGES: Dict[str, List[str]] = {
    "Cloudflare": ["104.16.", "104.17.", "104.18.", "104.19.", "104.20.",
                   "104.21.", "104.22.", "104.23.", "104.24.", "104.25."],
    "Google Cloud": ["35.%d." % n for n in range(192, 208)],
    "AWS": ["52.%d." % n for n in range(0, 10)] + ["54."],
    "Azure": ["13.%d." % n for n in range(64, 74)] + ["40."],
    "DigitalOcean": ["104.131.", "138.197.", "159.65.", "167.99.", "178.62."],
    "NordVPN": ["185.153.", "89.187."],
    "ExpressVPN": ["209.205."],
    "Vultr": ["45.32.", "45.63.", "45.76.", "45.77."],
    "Linode": ["45.33.", "45.56.", "45.79.", "139.162."],
}

# Sender-domain homoglyphs, including ASCII digit/symbol stand-ins
SENDER_HOMOGLYPHS: Dict[str, List[str]] = {
    "a": ["а", "ɑ", "α", "@"],
    "b": ["ƅ", "ь"],
    "c": ["с", "ϲ", "¢"],
    "d": ["ԁ", "ɗ"],
    "e": ["е", "ё", "℮"],
    "g": ["ɡ", "ց"],
    "h": ["һ", "հ"],
    "i": ["і", "ı", "1", "l", "|"],
    "j": ["ј", "ʝ"],
    "k": ["κ", "ķ"],
    "l": ["ӏ", "ɭ", "1", "i", "|"],
    "m": ["м", "ṃ"],
    "n": ["ո", "ņ"],
    "o": ["о", "ο", "0", "ө"],
    "p": ["р", "ρ"],
    "q": ["ԛ", "գ"],
    "r": ["г", "ɾ"],
    "s": ["ѕ", "ꜱ", "$"],
    "t": ["т", "ţ"],
    "u": ["υ", "ս"],
    "v": ["ѵ", "ν"],
    "w": ["ѡ", "ω"],
    "x": ["х", "χ"],
    "y": ["у", "ү"],
    "z": ["ᴢ", "ʐ"],
}
