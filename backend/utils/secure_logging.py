"""
Log redaction helpers.

Citizen reports carry names, phone numbers, e-mail addresses and the exact
location of people who need help. Anything about a reporter or responder that
ends up in a log line goes through these helpers first.

Usage:
    from utils.secure_logging import redact_pii, hash_user_id

    logger.info(redact_pii(f"Report from {phone_number} at {lat}, {lng}"))
    logger.info(f"Assignment accepted by {hash_user_id(uid)}")
"""

import re
import hashlib
from typing import Optional

EMAIL_PATTERN = re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b')

# 4+ decimals is roughly building level; 1-3 decimals stay readable for debugging
PRECISE_COORD_PATTERN = re.compile(r'-?\d{1,3}\.\d{4,}')

IPV4_PATTERN = re.compile(r'\b(?:\d{1,3}\.){3}\d{1,3}\b')

# Indonesian mobile numbers: 08xx, 628xx, +628xx with optional separators
ID_PHONE_PATTERN = re.compile(r'(?<![\w+])(?:\+?62|0)8\d{1,2}[-\s]?\d{3,4}[-\s]?\d{3,5}\b')

# Other international numbers written with a leading +
INTL_PHONE_PATTERN = re.compile(r'\+\d{1,3}[-\s]?\d{2,4}[-\s]?\d{3,4}[-\s]?\d{3,4}\b')

DEFAULT_SENSITIVE_KEYS = [
    'email', 'password', 'token', 'secret', 'phone', 'whatsapp',
    'address', 'latitude', 'longitude', 'full_name', 'submitter_name',
    'ip_address', 'temporary_password'
]


def redact_pii(text: str) -> str:
    """
    Redact e-mails, precise coordinates, IPv4 addresses and phone numbers.

    Examples:
        >>> redact_pii("Reporter budi@example.com")
        'Reporter [EMAIL_REDACTED]'
        >>> redact_pii("Call 0812-3456-7890")
        'Call [PHONE_REDACTED]'
        >>> redact_pii("Location: -6.208812, 106.845599")
        'Location: [COORD_REDACTED], [COORD_REDACTED]'
    """
    if not text:
        return text

    text = EMAIL_PATTERN.sub('[EMAIL_REDACTED]', text)
    text = PRECISE_COORD_PATTERN.sub('[COORD_REDACTED]', text)
    text = IPV4_PATTERN.sub('[IP_REDACTED]', text)
    text = ID_PHONE_PATTERN.sub('[PHONE_REDACTED]', text)
    text = INTL_PHONE_PATTERN.sub('[PHONE_REDACTED]', text)
    return text


def hash_user_id(user_id: str, length: int = 16) -> str:
    """One-way, stable identifier for correlating a user's log lines."""
    if not user_id:
        return '[NO_USER_ID]'

    return hashlib.sha256(user_id.encode()).hexdigest()[:length]


def redact_coordinates(lat: Optional[float], lon: Optional[float], precision: int = 2) -> tuple[str, str]:
    """
    Round coordinates for logging. Two decimals is about 1.1 km.

    Examples:
        >>> redact_coordinates(-6.208812, 106.845599)
        ('-6.21', '106.85')
        >>> redact_coordinates(None, 106.8)
        ('[REDACTED]', '[REDACTED]')
    """
    if lat is None or lon is None:
        return ('[REDACTED]', '[REDACTED]')

    return (f"{float(lat):.{precision}f}", f"{float(lon):.{precision}f}")


def safe_log_dict(data: dict, redact_keys: Optional[list[str]] = None) -> dict:
    """
    Copy of a payload with sensitive keys replaced by '[REDACTED]'.

    Keys match by substring, so 'phone_number' and 'submitter_whatsapp' are
    covered by 'phone' and 'whatsapp'. Nested dicts and lists of dicts are
    walked.
    """
    keys = DEFAULT_SENSITIVE_KEYS if redact_keys is None else redact_keys

    safe_data = {}
    for key, value in data.items():
        if any(sensitive in key.lower() for sensitive in keys):
            safe_data[key] = '[REDACTED]'
        elif isinstance(value, dict):
            safe_data[key] = safe_log_dict(value, keys)
        elif isinstance(value, list):
            safe_data[key] = [
                safe_log_dict(item, keys) if isinstance(item, dict) else item
                for item in value
            ]
        else:
            safe_data[key] = value

    return safe_data


# Data exports share personal fields in masked form

def anonymize_phone(phone: Optional[str]) -> str:
    """
    Examples:
        >>> anonymize_phone('081234567890')
        '0812****90'
    """
    if not phone:
        return ''
    return f"{phone[:4]}****{phone[-2:]}"


def anonymize_name(name: Optional[str]) -> str:
    """
    Examples:
        >>> anonymize_name('Siti Aminah')
        'S*** A***'
    """
    if not name:
        return ''
    return ' '.join(f"{part[0]}***" for part in name.split())


def anonymize_email(email: Optional[str]) -> str:
    """
    Examples:
        >>> anonymize_email('siti@example.com')
        's***@e***.com'
    """
    if not email:
        return ''
    local, _, domain = email.partition('@')
    if not domain:
        return '***@***.***'
    return f"{local[:1]}***@{domain[:1]}***.{domain.rsplit('.', 1)[-1]}"
