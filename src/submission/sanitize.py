"""Redaction of secrets before request/response data reaches the logs"""

import re
from typing import Dict, Any, Union, List

REDACTED = "***REDACTED***"

SENSITIVE_KEYS = {
    'authorization', 'apikey', 'xapikey', 'token', 'authtoken', 'accesstoken',
    'secret', 'password', 'accountsid',
}

# Patterns for secrets embedded in free text (error messages, URLs)
SECRET_PATTERNS = [
    (r'(Bearer)\s+[A-Za-z0-9_\-\.=]+', r'\1 ' + REDACTED),
    (r'(api[_-]?key|apikey)\s*[:=]\s*[\'"]?[A-Za-z0-9_\-]+[\'"]?', r'\1=' + REDACTED),
    (r'(token|auth[_-]?token)\s*[:=]\s*[\'"]?[A-Za-z0-9_\-\.]+[\'"]?', r'\1=' + REDACTED),
]


def _is_sensitive_key(key: str) -> bool:
    normalized = key.lower().replace('_', '').replace('-', '')
    return any(sensitive in normalized for sensitive in SENSITIVE_KEYS)


def redact_text(text: str) -> str:
    """Mask bearer tokens and key=value secrets in a string"""
    if not text:
        return text
    for pattern, replacement in SECRET_PATTERNS:
        text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)
    return text


def redact(data: Union[str, Dict[str, Any], List, Any]) -> Any:
    """
    Recursively mask secrets in strings, dicts and lists

    Args:
        data: Headers, payloads or messages that may contain credentials

    Returns:
        A copy with sensitive values replaced by ***REDACTED***
    """
    if isinstance(data, str):
        return redact_text(data)
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive_key(str(key)) else redact(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact(item) for item in data]
    return data


def mask_phone(number: str) -> str:
    """Keep only the last four digits of a phone number"""
    digits = re.sub(r'\D', '', number or '')
    if len(digits) <= 4:
        return digits
    return '*' * (len(digits) - 4) + digits[-4:]
