"""Confirmation number extraction from free text (web pages, call transcripts)"""

import re
import time
from typing import List, Optional, Pattern

# Most specific phrasing first; captured codes must contain a digit
PHRASE_PATTERNS: List[Pattern] = [
    re.compile(r'ticket\s+number\s+is\s+((?=[A-Z0-9]*\d)[A-Z0-9]+)', re.IGNORECASE),
    re.compile(r'confirmation\s+number(?:\s+is|\s*:)?\s+((?=[A-Z0-9]*\d)[A-Z0-9]+)', re.IGNORECASE),
    re.compile(r'reference\s+number(?:\s+is|\s*:)?\s+((?=[A-Z0-9]*\d)[A-Z0-9]+)', re.IGNORECASE),
    re.compile(r'your\s+number\s+is\s+((?=[A-Z0-9]*\d)[A-Z0-9]+)', re.IGNORECASE),
]

# Bare code (2-4 letters, optional space/hyphen, 4-10 digits), the last resort
GENERIC_CODE_PATTERN: Pattern = re.compile(r'\b([A-Z]{2,4}[\s-]?\d{4,10})\b', re.IGNORECASE)

CONFIRMATION_PATTERNS: List[Pattern] = PHRASE_PATTERNS + [GENERIC_CODE_PATTERN]


def extract_confirmation_number(
    text: Optional[str],
    strip_whitespace: bool = False,
    patterns: Optional[List[Pattern]] = None
) -> Optional[str]:
    """
    Find the first confirmation/ticket number in text

    Args:
        text: Page text, transcript or message body
        strip_whitespace: Remove whitespace inside the match (speech transcripts
            often split codes, e.g. "AB 12345")
        patterns: Ordered patterns to try instead of CONFIRMATION_PATTERNS

    Returns:
        The matched code, or None. Callers substitute a synthetic id when None.
    """
    if not text:
        return None

    for pattern in patterns or CONFIRMATION_PATTERNS:
        match = pattern.search(text)
        if match:
            number = match.group(1)
            if strip_whitespace:
                number = re.sub(r'\s+', '', number)
            return number

    return None


def synthetic_id(prefix: str) -> str:
    """Placeholder identifier 'PREFIX-<epoch millis>'"""
    return f"{prefix}-{int(time.time() * 1000)}"
