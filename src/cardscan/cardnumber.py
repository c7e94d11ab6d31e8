"""Card number and brand utilities.

Pure helpers shared by extraction, stabilization and the prefill hand-off.
Input usually comes from noisy OCR text, so nothing here raises: malformed
input degrades to ``""``, ``CardBrand.OTHER``, ``False`` or ``None``.
"""

import re
from enum import Enum
from typing import Optional

_NON_DIGIT = re.compile(r"\D", re.ASCII)


class CardBrand(Enum):
    """Card network, derived from the leading digit only."""

    VISA = "VISA"
    MASTERCARD = "MASTERCARD"
    AMEX = "AMEX"
    DISCOVER = "DISCOVER"
    OTHER = "OTHER"


# Leading digit -> brand. Deliberately coarse: no IIN range refinement.
BRAND_PREFIXES = {
    "3": CardBrand.AMEX,
    "4": CardBrand.VISA,
    "5": CardBrand.MASTERCARD,
    "6": CardBrand.DISCOVER,
}

AMEX_LENGTH = 15
DEFAULT_LENGTH = 16


def sanitize(text: Optional[str]) -> str:
    """Strip every non-digit character."""
    if not text:
        return ""
    return _NON_DIGIT.sub("", text)


def detect_brand(digits: str) -> CardBrand:
    """Detect the card brand from the first character of *digits*."""
    if not digits:
        return CardBrand.OTHER
    return BRAND_PREFIXES.get(digits[0], CardBrand.OTHER)


def limit_for_brand(digits: str, brand: CardBrand) -> str:
    """Truncate *digits* to the maximum length for *brand* (15 AMEX, else 16)."""
    if brand is CardBrand.AMEX:
        return digits[:AMEX_LENGTH]
    return digits[:DEFAULT_LENGTH]


def format_grouped(digits: str, brand: Optional[CardBrand] = None) -> str:
    """Format a card number as space-separated groups for display.

    AMEX numbers use 4-6-5 grouping (digits past 15 are dropped); every other
    brand uses groups of four with a trailing partial group.

    Args:
        digits: Card number, may contain separators
        brand: Brand override; detected from the digits when omitted

    Returns:
        Grouped number without trailing whitespace, or "" for empty input
    """
    sanitized = sanitize(digits)
    if not sanitized:
        return ""

    if brand is None:
        brand = detect_brand(sanitized)

    if brand is CardBrand.AMEX:
        groups = [sanitized[0:4], sanitized[4:10], sanitized[10:15]]
    else:
        groups = [sanitized[i : i + 4] for i in range(0, len(sanitized), 4)]

    return " ".join(g for g in groups if g)


def passes_luhn(digits: str) -> bool:
    """Return True if *digits* passes the Luhn (mod 10) checksum.

    Empty input or any non-digit character fails the check.
    """
    if not digits:
        return False

    total = 0
    for i, ch in enumerate(reversed(digits)):
        if ch not in "0123456789":
            return False
        n = int(ch)
        if i % 2 == 1:
            n *= 2
            if n > 9:
                n -= 9
        total += n
    return total % 10 == 0


def looks_like_card_number(digits: str) -> bool:
    """Plausibility gate combining length, leading digit and checksum.

    - 15 digits: must start with ``3`` and pass Luhn
    - 16 digits: must start with ``4``, ``5`` or ``6`` and pass Luhn
    - any other length is rejected
    """
    sanitized = sanitize(digits)

    if len(sanitized) == AMEX_LENGTH:
        return sanitized.startswith("3") and passes_luhn(sanitized)

    if len(sanitized) == DEFAULT_LENGTH:
        return sanitized[0] in "456" and passes_luhn(sanitized)

    return False


def normalize_expiry(value: Optional[str]) -> Optional[str]:
    """Normalize free-form expiry input (``MMYY``, ``MM/YY``, ``MM/YYYY``) to ``MM/YY``.

    Returns None when the month is outside 01-12 or the year is neither two
    nor four digits.
    """
    digits = sanitize(value)
    if len(digits) < 4:
        return None

    month = digits[:2]
    if not 1 <= int(month) <= 12:
        return None

    year = digits[2:]
    if len(year) == 2:
        return f"{month}/{year}"
    if len(year) == 4:
        return f"{month}/{year[2:]}"
    return None


def mask_number(digits: str, visible: int = 4) -> str:
    """Mask all but the last *visible* digits, e.g. for log output."""
    sanitized = sanitize(digits)
    if len(sanitized) <= visible:
        return sanitized
    return "*" * (len(sanitized) - visible) + sanitized[-visible:]
