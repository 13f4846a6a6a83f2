"""Ethiopian phone number normalization."""

import re

from usersvc.errors import InvalidPhone

COUNTRY_CODE = "251"

_CANONICAL = re.compile(r"^\+251[79]\d{8}$")
_NON_DIGITS = re.compile(r"\D")


def normalize_phone(value: str | None) -> str:
    """Return the canonical ``+2519XXXXXXXX`` form of a phone number.

    Accepts local (``09..``/``07..``), short (``9..``/``7..``) and
    international (``251..``, ``+251..``) inputs with any punctuation, as well
    as the common ``+2510..`` mistake. Raises ``InvalidPhone`` otherwise.
    """
    if not value:
        raise InvalidPhone("Phone number is required")

    digits = _NON_DIGITS.sub("", str(value))

    if len(digits) == 13 and digits.startswith(COUNTRY_CODE + "0"):
        digits = COUNTRY_CODE + digits[4:]
    elif len(digits) == 10 and digits[:2] in ("09", "07"):
        digits = COUNTRY_CODE + digits[1:]
    elif len(digits) == 9 and digits[0] in ("9", "7"):
        digits = COUNTRY_CODE + digits

    canonical = f"+{digits}"
    if not _CANONICAL.match(canonical):
        raise InvalidPhone()
    return canonical


def is_valid_phone(value: str | None) -> bool:
    try:
        normalize_phone(value)
    except InvalidPhone:
        return False
    return True


def phone_digits(value: str) -> str:
    """Canonical number without the leading ``+``, as SMS providers expect it."""
    return normalize_phone(value)[1:]


def format_phone_for_display(value: str) -> str:
    """Format as ``+251 9XX XXX XXX``."""
    canonical = normalize_phone(value)
    local = canonical[4:]
    return f"+251 {local[:3]} {local[3:6]} {local[6:]}"
