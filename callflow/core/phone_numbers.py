"""
Phone number normalization for flow lookup.

Numbers reach us in several spellings: Twilio sends E.164 (``+15551234567``),
SIP legs send ``sip:+15551234567@host``, and the flow editor has stored numbers
with and without the leading ``+`` or country code. Everything is compared in
canonical E.164 form.
"""

import re
from typing import Any, Optional

NATIONAL_NUMBER_LENGTH = 10

_NON_DIGITS = re.compile(r"\D")
_URI_SCHEME = re.compile(r"^(sips?|tel):", re.IGNORECASE)


def normalize_e164(number: Optional[str], default_country_code: str = "1") -> Optional[str]:
    """
    Convert a phone number to E.164.

    Args:
        number: Dialed or stored number in any common spelling
        default_country_code: Country code applied to national numbers

    Returns:
        ``+<digits>`` or None when the input holds no digits
    """
    if not number:
        return None

    value = _URI_SCHEME.sub("", str(number).strip())
    if "@" in value:
        value = value.split("@", 1)[0]

    has_plus = value.startswith("+")
    digits = _NON_DIGITS.sub("", value)
    if not digits:
        return None

    if has_plus:
        return f"+{digits}"
    if digits.startswith("00"):
        return f"+{digits[2:]}"
    if digits.startswith(default_country_code) and len(digits) > NATIONAL_NUMBER_LENGTH:
        return f"+{digits}"

    # National trunk prefix (e.g. 07700 900123)
    if digits.startswith("0"):
        digits = digits[1:]
    return f"+{default_country_code}{digits}"


def search_digits(number: Optional[str], default_country_code: str = "1") -> Optional[str]:
    """
    Digits every stored spelling of this number contains once punctuation is removed.

    For numbers in the default country this is the national number, so
    "+1 (555) 123-4567", "15551234567" and "555.123.4567" all contain
    "5551234567". Other numbers use their full E.164 digits.
    """
    e164 = normalize_e164(number, default_country_code)
    if not e164:
        return None

    prefix = f"+{default_country_code}"
    if e164.startswith(prefix) and len(e164) > len(prefix):
        return e164[len(prefix):]
    return e164[1:]


def digits_only(number: Any) -> str:
    return _NON_DIGITS.sub("", str(number)) if number else ""


def same_number(a: Optional[str], b: Optional[str], default_country_code: str = "1") -> bool:
    """True when both numbers normalize to the same E.164 value"""
    left = normalize_e164(a, default_country_code)
    return left is not None and left == normalize_e164(b, default_country_code)
