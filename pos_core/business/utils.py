"""
Mobile number helpers shared by customer registration and customer lookup.

Numbers are stored and looked up in normalized form: digits only, with the leading
1 of an 11 digit North American number removed.
"""

import re


# North American formats, or an international number in up to four digit groups
MOBILE_NUMBER_PATTERN = re.compile(
    r"^(\+?1-?)?(\([0-9]{3}\)|[0-9]{3})-?[0-9]{3}-?[0-9]{4}$"
    r"|^(\+?[1-9]{1,4})?[-.\s]?(\(?[0-9]{1,4}\)?[-.\s]?)?[0-9]{1,4}[-.\s]?[0-9]{1,9}$"
)

NON_DIGITS = re.compile(r"[^\d]")

MIN_MOBILE_DIGITS = 10
MAX_MOBILE_DIGITS = 15

DEFAULT_COUNTRY_CODE = "1"


def digits_only(value: str) -> str:
    return NON_DIGITS.sub("", value or "")


def normalize_mobile_number(mobile_number: str) -> str:
    """
    Strip everything but digits; an 11 digit number starting with 1 loses the 1.

    >>> normalize_mobile_number("+1 (555) 123-4567")
    '5551234567'
    """
    if not mobile_number or not mobile_number.strip():
        return ""

    digits = digits_only(mobile_number)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def format_mobile_number(normalized_number: str) -> str:
    """Display form: (XXX) XXX-XXXX for ten digits, dash separated groups otherwise."""
    if not normalized_number:
        return ""
    if len(normalized_number) == 10:
        return f"({normalized_number[:3]}) {normalized_number[3:6]}-{normalized_number[6:]}"
    if len(normalized_number) > 6:
        return f"{normalized_number[:3]}-{normalized_number[3:6]}-{normalized_number[6:]}"
    return normalized_number


def extract_country_code(mobile_number: str) -> str:
    """Digits in front of the last ten of a '+' prefixed number, else the default code."""
    if mobile_number and mobile_number.strip().startswith("+"):
        digits = digits_only(mobile_number)
        if len(digits) > 10:
            return digits[:-10]
    return DEFAULT_COUNTRY_CODE


def mask_mobile_number(mobile_number: str) -> str:
    """Keep the last four digits for log output."""
    if not mobile_number or len(mobile_number) < 4:
        return "****"
    return f"****{mobile_number[-4:]}"
