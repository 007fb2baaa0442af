import re
from typing import Dict, Iterable

_NON_DIGITS = re.compile(r"\D")


def mask_phone(value) -> str:
    """Keep the country prefix and last three digits of an MSISDN."""
    if value is None:
        return value
    digits = _NON_DIGITS.sub("", str(value))
    if len(digits) < 7:
        return "***"
    return digits[:3] + "*" * (len(digits) - 6) + digits[-3:]


def mask_value(value):
    if not isinstance(value, str):
        return value
    if "@" in value:  # email
        name, _, domain = value.partition("@")
        return (name[:2] + "***@" + domain) if name else "***@" + domain
    if _NON_DIGITS.sub("", value) == value and len(value) >= 9:  # phone-like
        return mask_phone(value)
    if len(value) > 12:
        return value[:4] + "..." + value[-4:]
    return "***"


def sanitize_payload(payload: Dict, allowed_keys: Iterable[str]) -> Dict:
    """Return a filtered copy of payload with only allowed keys and masked values."""
    result = {}
    for key in allowed_keys:
        if key in payload:
            result[key] = mask_value(payload[key])
    return result
