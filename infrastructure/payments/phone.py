import re

from .interface import InvalidPhoneNumber

COUNTRY_CODE = "254"
_NON_DIGITS = re.compile(r"\D")
_MSISDN = re.compile(r"^254\d{9}$")


def normalize_phone(phone) -> str:
    """
    Normalize a Kenyan mobile number to ``254XXXXXXXXX``.

    Accepts ``07XXXXXXXX``/``01XXXXXXXX``, ``7XXXXXXXX``/``1XXXXXXXX``,
    ``254XXXXXXXXX`` and ``+254 XXX XXX XXX``.

    Raises:
        InvalidPhoneNumber: If the number does not normalize to a valid MSISDN
    """
    if phone is None:
        raise InvalidPhoneNumber("Phone number is required")

    cleaned = _NON_DIGITS.sub("", str(phone))
    if len(cleaned) == 10 and cleaned.startswith("0"):
        cleaned = COUNTRY_CODE + cleaned[1:]
    elif len(cleaned) == 9 and cleaned[0] in ("7", "1"):
        cleaned = COUNTRY_CODE + cleaned

    if not _MSISDN.match(cleaned):
        raise InvalidPhoneNumber("Invalid phone number format. Use format: 254XXXXXXXXX or 07XXXXXXXX")
    return cleaned
