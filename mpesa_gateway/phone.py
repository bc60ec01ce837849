import re

COUNTRY_CODE = "254"

_NON_DIGITS = re.compile(r"\D")

# Digits plus the formatting people type around them
_PHONE_CHARACTERS = re.compile(r"\+?[\d\s()-]+")

# Safaricom mobile numbers: 07XX/01XX locally, 2547XX/2541XX internationally
MOBILE_PATTERN = re.compile(r"^(?:254|0)?[17]\d{8}$")


def digits_only(phone: str) -> str:
    return _NON_DIGITS.sub("", phone)


def is_valid_mobile(phone: str) -> bool:
    if not _PHONE_CHARACTERS.fullmatch(phone):
        return False
    return bool(MOBILE_PATTERN.match(digits_only(phone)))


def normalize_phone(phone: str) -> str:
    """Canonicalize a phone number into the 254XXXXXXXXX format Daraja expects.

    "0710909198", "710909198" and "+254 710 909 198" all become
    "254710909198". Numbers already carrying the country code are returned
    with only the non-digit characters removed.
    """
    phone = digits_only(phone)

    if phone.startswith("0"):
        return COUNTRY_CODE + phone[1:]

    if phone.startswith(("7", "1")) and len(phone) == 9:
        return COUNTRY_CODE + phone

    return phone
