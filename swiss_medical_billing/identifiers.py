"""Check-digit validation for GLN, AVS numbers and Swiss IBANs."""

import re

_SWISS_IBAN = re.compile(r"^(CH|LI)\d{7}[0-9A-Z]{12}$")
_WHITESPACE = re.compile(r"\s")


def ean13_check_digit(first_twelve: str) -> str:
    """Return the EAN-13 check digit for twelve digits (weights 1 and 3)."""
    total = sum(int(d) * (3 if i % 2 else 1) for i, d in enumerate(first_twelve))
    return str((10 - total % 10) % 10)


def _clean(value: str) -> str:
    return re.sub(r"[\s.]", "", value or "")


def is_valid_gln(gln: str | None) -> bool:
    """A GLN is 13 digits with an EAN-13 check digit."""
    cleaned = _clean(gln or "")
    if len(cleaned) != 13 or not cleaned.isdigit():
        return False
    return ean13_check_digit(cleaned[:12]) == cleaned[12]


def is_valid_avs(avs: str | None) -> bool:
    """An AVS (AHV) number is 13 digits starting with 756, EAN-13 checked."""
    cleaned = _clean(avs or "")
    return cleaned.startswith("756") and is_valid_gln(cleaned)


def format_avs_number(avs: str) -> str:
    """Render an AVS number as ``756.XXXX.XXXX.XX``.

    Values that are not 13 digits are returned unchanged.
    """
    cleaned = _clean(avs)
    if len(cleaned) != 13 or not cleaned.isdigit():
        return avs
    return f"{cleaned[:3]}.{cleaned[3:7]}.{cleaned[7:11]}.{cleaned[11:]}"


def normalize_iban(iban: str) -> str:
    """Strip whitespace and upper-case an IBAN."""
    return _WHITESPACE.sub("", iban or "").upper()


def iban_checksum_ok(iban: str) -> bool:
    """ISO 13616 mod-97 check on a compact, upper-case IBAN."""
    rearranged = iban[4:] + iban[:4]
    digits = "".join(str(int(c, 36)) for c in rearranged)
    return int(digits) % 97 == 1


def is_valid_swiss_iban(iban: str | None) -> bool:
    """Swiss and Liechtenstein IBANs: 21 characters with a valid mod-97 checksum.

    The five-digit clearing number may be followed by letters, so the
    account part is alphanumeric.
    """
    compact = normalize_iban(iban or "")
    return bool(_SWISS_IBAN.match(compact)) and iban_checksum_ok(compact)
