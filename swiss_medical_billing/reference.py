"""Swiss structured payment references (QR reference, QRR).

A QR reference is 27 digits: 26 payload digits followed by a check digit
computed with the recursive modulo-10 algorithm used by Swiss payment slips.
Invoices carry the reference derived from their invoice number, so the same
invoice number always maps to the same reference.
"""

import re

REFERENCE_BASE_LENGTH = 26
REFERENCE_LENGTH = REFERENCE_BASE_LENGTH + 1
_MOD10_TABLE = (0, 9, 4, 6, 8, 2, 7, 1, 3, 5)
_DISPLAY_GROUPS = ((0, 2), (2, 7), (7, 12), (12, 17), (17, 22), (22, 27))
_NON_DIGIT = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s")


def qr_reference_check_digit(digits: str) -> str:
    """Return the recursive modulo-10 check digit for a digit string.

    Args:
        digits: A string of decimal digits.
    Returns:
        The check digit as a one-character string.
    """
    carry = 0
    for char in digits:
        carry = _MOD10_TABLE[(carry + int(char)) % 10]
    return str((10 - carry) % 10)


def _digits_for(invoice_number: str) -> str:
    digits = _NON_DIGIT.sub("", invoice_number)
    if not digits:
        # Purely alphabetic numbers still need a stable reference.
        digits = "".join(f"{ord(char):03d}" for char in invoice_number)
    return digits[-REFERENCE_BASE_LENGTH:]


def generate_swiss_reference(invoice_number: str) -> str:
    """Derive the 27-digit QR reference for an invoice number.

    Non-digits are removed ("INV-2024-001" -> "2024001"), numbers longer
    than 26 digits keep their last 26, and the result is left-padded with
    zeros before the check digit is appended. Invoice numbers without any
    digit are encoded from their character codes.

    Raises:
        ValueError: If ``invoice_number`` is empty or only whitespace.
    """
    if not invoice_number or not invoice_number.strip():
        raise ValueError("Invoice number is required to generate a reference")
    padded = _digits_for(invoice_number.strip()).rjust(REFERENCE_BASE_LENGTH, "0")
    return padded + qr_reference_check_digit(padded)


def format_swiss_reference_with_spaces(reference: str) -> str:
    """Group a 27-digit reference as ``XX XXXXX XXXXX XXXXX XXXXX XXXXX``.

    Anything that is not exactly 27 characters long is returned unchanged.
    """
    if len(reference) != REFERENCE_LENGTH:
        return reference
    return " ".join(reference[start:end] for start, end in _DISPLAY_GROUPS)


def strip_reference(reference: str) -> str:
    """Remove all whitespace from a (possibly display-formatted) reference."""
    return _WHITESPACE.sub("", reference)


def is_valid_swiss_reference(reference: str) -> bool:
    """Check length, digits and check digit of a QR reference."""
    cleaned = strip_reference(reference or "")
    if len(cleaned) != REFERENCE_LENGTH or not cleaned.isdigit():
        return False
    return qr_reference_check_digit(cleaned[:-1]) == cleaned[-1]


def normalize_qr_reference(reference: str) -> str:
    """Return a verified 27-digit QR reference.

    Shorter inputs are padded to 26 digits and get a check digit appended;
    27-digit inputs must already carry the correct check digit.

    Raises:
        ValueError: On a wrong check digit or more than 27 digits.
    """
    cleaned = _NON_DIGIT.sub("", reference)
    if len(cleaned) <= REFERENCE_BASE_LENGTH:
        padded = cleaned.rjust(REFERENCE_BASE_LENGTH, "0")
        return padded + qr_reference_check_digit(padded)
    if len(cleaned) == REFERENCE_LENGTH:
        if qr_reference_check_digit(cleaned[:-1]) != cleaned[-1]:
            raise ValueError("Invalid QR Reference check digit")
        return cleaned
    raise ValueError("QR Reference must be 26 or 27 digits")
