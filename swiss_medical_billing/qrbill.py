"""Swiss QR-bill payload encoding (Swiss Payment Standards, version 0200).

The payload is a newline-separated list of fields in a fixed order; empty
fields keep their line. Amounts are written with two decimals, or left empty
for open-amount bills.
"""

import re
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, field_validator

from swiss_medical_billing.identifiers import is_valid_swiss_iban, normalize_iban
from swiss_medical_billing.reference import normalize_qr_reference

_CREDITOR_REFERENCE = re.compile(r"^RF\d{2}.{1,21}$")


class ReferenceType(str, Enum):
    QRR = "QRR"
    SCOR = "SCOR"
    NON = "NON"


class AddressType(str, Enum):
    """``S``: street and building number. ``K``: two free address lines."""
    STRUCTURED = "S"
    COMBINED = "K"


class SwissQrBillData(BaseModel):
    """Everything printed into the QR code of a payment part."""
    iban: str
    creditor_name: str
    creditor_address_line1: str = ""
    creditor_address_line2: str = ""
    creditor_country: str = "CH"
    creditor_address_type: AddressType = AddressType.STRUCTURED
    amount: Decimal | None = None
    currency: str = "CHF"
    debtor_name: str | None = None
    debtor_address_line1: str | None = None
    debtor_address_line2: str | None = None
    debtor_country: str | None = None
    debtor_address_type: AddressType = AddressType.STRUCTURED
    reference_type: ReferenceType = ReferenceType.NON
    reference: str | None = None
    unstructured_message: str | None = None
    bill_information: str | None = None
    alternative_scheme1: str | None = None
    alternative_scheme2: str | None = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v):
        if v not in ("CHF", "EUR"):
            raise ValueError("QR-bill currency must be CHF or EUR")
        return v


def format_amount(amount: Decimal | None) -> str:
    if amount is None or amount <= 0:
        return ""
    return f"{amount:.2f}"


def is_valid_creditor_reference(reference: str) -> bool:
    """Shape check for an ISO 11649 creditor reference (``RF..``)."""
    return bool(_CREDITOR_REFERENCE.match(re.sub(r"\s", "", reference)))


def _reference_field(data: SwissQrBillData) -> str:
    match data.reference_type:
        case ReferenceType.QRR if data.reference:
            return normalize_qr_reference(data.reference)
        case ReferenceType.SCOR if data.reference:
            if not is_valid_creditor_reference(data.reference):
                raise ValueError("Invalid Creditor Reference format")
            return re.sub(r"\s", "", data.reference)
        case _:
            return ""


def _address_lines(address_type, name, line1, line2, country):
    # Combined addresses carry postcode and town in line 2.
    width = 70 if address_type is AddressType.COMBINED else 16
    return [
        address_type.value,
        name[:70],
        line1[:70],
        line2[:width],
        "",
        "",
        country,
    ]


def encode_swiss_qr_bill(data: SwissQrBillData) -> str:
    """Serialize ``data`` into the SPC payload.

    Raises:
        ValueError: On a non Swiss/Liechtenstein IBAN or a malformed reference.
    """
    if not is_valid_swiss_iban(data.iban):
        raise ValueError("Invalid Swiss or Liechtenstein IBAN format")

    creditor = _address_lines(
        data.creditor_address_type,
        data.creditor_name,
        data.creditor_address_line1,
        data.creditor_address_line2,
        data.creditor_country,
    )
    if data.debtor_name:
        debtor = _address_lines(
            data.debtor_address_type,
            data.debtor_name,
            data.debtor_address_line1 or "",
            data.debtor_address_line2 or "",
            data.debtor_country or "",
        )
    else:
        debtor = [""] * 7

    lines = [
        "SPC", "0200", "1",
        normalize_iban(data.iban),
        *creditor,
        *[""] * 7,  # ultimate creditor, reserved
        format_amount(data.amount),
        data.currency,
        *debtor,
        data.reference_type.value,
        _reference_field(data),
        (data.unstructured_message or "")[:140],
        "EPD",
        (data.bill_information or "")[:140],
        (data.alternative_scheme1 or "")[:100],
        (data.alternative_scheme2 or "")[:100],
    ]
    return "\n".join(lines)
