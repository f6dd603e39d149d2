"""Tests for the Swiss QR-bill payload encoder."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from swiss_medical_billing.qrbill import (
    AddressType,
    ReferenceType,
    SwissQrBillData,
    encode_swiss_qr_bill,
    format_amount,
    is_valid_creditor_reference,
)

# Line positions in the SPC payload
IBAN, CREDITOR_TYPE, CREDITOR_NAME = 3, 4, 5
AMOUNT, CURRENCY = 18, 19
DEBTOR_TYPE, DEBTOR_NAME = 20, 21
REF_TYPE, REF, MESSAGE, TRAILER = 27, 28, 29, 30


@pytest.fixture
def bill() -> SwissQrBillData:
    return SwissQrBillData(
        iban="CH93 0076 2011 6238 5295 7",
        creditor_name="Clinique du Lac SA",
        creditor_address_type=AddressType.COMBINED,
        creditor_address_line1="Rue du Rhône 10",
        creditor_address_line2="1204 Genève",
        amount=Decimal("99.95"),
        debtor_name="Anna Muster",
        debtor_address_type=AddressType.COMBINED,
        debtor_address_line1="Chemin des Vignes 3",
        debtor_address_line2="1205 Genève",
        debtor_country="CH",
        reference_type=ReferenceType.QRR,
        reference="210000000003139471430009017",
        unstructured_message="Invoice 2025-0001",
    )


class TestEncode:
    def test_header_and_field_count(self, bill):
        lines = encode_swiss_qr_bill(bill).split("\n")
        assert lines[:3] == ["SPC", "0200", "1"]
        assert len(lines) == 34

    def test_fields(self, bill):
        lines = encode_swiss_qr_bill(bill).split("\n")
        assert lines[IBAN] == "CH9300762011623852957"
        assert lines[CREDITOR_TYPE] == "K"
        assert lines[CREDITOR_NAME] == "Clinique du Lac SA"
        assert lines[AMOUNT] == "99.95"
        assert lines[CURRENCY] == "CHF"
        assert lines[DEBTOR_TYPE] == "K"
        assert lines[DEBTOR_NAME] == "Anna Muster"
        assert lines[REF_TYPE] == "QRR"
        assert lines[REF] == "210000000003139471430009017"
        assert lines[MESSAGE] == "Invoice 2025-0001"
        assert lines[TRAILER] == "EPD"

    def test_open_amount_and_no_debtor(self, bill):
        bill = bill.model_copy(update={"amount": None, "debtor_name": None})
        lines = encode_swiss_qr_bill(bill).split("\n")
        assert lines[AMOUNT] == ""
        assert lines[DEBTOR_TYPE:DEBTOR_TYPE + 7] == [""] * 7

    def test_short_qr_reference_is_completed(self, bill):
        bill = bill.model_copy(update={"reference": "1"})
        assert encode_swiss_qr_bill(bill).split("\n")[REF] == "0" * 25 + "11"

    def test_without_reference(self, bill):
        bill = bill.model_copy(update={"reference_type": ReferenceType.NON, "reference": None})
        lines = encode_swiss_qr_bill(bill).split("\n")
        assert lines[REF_TYPE] == "NON"
        assert lines[REF] == ""

    def test_creditor_reference(self, bill):
        bill = bill.model_copy(update={"reference_type": ReferenceType.SCOR, "reference": "RF18 5390 0754 7034"})
        assert encode_swiss_qr_bill(bill).split("\n")[REF] == "RF18539007547034"

    def test_invalid_creditor_reference(self, bill):
        bill = bill.model_copy(update={"reference_type": ReferenceType.SCOR, "reference": "XX12"})
        with pytest.raises(ValueError, match="Invalid Creditor Reference"):
            encode_swiss_qr_bill(bill)

    def test_invalid_qr_reference(self, bill):
        bill = bill.model_copy(update={"reference": "210000000003139471430009018"})
        with pytest.raises(ValueError, match="check digit"):
            encode_swiss_qr_bill(bill)

    def test_foreign_iban(self, bill):
        bill = bill.model_copy(update={"iban": "DE89370400440532013000"})
        with pytest.raises(ValueError, match="Invalid Swiss or Liechtenstein IBAN"):
            encode_swiss_qr_bill(bill)

    def test_long_message_is_cut(self, bill):
        bill = bill.model_copy(update={"unstructured_message": "x" * 200})
        assert len(encode_swiss_qr_bill(bill).split("\n")[MESSAGE]) == 140


class TestValidation:
    def test_currency(self):
        with pytest.raises(ValidationError, match="CHF or EUR"):
            SwissQrBillData(iban="CH9300762011623852957", creditor_name="X", currency="USD")

    @pytest.mark.parametrize("amount, expected", [(Decimal("5"), "5.00"), (None, ""), (Decimal("0"), "")])
    def test_format_amount(self, amount, expected):
        assert format_amount(amount) == expected

    def test_creditor_reference_shape(self):
        assert is_valid_creditor_reference("RF18 5390 0754 7034") is True
        assert is_valid_creditor_reference("18 5390") is False
