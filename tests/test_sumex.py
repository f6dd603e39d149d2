"""Tests for building Sumex ``generalInvoiceRequest`` XML.

The document is parsed back with lxml and checked element by element:
routing (transport), the tiers block, balance, ESR QR data and services.
"""

import datetime
from decimal import Decimal

import pytest
from lxml import etree
from pydantic import ValidationError

from swiss_medical_billing.reference import generate_swiss_reference
from swiss_medical_billing.sumex import (
    INVOICE_NS,
    InvoiceAddress,
    InvoiceServiceInput,
    LawType,
    ModusType,
    RequestSubtype,
    RequestType,
    SumexInvoiceInput,
    TiersMode,
    TreatmentReason,
    build_invoice_request,
    invoice_copy,
    map_law_type,
    map_sex,
    map_tiers_mode,
    map_treatment_reason,
    transport_receiver_gln,
    validate_invoice_input,
)

NS = {"invoice": INVOICE_NS}


def parse(result) -> etree._Element:
    """Helper to parse a successful build result."""
    assert result.success is True, result.error
    return etree.fromstring(result.xml_content.encode("utf-8"))


def find(root, path: str) -> etree._Element:
    element = root.find(path, NS)
    assert element is not None, path
    return element


TIERS = "invoice:payload/invoice:body/invoice:tiers_payant"


# =============================================================================
# Mappers
# =============================================================================


class TestMappers:
    @pytest.mark.parametrize(
        "law, expected",
        [("KVG", LawType.KVG), ("uvg", LawType.UVG), ("IVG", LawType.IVG), ("VVG", LawType.VVG), (None, LawType.KVG)],
    )
    def test_law_type(self, law, expected):
        assert map_law_type(law) is expected

    @pytest.mark.parametrize(
        "billing, expected",
        [("TP", TiersMode.Payant), ("tg", TiersMode.Garant), ("TS", TiersMode.Soldant), ("", TiersMode.Garant)],
    )
    def test_tiers_mode(self, billing, expected):
        assert map_tiers_mode(billing) is expected

    def test_sex(self):
        assert map_sex("female").name == "Female"
        assert map_sex("male").name == "Male"
        assert map_sex(None).name == "Male"

    @pytest.mark.parametrize(
        "reason, expected",
        [
            (None, TreatmentReason.Disease),
            ("accident", TreatmentReason.Accident),
            ("birth_defect", TreatmentReason.BirthDefect),
            ("cosmetic", TreatmentReason.Unknown),
        ],
    )
    def test_treatment_reason(self, reason, expected):
        assert map_treatment_reason(reason) is expected

    def test_transport_receiver(self):
        assert transport_receiver_gln(TiersMode.Garant, "7601003000115") == "2000000000008"
        assert transport_receiver_gln(TiersMode.Payant, "7601003000115") == "7601003000115"


# =============================================================================
# Input models
# =============================================================================


class TestInputs:
    def test_service_total_from_tax_points(self, sumex_service):
        # 2 x 9.57 x 0.96 = 18.3744
        assert sumex_service.total == Decimal("18.37")

    def test_explicit_amount_wins(self, sumex_service):
        service = sumex_service.model_copy(update={"amount": Decimal("20.00")})
        assert service.total == Decimal("20.00")

    def test_canton_is_validated(self, sumex_input):
        data = sumex_input.model_dump()
        data["treatment_canton"] = "XX"
        with pytest.raises(ValidationError, match="Unknown canton"):
            SumexInvoiceInput.model_validate(data)

    def test_canton_is_upper_cased(self, sumex_input):
        data = sumex_input.model_dump()
        data["treatment_canton"] = "vd"
        assert SumexInvoiceInput.model_validate(data).treatment_canton == "VD"

    def test_address_display_name(self):
        assert InvoiceAddress(given_name="Anna", family_name="Muster").display_name == "Anna Muster"
        assert InvoiceAddress(company_name="Assura SA", family_name="X").display_name == "Assura SA"


class TestValidation:
    def test_valid_input(self, sumex_input):
        assert validate_invoice_input(sumex_input) == []

    def test_invalid_glns(self, sumex_input):
        data = sumex_input.model_copy(update={"biller_gln": "7601000123450", "provider_gln": "123"})
        problems = validate_invoice_input(data)
        assert "Invalid biller GLN '7601000123450'" in problems
        assert "Invalid provider GLN '123'" in problems

    def test_tiers_payant_needs_insurer(self, sumex_input):
        data = sumex_input.model_copy(update={"insurance_gln": None})
        assert validate_invoice_input(data) == ["Tiers Payant requires an insurance GLN"]

    def test_tiers_garant_without_insurer(self, sumex_input):
        data = sumex_input.model_copy(update={"insurance_gln": None, "tiers_mode": TiersMode.Garant})
        assert validate_invoice_input(data) == []

    def test_foreign_iban(self, sumex_input):
        data = sumex_input.model_copy(update={"iban": "DE89370400440532013000"})
        assert validate_invoice_input(data) == ["Invalid Swiss or Liechtenstein IBAN format"]

    def test_no_services(self, sumex_input):
        data = sumex_input.model_copy(update={"services": []})
        assert "At least one service is required" in validate_invoice_input(data)

    def test_refund_needs_credit_id(self, sumex_input):
        data = sumex_input.model_copy(update={"request_subtype": RequestSubtype.Refund})
        assert validate_invoice_input(data) == ["Refunds require a credit id"]

    def test_service_glns(self, sumex_input, sumex_service):
        bad = sumex_service.model_copy(update={"responsible_gln": "1"})
        data = sumex_input.model_copy(update={"services": [sumex_service, bad]})
        assert validate_invoice_input(data) == ["Service 2: invalid responsible GLN '1'"]


# =============================================================================
# Document structure
# =============================================================================


class TestBuildTiersPayant:
    def test_declaration_and_root(self, sumex_input):
        result = build_invoice_request(sumex_input)
        assert result.xml_content.startswith("<?xml")
        assert "UTF-8" in result.xml_content.splitlines()[0]
        root = parse(result)
        assert root.tag == f"{{{INVOICE_NS}}}request"
        assert root.get("language") == "fr"
        assert root.get("modus") == "production"

    def test_transport_goes_to_insurer(self, sumex_input):
        root = parse(build_invoice_request(sumex_input))
        transport = find(root, "invoice:processing/invoice:transport")
        assert transport.get("from") == "2099988899483"
        assert transport.get("to") == "7601003000115"
        assert find(transport, "invoice:via").get("via") == "7601001304307"

    def test_payload_flags(self, sumex_input):
        payload = find(parse(build_invoice_request(sumex_input)), "invoice:payload")
        assert payload.get("type") == "invoice"
        assert payload.get("copy") == "false"
        assert payload.get("storno") == "false"
        invoice = find(payload, "invoice:invoice")
        assert invoice.get("request_id") == "2025-0001"
        assert invoice.get("request_date") == "2025-03-12T00:00:00"
        assert invoice.get("request_timestamp") == "1741737600"

    def test_parties(self, sumex_input):
        root = parse(build_invoice_request(sumex_input))
        tiers = find(root, TIERS)
        assert tiers.get("payment_period") == "P30D"
        assert find(tiers, "invoice:biller").get("gln") == "7601000123459"
        assert find(tiers, "invoice:biller").get("zsr") == "H123456"
        assert find(tiers, "invoice:debitor").get("gln") == "7601003000115"
        assert find(tiers, "invoice:provider").get("gln") == "7601000000002"
        assert find(tiers, "invoice:insurance").get("gln") == "7601003000115"
        assert find(tiers, "invoice:biller/invoice:company/invoice:companyname").text == "Clinique du Lac SA"

    def test_patient(self, sumex_input):
        patient = find(parse(build_invoice_request(sumex_input)), f"{TIERS}/invoice:patient")
        assert patient.get("gender") == "female"
        assert patient.get("birthdate") == "1985-06-01T00:00:00"
        assert patient.get("ssn") == "7561234567897"
        assert find(patient, "invoice:person/invoice:familyname").text == "Muster"
        assert find(patient, "invoice:person/invoice:postal/invoice:zip").get("statecode") == "GE"
        assert find(patient, "invoice:card").get("card_id") == "80756012345678901"

    def test_balance(self, sumex_input):
        balance = find(parse(build_invoice_request(sumex_input)), f"{TIERS}/invoice:balance")
        assert balance.get("currency") == "CHF"
        assert balance.get("amount") == "18.37"
        assert balance.get("amount_due") == "18.37"
        assert balance.get("amount_obligations") == "18.37"
        assert find(balance, "invoice:vat").get("vat") == "0.00"

    def test_esr_qr(self, sumex_input):
        esr = find(parse(build_invoice_request(sumex_input)), "invoice:payload/invoice:body/invoice:esrQR")
        assert esr.get("type") == "esrQR"
        assert esr.get("iban") == "CH9300762011623852957"
        assert esr.get("reference_number") == generate_swiss_reference("2025-0001")

    def test_law_and_treatment(self, sumex_input):
        body = find(parse(build_invoice_request(sumex_input)), "invoice:payload/invoice:body")
        assert find(body, "invoice:kvg").get("insured_id") == "80756012345678901"
        treatment = find(body, "invoice:treatment")
        assert treatment.get("canton") == "GE"
        assert treatment.get("reason") == "disease"
        assert treatment.get("date_end") == "2025-03-10T00:00:00"
        diagnosis = find(treatment, "invoice:diagnosis")
        assert diagnosis.get("type") == "ICD"
        assert diagnosis.get("code") == "Z00.0"

    def test_services(self, sumex_input):
        services = parse(build_invoice_request(sumex_input)).findall(
            "invoice:payload/invoice:body/invoice:services/invoice:service", NS
        )
        assert len(services) == 1
        service = services[0]
        assert service.get("record_id") == "1"
        assert service.get("tariff_type") == "001"
        assert service.get("code") == "AA.00.0010"
        assert service.get("quantity") == "2"
        assert service.get("unit") == "9.57"
        assert service.get("unit_factor") == "0.96"
        assert service.get("amount") == "18.37"
        assert service.get("obligation") == "true"
        assert service.get("name") == "Consultation, first 5 min"
        assert service.get("ref_code") is None

    def test_test_modus(self, sumex_input):
        data = sumex_input.model_copy(update={"modus": ModusType.Test})
        assert parse(build_invoice_request(data)).get("modus") == "test"


class TestBuildTiersGarant:
    def test_transport_goes_to_no_transmission_gln(self, sumex_input):
        data = sumex_input.model_copy(update={"tiers_mode": TiersMode.Garant})
        root = parse(build_invoice_request(data))
        assert find(root, "invoice:processing/invoice:transport").get("to") == "2000000000008"
        tiers = find(root, "invoice:payload/invoice:body/invoice:tiers_garant")
        assert find(tiers, "invoice:debitor").get("gln") == "2000000000008"
        # The body still names the insurer.
        assert find(tiers, "invoice:insurance").get("gln") == "7601003000115"

    def test_explicit_transport_to_wins(self, sumex_input):
        data = sumex_input.model_copy(update={"tiers_mode": TiersMode.Garant, "transport_to": "2099988876514"})
        root = parse(build_invoice_request(data))
        assert find(root, "invoice:processing/invoice:transport").get("to") == "2099988876514"


class TestBuildVariants:
    def test_reminder(self, sumex_input):
        data = sumex_input.model_copy(update={
            "request_type": RequestType.Reminder,
            "reminder_date": datetime.date(2025, 4, 20),
            "reminder_amount": Decimal("10.00"),
        })
        payload = find(parse(build_invoice_request(data)), "invoice:payload")
        assert payload.get("type") == "reminder"
        reminder = find(payload, "invoice:reminder")
        assert reminder.get("reminder_level") == "1"
        assert reminder.get("request_date") == "2025-04-20T00:00:00"
        balance = find(payload, "invoice:body/invoice:tiers_payant/invoice:balance")
        assert balance.get("amount_reminder") == "10.00"
        assert balance.get("amount_due") == "28.37"

    def test_refund_has_credit(self, sumex_input):
        data = sumex_input.model_copy(update={"request_subtype": RequestSubtype.Refund, "credit_id": "CR-1"})
        credit = find(parse(build_invoice_request(data)), "invoice:payload/invoice:credit")
        assert credit.get("request_id") == "CR-1"

    def test_vat_is_extracted_from_gross_amounts(self, sumex_input, sumex_service):
        taxed = sumex_service.model_copy(update={"amount": Decimal("108.10"), "vat_rate": Decimal("8.1")})
        data = sumex_input.model_copy(update={"services": [taxed]})
        vat = find(parse(build_invoice_request(data)), f"{TIERS}/invoice:balance/invoice:vat")
        assert vat.get("vat") == "8.10"
        rate = find(vat, "invoice:vat_rate")
        assert rate.get("vat_rate") == "8.1"
        assert rate.get("amount") == "108.10"

    def test_copy(self, sumex_input):
        data = invoice_copy(sumex_input, "2099988876514")
        assert data.request_subtype is RequestSubtype.Copy
        root = parse(build_invoice_request(data))
        assert find(root, "invoice:payload").get("copy") == "true"
        assert find(root, "invoice:processing/invoice:transport").get("to") == "2099988876514"

    def test_copy_leaves_input_untouched(self, sumex_input):
        invoice_copy(sumex_input)
        assert sumex_input.request_subtype is RequestSubtype.Normal

    def test_person_without_company(self, sumex_input):
        tiers = find(parse(build_invoice_request(sumex_input)), TIERS)
        provider = find(tiers, "invoice:provider/invoice:person")
        assert find(provider, "invoice:givenname").text == "Marie"


# =============================================================================
# Failures
# =============================================================================


class TestBuildFailures:
    def test_validation_problems_are_joined(self, sumex_input):
        data = sumex_input.model_copy(update={"iban": "DE89370400440532013000", "services": []})
        result = build_invoice_request(data)
        assert result.success is False
        assert result.error == "At least one service is required; Invalid Swiss or Liechtenstein IBAN format"
        assert result.xml_content is None

    def test_invalid_dict_input(self):
        result = build_invoice_request({"invoice_id": "1"})
        assert result.success is False
        assert result.error.startswith("Invalid invoice input:")

    def test_dict_input(self, sumex_input):
        result = build_invoice_request(sumex_input.model_dump())
        assert result.success is True

    def test_serializer_abort(self, sumex_input):
        data = sumex_input.model_copy(update={"esr_reference": "210000000003139471430009018"})
        result = build_invoice_request(data)
        assert result.success is False
        assert result.error is None
        assert "check digit" in result.abort_info

    def test_pdf_renderer_receives_input(self, sumex_input):
        seen = []

        def renderer(data: SumexInvoiceInput) -> bytes:
            seen.append(data.invoice_id)
            return b"%PDF-1.4"

        result = build_invoice_request(sumex_input, pdf_renderer=renderer)
        assert result.pdf_content == b"%PDF-1.4"
        assert seen == ["2025-0001"]

    def test_pdf_renderer_not_called_on_failure(self, sumex_input):
        data = sumex_input.model_copy(update={"services": []})
        result = build_invoice_request(data, pdf_renderer=lambda d: pytest.fail("renderer called"))
        assert result.success is False

    def test_pdf_renderer_failure_is_reported(self, sumex_input):
        def renderer(data: SumexInvoiceInput) -> bytes:
            raise ValueError("table does not fit")

        result = build_invoice_request(sumex_input, pdf_renderer=renderer)
        assert result.success is False
        assert result.error == "PDF generation failed: table does not fit"
        assert result.pdf_content is None
        assert result.xml_content.startswith("<?xml")


def test_service_input_requires_dates():
    with pytest.raises(ValidationError):
        InvoiceServiceInput(tariff_type="001", code="X", provider_gln="7601000000002", responsible_gln="7601000000002")
