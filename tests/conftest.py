"""Shared pytest fixtures for swiss-medical-billing tests.

The fixtures build the documents the billing core consumes (camt.054
notifications, ledger records, Sumex inputs) so each test only states what
differs from a typical case. Reading them shows the data flowing from a bank
file to a matched invoice and from a ledger invoice to a MediData upload.
"""

import datetime
from decimal import Decimal
from pathlib import Path

import pytest

from swiss_medical_billing.config import MatchingConfig
from swiss_medical_billing.invoices import (
    BillingInvoice,
    DiagnosisCode,
    InsurerRecord,
    InvoiceLineItem,
    PatientRecord,
    ProviderRecord,
)
from swiss_medical_billing.ledger import InMemoryAuditStore, InMemoryLedger
from swiss_medical_billing.medidata import ClinicProfile
from swiss_medical_billing.models import InstallmentRecord, InvoiceRecord
from swiss_medical_billing.reference import generate_swiss_reference
from swiss_medical_billing.sumex import (
    InvoiceAddress,
    InvoiceDiagnosis,
    InvoiceServiceInput,
    SumexInvoiceInput,
    TiersMode,
)

# Valid EAN-13 GLNs used across the suite
CLINIC_GLN = "7601000123459"
DOCTOR_GLN = "7601000000002"
INSURANCE_GLN = "7601003000115"
CLINIC_IBAN = "CH9300762011623852957"
PATIENT_AVS = "7561234567897"

FIXED_NOW = datetime.datetime(2025, 3, 20, 12, 0, tzinfo=datetime.timezone.utc)


# =============================================================================
# Path Fixtures
# =============================================================================


@pytest.fixture
def test_data_dir() -> Path:
    """Path to the test_data directory containing sample camt.054 files."""
    return Path(__file__).parent.parent / "test_data"


@pytest.fixture
def sample_camt054_path(test_data_dir) -> Path:
    """Path to the sample notification with two credits and one debit."""
    return test_data_dir / "camt054_notification.xml"


# =============================================================================
# camt.054 documents
# =============================================================================


def _entry_xml(
    amount: str,
    reference: str | None = None,
    credit_debit: str = "CRDT",
    bank_reference: str | None = None,
    debtor: str | None = "Anna Muster",
    booking_date: str = "2025-03-19",
    currency: str = "CHF",
) -> str:
    ref = (
        f"<RmtInf><Strd><CdtrRefInf><Tp><CdOrPrtry><Prtry>QRR</Prtry></CdOrPrtry></Tp>"
        f"<Ref>{reference}</Ref></CdtrRefInf></Strd></RmtInf>"
        if reference else ""
    )
    refs = f"<Refs><AcctSvcrRef>{bank_reference}</AcctSvcrRef><EndToEndId>NOTPROVIDED</EndToEndId></Refs>" if bank_reference else ""
    party = f"<RltdPties><Dbtr><Pty><Nm>{debtor}</Nm></Pty></Dbtr>" \
            f"<DbtrAcct><Id><IBAN>CH5604835012345678009</IBAN></Id></DbtrAcct></RltdPties>" if debtor else ""
    return f"""
      <Ntry>
        <Amt Ccy="{currency}">{amount}</Amt>
        <CdtDbtInd>{credit_debit}</CdtDbtInd>
        <Sts><Cd>BOOK</Cd></Sts>
        <BookgDt><Dt>{booking_date}</Dt></BookgDt>
        <NtryDtls>
          <TxDtls>
            {refs}
            <Amt Ccy="{currency}">{amount}</Amt>
            {party}
            {ref}
          </TxDtls>
        </NtryDtls>
      </Ntry>"""


def _document_xml(entries: list[str], message_id: str = "MSG-20250319-001") -> str:
    return f"""<?xml version="1.0" encoding="UTF-8"?>
<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.054.001.08">
  <BkToCstmrDbtCdtNtfctn>
    <GrpHdr>
      <MsgId>{message_id}</MsgId>
      <CreDtTm>2025-03-19T18:00:00</CreDtTm>
    </GrpHdr>
    <Ntfctn>
      <Id>NTFCTN-1</Id>
      <FrToDt><FrDtTm>2025-03-19T00:00:00</FrDtTm><ToDtTm>2025-03-19T23:59:59</ToDtTm></FrToDt>
      <Acct>
        <Id><IBAN>{CLINIC_IBAN}</IBAN></Id>
        <Svcr><FinInstnId><Nm>PostFinance AG</Nm></FinInstnId></Svcr>
      </Acct>
      {''.join(entries)}
    </Ntfctn>
  </BkToCstmrDbtCdtNtfctn>
</Document>
"""


@pytest.fixture
def camt054_entry():
    """Factory for one ``<Ntry>`` block: ``camt054_entry("100.00", ref)``."""
    return _entry_xml


@pytest.fixture
def camt054_document():
    """Factory wrapping entry blocks into a complete camt.054 document."""
    return _document_xml


# =============================================================================
# Ledger
# =============================================================================


@pytest.fixture
def invoice_reference() -> str:
    return generate_swiss_reference("2025-0001")


@pytest.fixture
def installment_references() -> tuple[str, str]:
    return generate_swiss_reference("2025-0002-1"), generate_swiss_reference("2025-0002-2")


@pytest.fixture
def open_invoice(invoice_reference) -> InvoiceRecord:
    """An unpaid 100.00 CHF invoice."""
    return InvoiceRecord(
        id="inv-1",
        invoice_number="2025-0001",
        total_amount=Decimal("100.00"),
        reference_number=invoice_reference,
    )


@pytest.fixture
def plan_invoice() -> InvoiceRecord:
    """A 100.00 CHF invoice paid in two installments of 50.00."""
    return InvoiceRecord(id="inv-2", invoice_number="2025-0002", total_amount=Decimal("100.00"))


@pytest.fixture
def installments(installment_references) -> list[InstallmentRecord]:
    first, second = installment_references
    return [
        InstallmentRecord(
            id="inst-1", invoice_id="inv-2", installment_number=1,
            invoice_number="2025-0002-1", amount=Decimal("50.00"), reference_number=first,
        ),
        InstallmentRecord(
            id="inst-2", invoice_id="inv-2", installment_number=2,
            invoice_number="2025-0002-2", amount=Decimal("50.00"), reference_number=second,
        ),
    ]


@pytest.fixture
def ledger(open_invoice, plan_invoice, installments) -> InMemoryLedger:
    return InMemoryLedger(invoices=[open_invoice, plan_invoice], installments=installments)


@pytest.fixture
def audit() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def matching_config() -> MatchingConfig:
    return MatchingConfig()


@pytest.fixture
def fixed_now():
    """Clock returning a fixed timestamp for ``paid_at`` assertions."""
    return lambda: FIXED_NOW


# =============================================================================
# Sumex / MediData
# =============================================================================


@pytest.fixture
def clinic_address() -> InvoiceAddress:
    return InvoiceAddress(
        company_name="Clinique du Lac SA",
        street="Rue du Rhône 10",
        zip="1204",
        city="Genève",
        state_code="GE",
    )


@pytest.fixture
def patient_address() -> InvoiceAddress:
    return InvoiceAddress(
        family_name="Muster",
        given_name="Anna",
        street="Chemin des Vignes 3",
        zip="1205",
        city="Genève",
        state_code="GE",
    )


@pytest.fixture
def sumex_service() -> InvoiceServiceInput:
    """One TARDOC consultation line: 2 x 9.57 points at 0.96."""
    return InvoiceServiceInput(
        tariff_type="001",
        code="AA.00.0010",
        quantity=Decimal("2"),
        date_begin=datetime.date(2025, 3, 10),
        provider_gln=DOCTOR_GLN,
        responsible_gln=DOCTOR_GLN,
        service_name="Consultation, first 5 min",
        unit=Decimal("9.57"),
        unit_factor=Decimal("0.96"),
    )


@pytest.fixture
def sumex_input(clinic_address, patient_address, sumex_service) -> SumexInvoiceInput:
    """A Tiers Payant KVG invoice with one service."""
    return SumexInvoiceInput(
        tiers_mode=TiersMode.Payant,
        invoice_id="2025-0001",
        invoice_date=datetime.date(2025, 3, 12),
        iban=CLINIC_IBAN,
        biller_gln=CLINIC_GLN,
        biller_zsr="H123456",
        biller_address=clinic_address,
        provider_gln=DOCTOR_GLN,
        provider_zsr="Z987654",
        provider_address=InvoiceAddress(family_name="Dupont", given_name="Marie", zip="1204", city="Genève"),
        insurance_gln=INSURANCE_GLN,
        insurance_address=InvoiceAddress(company_name="Assura SA", zip="1052", city="Le Mont-sur-Lausanne"),
        patient_birthdate=datetime.date(1985, 6, 1),
        patient_ssn=PATIENT_AVS,
        patient_address=patient_address,
        insured_id="80756012345678901",
        treatment_canton="GE",
        treatment_date_begin=datetime.date(2025, 3, 10),
        diagnoses=[InvoiceDiagnosis(code="Z00.0")],
        services=[sumex_service],
    )


@pytest.fixture
def clinic() -> ClinicProfile:
    return ClinicProfile(
        name="Clinique du Lac SA",
        gln=CLINIC_GLN,
        zsr="H123456",
        street="Rue du Rhône 10",
        postal_code="1204",
        city="Genève",
        canton="GE",
    )


@pytest.fixture
def tardoc_line_item() -> InvoiceLineItem:
    return InvoiceLineItem(
        code="AA.00.0010",
        name="Konsultation, erste 5 Min.",
        quantity="1",
        unit_price="18.37",
        total_price="18.37",
        tariff_code=7,
        tardoc_code="AA.00.0010",
        tp_al="9.57",
        tp_tl="8.80",
        tp_al_value="0.96",
        tp_tl_value="1.04",
        session_number=1,
        catalog_name="TARDOC",
    )


@pytest.fixture
def product_line_item() -> InvoiceLineItem:
    return InvoiceLineItem(
        code="PRD-42",
        name="Hyaluronic acid filler 1 ml",
        quantity="1",
        unit_price="81.60",
        total_price="81.60",
    )


@pytest.fixture
def billing_invoice(tardoc_line_item, product_line_item) -> BillingInvoice:
    return BillingInvoice(
        invoice_number="2025-0001",
        invoice_date="2025-03-12",
        treatment_date="2025-03-10T09:30:00Z",
        total_amount="99.97",
        provider_gln=DOCTOR_GLN,
        provider_zsr="Z987654",
        provider_iban=CLINIC_IBAN,
        doctor_name="Marie Dupont",
        insurance_gln=INSURANCE_GLN,
        insurance_name="Assura SA",
        patient_ssn=PATIENT_AVS,
        treatment_canton="GE",
        health_insurance_law="KVG",
        billing_type="TP",
        treatment_reason="disease",
        diagnosis_codes=[DiagnosisCode(type="ICD", code="Z00.0")],
        line_items=[tardoc_line_item, product_line_item],
    )


@pytest.fixture
def patient() -> PatientRecord:
    return PatientRecord(
        first_name="Anna",
        last_name="Muster",
        dob="1985-06-01",
        street_address="Chemin des Vignes 3",
        postal_code="1205",
        town="Genève",
        gender="female",
        avs_number=PATIENT_AVS,
    )


@pytest.fixture
def provider() -> ProviderRecord:
    return ProviderRecord(
        name="Clinique du Lac SA",
        gln=DOCTOR_GLN,
        zsr="Z987654",
        street="Rue du Rhône",
        street_no="10",
        zip_code="1204",
        city="Genève",
        canton="GE",
        phone="+41 22 000 00 00",
        iban=CLINIC_IBAN,
    )


@pytest.fixture
def insurer() -> InsurerRecord:
    return InsurerRecord(
        name="Assura SA",
        gln=INSURANCE_GLN,
        street="Avenue C.-F. Ramuz 70",
        zip_code="1009",
        city="Pully",
    )
