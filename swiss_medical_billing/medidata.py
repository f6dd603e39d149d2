"""MediData submission: from ledger invoices to transmitted Sumex documents.

The flow mirrors what a clinic does when it submits an invoice:

1. :func:`sumex_input_from_invoice` maps the ledger invoice, its line items,
   the patient and the clinic profile onto a
   :class:`~swiss_medical_billing.sumex.SumexInvoiceInput`.
2. :func:`plan_transmissions` builds the XML once for the addressee and,
   for Tiers Payant, once more as the patient copy.
3. :func:`send_invoice` hands every planned document to a
   :class:`Transmitter`. Build failures and transmission failures are
   reported separately.
"""

import logging
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Protocol

from pydantic import BaseModel

from swiss_medical_billing.config import MediDataConfig
from swiss_medical_billing.errors import InvoiceBuildError, TransmissionError
from swiss_medical_billing.invoices import BillingInvoice, DiagnosisCode, InsurerRecord, InvoiceLineItem, PatientRecord
from swiss_medical_billing.sumex import (
    ACF_TARIFF_TYPE,
    OTHER_TARIFF_TYPE,
    TARDOC_TARIFF_TYPE,
    DiagnosisType,
    EsrType,
    InvoiceAddress,
    InvoiceDiagnosis,
    InvoiceServiceInput,
    SideType,
    SumexInvoiceInput,
    TiersMode,
    YesNo,
    build_invoice_request,
    invoice_copy,
    map_law_type,
    map_sex,
    map_tiers_mode,
    map_treatment_reason,
)

log = logging.getLogger(__name__)

DEFAULT_SERVICE_CODE = "00.0010"
DEFAULT_DIAGNOSIS_CODE = "Z00.0"
DEFAULT_IBAN = "CH0930788000050249289"
DEFAULT_INSURED_ID = "80756012345678901"
DEFAULT_BIRTHDATE = date(1990, 1, 1)
SIMULATOR_INSURANCE_NAME = "Versicherung mit Antwortsimulator"


class ClinicProfile(BaseModel):
    """Billing identity of the clinic (the ``biller``)."""
    name: str
    gln: str
    zsr: str | None = None
    street: str = ""
    postal_code: str = ""
    city: str = ""
    canton: str = "GE"


# =============================================================================
# Service derivation
# =============================================================================


def tariff_type_for(item: InvoiceLineItem) -> str:
    """Sumex tariff type for a line item: ACF "005", TARDOC "001", else "999"."""
    if item.tariff_code == 5 or item.catalog_name == "ACF":
        return ACF_TARIFF_TYPE
    if item.tariff_code == 7 or item.catalog_name == "TARDOC":
        return TARDOC_TARIFF_TYPE
    return OTHER_TARIFF_TYPE


def side_for(item: InvoiceLineItem) -> SideType | None:
    """Laterality of a line item; unknown codes are dropped."""
    if item.side_type is None:
        return None
    try:
        return SideType(item.side_type)
    except ValueError:
        log.warning("Ignoring unknown side type %s on line item %s", item.side_type, item.code)
        return None


def service_from_line_item(
    item: InvoiceLineItem,
    index: int,
    *,
    treatment_date: date,
    doctor_gln: str,
) -> InvoiceServiceInput:
    """Turn the ``index``-th (0-based) line item into a Sumex service.

    When tax points are recorded the unit is ``tp_al`` with its point value;
    otherwise ``total_price`` already contains the factor and is billed with
    a unit factor of 1.
    """
    has_tax_points = item.tp_al > 0
    provider_gln = item.provider_gln or doctor_gln
    return InvoiceServiceInput(
        tariff_type=tariff_type_for(item),
        code=item.code or item.tardoc_code or DEFAULT_SERVICE_CODE,
        reference_code=item.ref_code,
        quantity=item.quantity or Decimal("1"),
        session_number=item.session_number or index + 1,
        date_begin=item.date_begin or treatment_date,
        provider_gln=provider_gln,
        responsible_gln=item.responsible_gln or provider_gln,
        service_name=item.name or "Service",
        side=side_for(item),
        unit=item.tp_al if has_tax_points else item.total_price,
        unit_factor=(item.tp_al_value or Decimal("1")) if has_tax_points else Decimal("1"),
        external_factor=item.external_factor_mt or Decimal("1"),
        amount=item.total_price,
        vat_rate=Decimal("0"),
    )


def default_line_item(invoice: BillingInvoice, doctor_gln: str) -> InvoiceLineItem:
    """Single consultation line billing the whole invoice total."""
    return InvoiceLineItem(
        code=DEFAULT_SERVICE_CODE,
        name="Konsultation, erste 5 Min.",
        quantity=Decimal("1"),
        unit_price=invoice.total_amount,
        total_price=invoice.total_amount,
        tariff_code=1,
        date_begin=invoice.treatment_date,
        provider_gln=doctor_gln,
        responsible_gln=doctor_gln,
        session_number=1,
        tp_al=invoice.total_amount,
        tp_al_value=Decimal("1"),
        tp_tl_value=Decimal("1"),
    )


def diagnoses_from_codes(codes: list[DiagnosisCode]) -> list[InvoiceDiagnosis]:
    """ICD codes stay ICD, everything else is sent as free text."""
    if not codes:
        return [InvoiceDiagnosis(type=DiagnosisType.ICD, code=DEFAULT_DIAGNOSIS_CODE)]
    return [
        InvoiceDiagnosis(
            type=DiagnosisType.ICD if d.type == "ICD" else DiagnosisType.FreeText,
            code=d.code or DEFAULT_DIAGNOSIS_CODE,
        )
        for d in codes
    ]


# =============================================================================
# Routing
# =============================================================================


def receiver_gln_for(invoice: BillingInvoice, config: MediDataConfig) -> str:
    """The insurer GLN, or the response simulator when the invoice has none."""
    return invoice.insurance_gln or config.simulator_gln


def transport_to_for(tiers_mode: TiersMode, receiver_gln: str, config: MediDataConfig) -> str:
    """Transport addressee: Tiers Garant is never forwarded to the insurer."""
    if tiers_mode is TiersMode.Garant:
        return config.tg_no_transmission_gln
    return receiver_gln


def _person(name: str | None, fallback: str) -> tuple[str, str]:
    parts = (name or "").split()
    if not parts:
        return fallback, ""
    return parts[-1], " ".join(parts[:-1])


def sumex_input_from_invoice(
    invoice: BillingInvoice,
    patient: PatientRecord,
    clinic: ClinicProfile,
    config: MediDataConfig | None = None,
    insurer: InsurerRecord | None = None,
) -> SumexInvoiceInput:
    """Assemble the Sumex input for ``invoice`` as MediData expects it."""
    config = config or MediDataConfig()
    doctor_gln = invoice.provider_gln or clinic.gln
    canton = invoice.treatment_canton or clinic.canton or "GE"
    treatment_begin = invoice.treatment_date or invoice.invoice_date
    treatment_end = invoice.treatment_date_end or treatment_begin

    items = invoice.line_items or [default_line_item(invoice, doctor_gln)]
    services = [
        service_from_line_item(item, idx, treatment_date=treatment_begin, doctor_gln=doctor_gln)
        for idx, item in enumerate(items)
    ]

    tiers_mode = map_tiers_mode(invoice.billing_type or "TP")
    receiver_gln = receiver_gln_for(invoice, config)
    if not invoice.insurance_gln:
        log.info("Invoice %s has no insurer GLN; addressing the response simulator", invoice.invoice_number)

    family_name, given_name = _person(invoice.doctor_name, clinic.name)
    patient_address = InvoiceAddress(
        family_name=patient.last_name or "Unknown",
        given_name=patient.first_name,
        street=patient.street_address or "",
        zip=patient.postal_code or "",
        city=patient.town or "",
        state_code=canton,
        email=patient.email,
        phone=patient.phone,
    )
    insurer = insurer or InsurerRecord()
    insurance_address = InvoiceAddress(
        company_name=insurer.name or invoice.insurance_name or SIMULATOR_INSURANCE_NAME,
        street=insurer.street or "",
        po_box=insurer.pobox,
        zip=insurer.zip_code or "",
        city=insurer.city or "",
    )

    return SumexInvoiceInput(
        language=2,
        tiers_mode=tiers_mode,
        invoice_id=invoice.invoice_number,
        invoice_date=invoice.invoice_date,
        reminder_level=invoice.reminder_level,
        law_type=map_law_type(invoice.health_insurance_law),
        insured_id=invoice.patient_card_number or DEFAULT_INSURED_ID,
        esr_type=EsrType.QR,
        iban=invoice.provider_iban or DEFAULT_IBAN,
        payment_period=30,
        biller_gln=clinic.gln,
        biller_zsr=clinic.zsr,
        biller_address=InvoiceAddress(
            company_name=clinic.name,
            street=clinic.street,
            zip=clinic.postal_code,
            city=clinic.city,
            state_code=canton,
        ),
        provider_gln=doctor_gln,
        provider_zsr=invoice.provider_zsr or clinic.zsr,
        provider_address=InvoiceAddress(
            family_name=family_name,
            given_name=given_name,
            street=clinic.street,
            zip=clinic.postal_code,
            city=clinic.city,
            state_code=canton,
        ),
        insurance_gln=receiver_gln,
        insurance_address=insurance_address,
        patient_sex=map_sex(patient.gender),
        patient_birthdate=patient.dob or DEFAULT_BIRTHDATE,
        patient_ssn=invoice.patient_ssn or patient.avs_number,
        patient_address=patient_address,
        guarantor_address=patient_address,
        treatment_canton=canton,
        treatment_reason=map_treatment_reason(invoice.treatment_reason),
        treatment_date_begin=treatment_begin,
        treatment_date_end=treatment_end,
        acid=invoice.accident_date.isoformat() if invoice.accident_date else None,
        apid=invoice.medical_case_number,
        diagnoses=diagnoses_from_codes(invoice.diagnosis_codes),
        services=services,
        transport_from=config.sender_gln,
        transport_via=config.intermediate_gln,
        transport_to=transport_to_for(tiers_mode, receiver_gln, config),
        # The insured person must receive a copy of every Tiers Payant invoice.
        print_copy_to_guarantor=(
            YesNo.Yes if tiers_mode is TiersMode.Payant or invoice.copy_to_guarantor else YesNo.No
        ),
    )


# =============================================================================
# Transmission planning
# =============================================================================


class TransmissionKind(str, Enum):
    INVOICE = "invoice"
    PATIENT_COPY = "patient_copy"


class Transmission(BaseModel):
    """One document ready for upload."""
    kind: TransmissionKind
    filename: str
    receiver_gln: str
    xml_content: str
    pdf_content: bytes | None = None

    @property
    def payload(self) -> bytes:
        return self.xml_content.encode("utf-8")


def inject_simulator_flag(xml: str, flag: str | None) -> str:
    """Put the ``invoiceresponsegenerator`` comment right after the XML declaration."""
    if not flag:
        return xml
    comment = f"\n<!-- invoiceresponsegenerator:{flag} -->\n"
    decl_end = xml.find("?>")
    if decl_end == -1:
        return comment.lstrip("\n") + xml
    return xml[: decl_end + 2] + comment + xml[decl_end + 2:].lstrip("\n")


def _build(data: SumexInvoiceInput, pdf_renderer=None) -> tuple[str, bytes | None]:
    result = build_invoice_request(data, pdf_renderer=pdf_renderer)
    if result.success and result.xml_content:
        return result.xml_content, result.pdf_content
    if result.xml_content:
        raise InvoiceBuildError(result.error or "PDF generation failed")
    message = result.error or result.abort_info or "unknown"
    raise InvoiceBuildError(f"Sumex XML failed: {message}", abort_info=result.abort_info)


def plan_transmissions(
    data: SumexInvoiceInput,
    config: MediDataConfig | None = None,
    pdf_renderer: Callable[[SumexInvoiceInput], bytes] | None = None,
) -> list[Transmission]:
    """Build every document that has to be sent for ``data``.

    Raises:
        InvoiceBuildError: When either document cannot be built.
    """
    config = config or MediDataConfig()
    xml_content, pdf_content = _build(data, pdf_renderer)
    receiver = data.transport_to or transport_to_for(
        data.tiers_mode, data.insurance_gln or config.simulator_gln, config
    )
    transmissions = [
        Transmission(
            kind=TransmissionKind.INVOICE,
            filename=f"{data.invoice_id}.xml",
            receiver_gln=receiver,
            xml_content=inject_simulator_flag(xml_content, config.simulator_flag),
            pdf_content=pdf_content,
        )
    ]

    if data.tiers_mode is TiersMode.Payant:
        copy_receiver = data.insurance_gln or config.simulator_gln
        copy_xml, _ = _build(invoice_copy(data, copy_receiver))
        transmissions.append(
            Transmission(
                kind=TransmissionKind.PATIENT_COPY,
                filename=f"{data.invoice_id}-copy.xml",
                receiver_gln=copy_receiver,
                xml_content=inject_simulator_flag(copy_xml, config.simulator_flag),
            )
        )
    return transmissions


# =============================================================================
# Sending
# =============================================================================


class Transmitter(Protocol):
    def send(self, payload: bytes, filename: str, receiver_gln: str) -> str:
        """Deliver ``payload`` and return the transmission reference.

        Raises:
            TransmissionError: When the document was not accepted for delivery.
        """
        ...


class SendOutcome(BaseModel):
    invoice_id: str
    success: bool
    tiers_mode: TiersMode | None = None
    transmission_reference: str | None = None
    patient_copy_reference: str | None = None
    build_error: str | None = None
    transmission_error: str | None = None
    patient_copy_error: str | None = None
    pdf_content: bytes | None = None


def send_invoice(
    data: SumexInvoiceInput,
    transmitter: Transmitter,
    config: MediDataConfig | None = None,
    pdf_renderer: Callable[[SumexInvoiceInput], bytes] | None = None,
) -> SendOutcome:
    """Build and send ``data`` and, for Tiers Payant, the patient copy.

    A failed patient copy is logged and reported but does not fail the
    outcome: the insurer already has the invoice.
    """
    config = config or MediDataConfig()
    outcome = SendOutcome(invoice_id=data.invoice_id, success=False, tiers_mode=data.tiers_mode)
    try:
        transmissions = plan_transmissions(data, config, pdf_renderer=pdf_renderer)
    except InvoiceBuildError as e:
        log.error("Invoice %s: %s", data.invoice_id, e)
        outcome.build_error = str(e)
        return outcome

    main, *copies = transmissions
    outcome.pdf_content = main.pdf_content
    try:
        outcome.transmission_reference = transmitter.send(main.payload, main.filename, main.receiver_gln)
    except TransmissionError as e:
        log.error("Invoice %s: upload to %s failed: %s", data.invoice_id, main.receiver_gln, e)
        outcome.transmission_error = str(e)
        return outcome
    outcome.success = True
    log.info(
        "Invoice %s sent to %s, ref=%s", data.invoice_id, main.receiver_gln, outcome.transmission_reference,
    )

    for copy in copies:
        try:
            outcome.patient_copy_reference = transmitter.send(copy.payload, copy.filename, copy.receiver_gln)
        except TransmissionError as e:
            log.warning("Invoice %s: patient copy upload failed: %s", data.invoice_id, e)
            outcome.patient_copy_error = str(e)
        else:
            log.info("Patient copy sent for %s: ref=%s", data.invoice_id, outcome.patient_copy_reference)
    return outcome
