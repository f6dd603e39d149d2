"""Forum Datenaustausch ``generalInvoiceRequest`` 5.00 invoices.

:func:`build_invoice_request` turns a :class:`SumexInvoiceInput` into the
XML document MediData forwards to insurers. Building never touches the
network and never raises: input problems and PDF renderer failures come
back as ``error``, serializer aborts as ``abort_info``.

Routing rules:

* Tiers Garant (TG): the patient pays. The document is addressed to the
  "no transmission" GLN ``2000000000008`` while the body still names the
  real insurer.
* An explicit ``transport_to`` always wins. :mod:`swiss_medical_billing.medidata`
  uses it for the configured TG GLN and for re-addressed copies.
* Tiers Payant (TP): the insurer pays and receives the invoice. The patient
  must additionally receive a copy (``RequestSubtype.Copy``), see
  :mod:`swiss_medical_billing.medidata`.
"""

import calendar
import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from enum import IntEnum

from lxml import etree
from pydantic import BaseModel, Field, ValidationError, field_validator

from swiss_medical_billing.config import DEFAULT_INTERMEDIATE_GLN, DEFAULT_SENDER_GLN, TG_NO_TRANSMISSION_GLN
from swiss_medical_billing.identifiers import is_valid_gln, is_valid_swiss_iban, normalize_iban
from swiss_medical_billing.money import CENT, fmt_number, round_to_step
from swiss_medical_billing.reference import generate_swiss_reference, normalize_qr_reference

log = logging.getLogger(__name__)

INVOICE_NS = "http://www.forum-datenaustausch.ch/invoice"
XSI_NS = "http://www.w3.org/2001/XMLSchema-instance"
NSMAP = {"invoice": INVOICE_NS, "xsi": XSI_NS}
SCHEMA_LOCATION = f"{INVOICE_NS} generalInvoiceRequest_500.xsd"
UNKNOWN_GLN = TG_NO_TRANSMISSION_GLN

ACF_TARIFF_TYPE = "005"
TARDOC_TARIFF_TYPE = "001"
OTHER_TARIFF_TYPE = "999"


# =============================================================================
# Enumerations (Sumex1 numbering)
# =============================================================================


class LawType(IntEnum):
    KVG = 0
    UVG = 1
    MVG = 2
    IVG = 3
    VVG = 4


class TiersMode(IntEnum):
    Garant = 0
    Payant = 1
    Soldant = 2


class SexType(IntEnum):
    Male = 0
    Female = 1


class SideType(IntEnum):
    NoSide = 0
    Left = 1
    Right = 2
    Both = 3


class TreatmentReason(IntEnum):
    Disease = 0
    Accident = 1
    Maternity = 2
    Prevention = 3
    BirthDefect = 4
    Unknown = 5


class DiagnosisType(IntEnum):
    ICD = 0
    Cantonal = 1
    ByContract = 2
    FreeText = 3
    BirthDefect = 4
    ICPC = 5
    DRG = 6


class EsrType(IntEnum):
    QR = 5
    QRPlus = 6
    RedPayinSlipQR = 7
    RedPayinSlipQRPlus = 8


class RoleType(IntEnum):
    Physician = 1
    Physiotherapist = 2
    Chiropractor = 4
    Ergotherapist = 8
    Nutritionist = 16
    Midwife = 32
    Logotherapist = 64
    Hospital = 128
    RehabClinic = 160
    PsychiatricClinic = 192
    Pharmacist = 256
    Dentist = 512
    LabTechnician = 1024
    DentalTechnician = 2048
    OtherTechnician = 4096
    Psychologist = 16384
    Wholesaler = 65536
    NursingStaff = 131072
    Transport = 262144
    Druggist = 524288
    NaturopathicDoctor = 1048576
    NaturopathicTherapist = 2097152
    Other = 4194304


class PlaceType(IntEnum):
    Practice = 1
    Hospital = 2
    Lab = 4
    Association = 8
    Company = 16


class RequestType(IntEnum):
    Invoice = 0
    Reminder = 1


class RequestSubtype(IntEnum):
    Normal = 0
    Copy = 1
    Refund = 2
    Storno = 3


class YesNo(IntEnum):
    No = 0
    Yes = 1


class ModusType(IntEnum):
    Production = 0
    Test = 1


CANTON_CODES = {
    "AG": 1, "AI": 2, "AR": 3, "BE": 4, "BL": 5, "BS": 6, "FR": 7, "GE": 8, "GL": 9, "GR": 10,
    "JU": 11, "LU": 12, "NE": 13, "NW": 14, "OW": 15, "SG": 16, "SH": 17, "SO": 18, "SZ": 19,
    "TG": 20, "TI": 21, "UR": 22, "VD": 23, "VS": 24, "ZG": 25, "ZH": 26,
}

LANGUAGES = {1: "de", 2: "fr", 3: "it"}

_LAW_ELEMENTS = {
    LawType.KVG: "kvg",
    LawType.UVG: "uvg",
    LawType.MVG: "mvg",
    LawType.IVG: "ivg",
    LawType.VVG: "vvg",
}

_TIERS_ELEMENTS = {
    TiersMode.Garant: "tiers_garant",
    TiersMode.Payant: "tiers_payant",
    TiersMode.Soldant: "tiers_soldant",
}

_ESR_TYPES = {
    EsrType.QR: "esrQR",
    EsrType.QRPlus: "esrQRplus",
    EsrType.RedPayinSlipQR: "esrRedQR",
    EsrType.RedPayinSlipQRPlus: "esrRedQRplus",
}

_DIAGNOSIS_TYPES = {
    DiagnosisType.ICD: "ICD",
    DiagnosisType.Cantonal: "cantonal",
    DiagnosisType.ByContract: "by_contract",
    DiagnosisType.FreeText: "freetext",
    DiagnosisType.BirthDefect: "birthdefect",
    DiagnosisType.ICPC: "ICPC2",
    DiagnosisType.DRG: "DRG",
}

_SIDES = {
    SideType.NoSide: "none",
    SideType.Left: "left",
    SideType.Right: "right",
    SideType.Both: "both",
}


def map_law_type(law: str | None) -> LawType:
    """Map a law abbreviation ("KVG", "UVG", ...) to :class:`LawType`, default KVG."""
    match (law or "").upper():
        case "UVG":
            return LawType.UVG
        case "MVG":
            return LawType.MVG
        case "IVG":
            return LawType.IVG
        case "VVG":
            return LawType.VVG
        case _:
            return LawType.KVG


def map_tiers_mode(billing: str | None) -> TiersMode:
    """Map "TG"/"TP"/"TS" to :class:`TiersMode`, default Tiers Garant."""
    match (billing or "").upper():
        case "TP":
            return TiersMode.Payant
        case "TS":
            return TiersMode.Soldant
        case _:
            return TiersMode.Garant


def map_sex(sex: str | None) -> SexType:
    return SexType.Female if (sex or "").lower() == "female" else SexType.Male


def map_treatment_reason(reason: str | None) -> TreatmentReason:
    match (reason or "disease").lower():
        case "disease":
            return TreatmentReason.Disease
        case "accident":
            return TreatmentReason.Accident
        case "maternity":
            return TreatmentReason.Maternity
        case "prevention":
            return TreatmentReason.Prevention
        case "birthdefect" | "birth_defect":
            return TreatmentReason.BirthDefect
        case _:
            return TreatmentReason.Unknown


def transport_receiver_gln(tiers_mode: TiersMode, receiver_gln: str | None) -> str:
    """GLN the transport envelope is addressed to.

    Tiers Garant invoices go to the "no transmission" GLN; everything else
    goes to the insurer.
    """
    if tiers_mode is TiersMode.Garant:
        return TG_NO_TRANSMISSION_GLN
    return receiver_gln or ""


# =============================================================================
# Input models
# =============================================================================


class InvoiceAddress(BaseModel):
    """A person (family/given name) or a company (company_name)."""
    family_name: str | None = None
    given_name: str | None = None
    salutation: str | None = None
    title: str | None = None
    company_name: str | None = None
    department: str | None = None
    street: str = ""
    po_box: str | None = None
    zip: str = ""
    city: str = ""
    state_code: str | None = None
    country_code: str = "CH"
    email: str | None = None
    phone: str | None = None

    @property
    def is_company(self) -> bool:
        return bool(self.company_name)

    @property
    def display_name(self) -> str:
        if self.company_name:
            return self.company_name
        return " ".join(p for p in (self.given_name, self.family_name) if p)


class InvoiceServiceInput(BaseModel):
    """One service record. ``amount`` is computed when omitted."""
    tariff_type: str
    code: str
    reference_code: str | None = None
    quantity: Decimal = Decimal("1")
    session_number: int = 1
    date_begin: date
    provider_gln: str
    responsible_gln: str
    side: SideType | None = None
    service_name: str = "Service"
    unit: Decimal = Decimal("0")
    unit_factor: Decimal = Decimal("1")
    external_factor: Decimal = Decimal("1")
    amount: Decimal | None = None
    vat_rate: Decimal = Decimal("0")
    obligation: bool = True
    remark: str | None = None

    @property
    def total(self) -> Decimal:
        if self.amount is not None:
            return self.amount
        return round_to_step(
            self.quantity * self.unit * self.unit_factor * self.external_factor, CENT
        )


class InvoiceDiagnosis(BaseModel):
    type: DiagnosisType = DiagnosisType.ICD
    code: str


class SumexInvoiceInput(BaseModel):
    """Everything needed to produce one ``generalInvoiceRequest``."""
    language: int = 2
    role_type: RoleType = RoleType.Physician
    place_type: PlaceType = PlaceType.Practice
    request_type: RequestType = RequestType.Invoice
    request_subtype: RequestSubtype = RequestSubtype.Normal
    remark: str | None = None

    tiers_mode: TiersMode = TiersMode.Garant
    vat_number: str | None = None
    amount_prepaid: Decimal = Decimal("0")

    invoice_id: str
    invoice_date: date
    invoice_timestamp: int | None = None

    credit_id: str | None = None
    credit_date: date | None = None

    reminder_level: int = 0
    reminder_date: date | None = None
    reminder_amount: Decimal = Decimal("0")

    law_type: LawType = LawType.KVG
    case_id: str | None = None
    case_date: date | None = None
    insured_id: str | None = None

    esr_type: EsrType = EsrType.QR
    iban: str
    esr_reference: str | None = None
    customer_note: str | None = None
    payment_period: int = 30

    biller_gln: str
    biller_zsr: str | None = None
    biller_address: InvoiceAddress
    provider_gln: str
    provider_zsr: str | None = None
    provider_address: InvoiceAddress
    insurance_gln: str | None = None
    insurance_address: InvoiceAddress | None = None

    patient_sex: SexType = SexType.Female
    patient_birthdate: date
    patient_ssn: str | None = None
    patient_address: InvoiceAddress
    guarantor_address: InvoiceAddress | None = None

    treatment_canton: str
    treatment_reason: TreatmentReason = TreatmentReason.Disease
    treatment_date_begin: date
    treatment_date_end: date | None = None
    apid: str | None = None
    acid: str | None = None
    diagnoses: list[InvoiceDiagnosis] = Field(default_factory=list)
    services: list[InvoiceServiceInput] = Field(default_factory=list)

    software_package: str = "swiss-medical-billing"
    software_version: int = 100
    software_id: int = 0

    transport_from: str | None = None
    transport_via: str | None = None
    # Overrides the routing derived from tiers_mode when set.
    transport_to: str | None = None
    print_copy_to_guarantor: YesNo = YesNo.No
    modus: ModusType = ModusType.Production

    @field_validator("treatment_canton")
    @classmethod
    def validate_canton(cls, v):
        code = (v or "").upper()
        if code not in CANTON_CODES:
            raise ValueError(f"Unknown canton {v!r}")
        return code

    @property
    def total_amount(self) -> Decimal:
        return sum((s.total for s in self.services), Decimal("0"))


class InvoiceBuildResult(BaseModel):
    success: bool
    xml_content: str | None = None
    pdf_content: bytes | None = None
    error: str | None = None
    abort_info: str | None = None


# =============================================================================
# Validation
# =============================================================================


def validate_invoice_input(data: SumexInvoiceInput) -> list[str]:
    """Return human-readable problems that prevent a valid document."""
    problems = []
    if not data.invoice_id.strip():
        problems.append("Invoice id is required")
    if not data.services:
        problems.append("At least one service is required")
    if not is_valid_gln(data.biller_gln):
        problems.append(f"Invalid biller GLN {data.biller_gln!r}")
    if not is_valid_gln(data.provider_gln):
        problems.append(f"Invalid provider GLN {data.provider_gln!r}")
    if not is_valid_swiss_iban(data.iban):
        problems.append("Invalid Swiss or Liechtenstein IBAN format")
    if data.tiers_mode is TiersMode.Payant:
        if not data.insurance_gln:
            problems.append("Tiers Payant requires an insurance GLN")
        elif not is_valid_gln(data.insurance_gln):
            problems.append(f"Invalid insurance GLN {data.insurance_gln!r}")
    if data.request_subtype is RequestSubtype.Refund and not data.credit_id:
        problems.append("Refunds require a credit id")
    for idx, service in enumerate(data.services, 1):
        if not is_valid_gln(service.provider_gln):
            problems.append(f"Service {idx}: invalid provider GLN {service.provider_gln!r}")
        if not is_valid_gln(service.responsible_gln):
            problems.append(f"Service {idx}: invalid responsible GLN {service.responsible_gln!r}")
    return problems


# =============================================================================
# XML construction
# =============================================================================


def _q(tag: str) -> str:
    return f"{{{INVOICE_NS}}}{tag}"


def _sub(parent, tag: str, attrs: dict | None = None, text: str | None = None):
    """Append a child, dropping attributes whose value is None or empty."""
    clean = {k: str(v) for k, v in (attrs or {}).items() if v is not None and v != ""}
    element = etree.SubElement(parent, _q(tag), clean)
    if text:
        element.text = text
    return element


def _bool(flag: bool) -> str:
    return "true" if flag else "false"


def _datetime(d: date) -> str:
    return f"{d.isoformat()}T00:00:00"


def _timestamp(d: date) -> int:
    return calendar.timegm(d.timetuple())


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def _add_address(parent, address: InvoiceAddress):
    if address.is_company:
        holder = _sub(parent, "company")
        _sub(holder, "companyname", text=address.company_name)
        if address.department:
            _sub(holder, "department", text=address.department)
    else:
        holder = _sub(parent, "person", {"salutation": address.salutation, "title": address.title})
        _sub(holder, "familyname", text=address.family_name or "")
        _sub(holder, "givenname", text=address.given_name or "")

    postal = _sub(holder, "postal")
    if address.street:
        _sub(postal, "street", text=address.street)
    if address.po_box:
        _sub(postal, "pobox", text=address.po_box)
    _sub(postal, "zip", {"statecode": address.state_code, "countrycode": address.country_code}, text=address.zip)
    _sub(postal, "city", text=address.city)
    if address.phone:
        _sub(_sub(holder, "telecom"), "phone", text=address.phone)
    if address.email:
        _sub(_sub(holder, "online"), "email", text=address.email)
    return holder


def _add_vat(balance, data: SumexInvoiceInput):
    by_rate: dict[Decimal, Decimal] = {}
    for service in data.services:
        by_rate[service.vat_rate] = by_rate.get(service.vat_rate, Decimal("0")) + service.total
    vat_total = Decimal("0")
    rates = []
    for rate, amount in sorted(by_rate.items()):
        # Service amounts include VAT.
        vat = round_to_step(amount * rate / (Decimal("100") + rate), CENT)
        vat_total += vat
        rates.append((rate, amount, vat))
    vat = _sub(balance, "vat", {"vat_number": data.vat_number, "vat": _money(vat_total)})
    for rate, amount, rate_vat in rates:
        _sub(vat, "vat_rate", {"vat_rate": fmt_number(rate), "amount": _money(amount), "vat": _money(rate_vat)})


def _add_service(services, record_id: int, service: InvoiceServiceInput):
    attrs = {
        "record_id": record_id,
        "tariff_type": service.tariff_type,
        "code": service.code,
        "ref_code": service.reference_code,
        "session": service.session_number,
        "quantity": fmt_number(service.quantity),
        "date_begin": _datetime(service.date_begin),
        "provider_id": service.provider_gln,
        "responsible_id": service.responsible_gln,
        "body_location": _SIDES[service.side] if service.side is not None else None,
        "unit": fmt_number(service.unit),
        "unit_factor": fmt_number(service.unit_factor),
        "external_factor": fmt_number(service.external_factor),
        "amount": _money(service.total),
        "vat_rate": fmt_number(service.vat_rate),
        "obligation": _bool(service.obligation),
        "name": service.service_name,
    }
    element = _sub(services, "service", attrs)
    if service.remark:
        element.text = service.remark
    return element


def _esr_reference(data: SumexInvoiceInput) -> str:
    if data.esr_reference:
        return normalize_qr_reference(data.esr_reference)
    return generate_swiss_reference(data.invoice_id)


def build_invoice_tree(data: SumexInvoiceInput) -> etree._Element:
    """Assemble the ``request`` element for ``data`` (no validation)."""
    root = etree.Element(
        _q("request"),
        {
            "language": LANGUAGES.get(data.language, "fr"),
            "modus": "test" if data.modus is ModusType.Test else "production",
            "validation_status": "0",
            f"{{{XSI_NS}}}schemaLocation": SCHEMA_LOCATION,
        },
        nsmap=NSMAP,
    )

    processing = _sub(root, "processing", {
        "print_at_intermediate": "false",
        "print_patient_copy": _bool(data.print_copy_to_guarantor is YesNo.Yes),
    })
    receiver = data.transport_to or transport_receiver_gln(data.tiers_mode, data.insurance_gln)
    transport = _sub(processing, "transport", {
        "from": data.transport_from or DEFAULT_SENDER_GLN,
        "to": receiver,
    })
    _sub(transport, "via", {"via": data.transport_via or DEFAULT_INTERMEDIATE_GLN, "sequence_id": 1})

    payload = _sub(root, "payload", {
        "type": "reminder" if data.request_type is RequestType.Reminder else "invoice",
        "copy": _bool(data.request_subtype is RequestSubtype.Copy),
        "storno": _bool(data.request_subtype is RequestSubtype.Storno),
    })
    if data.request_subtype is RequestSubtype.Refund and data.credit_id:
        credit_date = data.credit_date or data.invoice_date
        _sub(payload, "credit", {
            "request_timestamp": _timestamp(credit_date),
            "request_date": _datetime(credit_date),
            "request_id": data.credit_id,
        })
    _sub(payload, "invoice", {
        "request_timestamp": data.invoice_timestamp or _timestamp(data.invoice_date),
        "request_date": _datetime(data.invoice_date),
        "request_id": data.invoice_id,
    })
    if data.request_type is RequestType.Reminder:
        reminder_date = data.reminder_date or data.invoice_date
        _sub(payload, "reminder", {
            "request_timestamp": _timestamp(reminder_date),
            "request_date": _datetime(reminder_date),
            "request_id": data.invoice_id,
            "reminder_level": data.reminder_level or 1,
        })

    body = _sub(payload, "body", {
        "role": data.role_type.name.lower(),
        "place": data.place_type.name.lower(),
    })
    prolog = _sub(body, "prolog")
    _sub(prolog, "package", {"name": data.software_package, "version": data.software_version, "id": data.software_id})
    _sub(prolog, "generator", {"name": "swiss-medical-billing", "version": data.software_version})
    if data.remark:
        _sub(body, "remark", text=data.remark[:350])

    tiers = _sub(body, _TIERS_ELEMENTS[data.tiers_mode], {"payment_period": f"P{data.payment_period}D"})
    biller = _sub(tiers, "biller", {"gln": data.biller_gln, "zsr": data.biller_zsr})
    _add_address(biller, data.biller_address)

    guarantor_address = data.guarantor_address or data.patient_address
    if data.tiers_mode is TiersMode.Payant:
        debitor = _sub(tiers, "debitor", {"gln": data.insurance_gln})
        _add_address(debitor, data.insurance_address or InvoiceAddress(company_name="Insurance"))
    else:
        debitor = _sub(tiers, "debitor", {"gln": UNKNOWN_GLN})
        _add_address(debitor, guarantor_address)

    provider = _sub(tiers, "provider", {"gln": data.provider_gln, "zsr": data.provider_zsr})
    _add_address(provider, data.provider_address)

    if data.insurance_gln:
        insurance = _sub(tiers, "insurance", {"gln": data.insurance_gln})
        _add_address(insurance, data.insurance_address or InvoiceAddress(company_name="Insurance"))

    patient = _sub(tiers, "patient", {
        "gender": "female" if data.patient_sex is SexType.Female else "male",
        "birthdate": _datetime(data.patient_birthdate),
        "ssn": "".join(ch for ch in data.patient_ssn or "" if ch.isdigit()) or None,
    })
    _add_address(patient, data.patient_address)
    if data.insured_id:
        _sub(patient, "card", {"card_id": data.insured_id})

    guarantor = _sub(tiers, "guarantor")
    _add_address(guarantor, guarantor_address)

    amount = data.total_amount
    balance = _sub(tiers, "balance", {
        "currency": "CHF",
        "amount": _money(amount),
        "amount_reminder": _money(data.reminder_amount) if data.reminder_amount else None,
        "amount_prepaid": _money(data.amount_prepaid),
        "amount_due": _money(amount + data.reminder_amount - data.amount_prepaid),
        "amount_obligations": _money(sum((s.total for s in data.services if s.obligation), Decimal("0"))),
    })
    _add_vat(balance, data)

    esr = _sub(body, "esrQR", {
        "type": _ESR_TYPES[data.esr_type],
        "iban": normalize_iban(data.iban),
        "reference_number": _esr_reference(data),
        "customer_note": data.customer_note,
    })
    creditor = _sub(esr, "creditor")
    _add_address(creditor, data.biller_address)

    _sub(body, _LAW_ELEMENTS[data.law_type], {
        "insured_id": data.insured_id,
        "case_id": data.case_id,
        "case_date": _datetime(data.case_date) if data.case_date else None,
    })

    treatment = _sub(body, "treatment", {
        "date_begin": _datetime(data.treatment_date_begin),
        "date_end": _datetime(data.treatment_date_end or data.treatment_date_begin),
        "canton": data.treatment_canton,
        "reason": data.treatment_reason.name.lower(),
        "apid": data.apid,
        "acid": data.acid,
    })
    for diagnosis in data.diagnoses:
        _sub(treatment, "diagnosis", {"type": _DIAGNOSIS_TYPES[diagnosis.type], "code": diagnosis.code})

    services = _sub(body, "services")
    for record_id, service in enumerate(data.services, 1):
        _add_service(services, record_id, service)
    return root


def build_invoice_request(
    data: SumexInvoiceInput | dict,
    pdf_renderer: Callable[[SumexInvoiceInput], bytes] | None = None,
) -> InvoiceBuildResult:
    """Build the invoice XML, and optionally a PDF rendering of it.

    Args:
        data: The invoice input, or a dict validated into one.
        pdf_renderer: Called with the validated input when a PDF is wanted.
    Returns:
        An :class:`InvoiceBuildResult`; ``success`` is False on any failure.
    """
    if not isinstance(data, SumexInvoiceInput):
        try:
            data = SumexInvoiceInput.model_validate(data)
        except ValidationError as e:
            return InvoiceBuildResult(success=False, error=f"Invalid invoice input: {e}")

    problems = validate_invoice_input(data)
    if problems:
        log.warning("Invoice %s rejected: %s", data.invoice_id, "; ".join(problems))
        return InvoiceBuildResult(success=False, error="; ".join(problems))

    try:
        root = build_invoice_tree(data)
        xml_content = etree.tostring(
            root, xml_declaration=True, encoding="UTF-8", pretty_print=True,
        ).decode("utf-8")
    except (ValueError, etree.LxmlError) as e:
        log.error("Invoice %s: XML generation aborted: %s", data.invoice_id, e)
        return InvoiceBuildResult(success=False, abort_info=str(e))

    pdf_content = None
    if pdf_renderer is not None:
        try:
            pdf_content = pdf_renderer(data)
        except Exception as e:
            log.exception("Invoice %s: PDF generation failed", data.invoice_id)
            return InvoiceBuildResult(
                success=False, xml_content=xml_content, error=f"PDF generation failed: {e}",
            )

    log.info(
        "Built invoice %s (%s, %d services, %s CHF)",
        data.invoice_id, data.tiers_mode.name, len(data.services), data.total_amount,
    )
    return InvoiceBuildResult(success=True, xml_content=xml_content, pdf_content=pdf_content)


def invoice_copy(data: SumexInvoiceInput, receiver_gln: str | None = None) -> SumexInvoiceInput:
    """The same invoice flagged as a copy, optionally re-addressed."""
    update = {"request_subtype": RequestSubtype.Copy}
    if receiver_gln:
        update["transport_to"] = receiver_gln
    return data.model_copy(update=update)
