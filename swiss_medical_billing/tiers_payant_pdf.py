"""Tiers-Payant invoice copy ("Facture Tiers Payant") as PDF.

Page 1 carries the document identification, the parties, the diagnosis,
the service table, the VAT summary and the total rounded to 5 Rappen.
The last page carries three QR codes: the Swiss QR-bill payment payload,
an invoice reference and a treatment reference.

Layout positions are in millimetres measured from the top-left corner, as
on the printed form; :class:`_Page` converts them to reportlab's
bottom-left coordinates.
"""

import io
import json
import logging
from datetime import date
from decimal import Decimal

import segno
from pydantic import BaseModel, Field
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

from swiss_medical_billing.invoices import (
    BillingInvoice,
    DiagnosisCode,
    InsurerRecord,
    InvoiceLineItem,
    PatientRecord,
    ProviderRecord,
)
from swiss_medical_billing.money import fmt_number, swiss_round
from swiss_medical_billing.qrbill import AddressType, ReferenceType, SwissQrBillData, encode_swiss_qr_bill
from swiss_medical_billing.reference import generate_swiss_reference
from swiss_medical_billing.sumex import TARDOC_TARIFF_TYPE, DiagnosisType, SexType, SumexInvoiceInput, TiersMode

log = logging.getLogger(__name__)

PAGE_WIDTH_MM = 210
PAGE_HEIGHT_MM = 297
MARGIN_MM = 8
CONTENT_WIDTH_MM = PAGE_WIDTH_MM - 2 * MARGIN_MM
PAGE_BREAK_Y = 250
VAT_BREAK_Y = 240
QR_SIZE_MM = 45

DESCRIPTION_LIMIT = 120
VALUE_LIMIT = 50
RIGHT_VALUE_LIMIT = 40
PATIENT_LINE_LIMIT = 140

DEFAULT_CANTON = "GE"
DEFAULT_IBAN = "CH0930788000050249289"
DEFAULT_CREDITOR_NAME = "Aesthetics Clinic XT SA"

TITLE = "Copie: Facture Tiers Payant"
QR_TITLE = "Feuille de code QR Tiers Payant"
RELEASE = "Release 5.0/General®"
SEND_TO = "Envoyer à l'assurance"

LAW_LABELS = {"KVG": "LAMal", "UVG": "LAA", "IVG": "LAI", "MVG": "LAM"}
REASON_LABELS = {"disease": "Maladie", "accident": "Accident", "maternity": "Maternité"}

_FONT = "Helvetica"
_BOLD = "Helvetica-Bold"


def truncate(text: str | None, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending with "…" when shortened."""
    text = text or ""
    return text if len(text) <= limit else text[: limit - 1] + "…"


def fmt_date(value: date | None) -> str:
    return value.strftime("%d.%m.%y") if value else ""


def fmt_date_long(value: date | None) -> str:
    return value.strftime("%d.%m.%Y") if value else ""


def num(value: Decimal | int | None, decimals: int = 2) -> str:
    return f"{Decimal(value or 0):.{decimals}f}"


def law_label(law: str) -> str:
    return LAW_LABELS.get(law, law)


def reason_label(reason: str) -> str:
    return REASON_LABELS.get(reason, "Prévention")


class TiersPayantDocument(BaseModel):
    """Everything the renderer prints, with the ledger's fallbacks applied."""
    invoice: BillingInvoice
    line_items: list[InvoiceLineItem] = Field(default_factory=list)
    patient: PatientRecord
    provider: ProviderRecord
    insurer: InsurerRecord | None = None

    @property
    def provider_gln(self) -> str:
        return self.provider.gln or self.invoice.provider_gln or ""

    @property
    def provider_zsr(self) -> str:
        return self.provider.zsr or self.invoice.provider_zsr or ""

    @property
    def insurer_gln(self) -> str:
        return (self.insurer.gln if self.insurer else None) or self.invoice.insurance_gln or ""

    @property
    def insurer_name(self) -> str:
        return (self.insurer.name if self.insurer else None) or self.invoice.insurance_name or ""

    @property
    def patient_ssn(self) -> str:
        return self.patient.avs_number or self.invoice.patient_ssn or ""

    @property
    def canton(self) -> str:
        return self.invoice.treatment_canton or self.provider.canton or DEFAULT_CANTON

    @property
    def law(self) -> str:
        return self.invoice.health_insurance_law or "KVG"

    @property
    def billing_type(self) -> str:
        return self.invoice.billing_type or "TP"

    @property
    def treatment_reason(self) -> str:
        return self.invoice.treatment_reason or "disease"

    @property
    def consultation_period(self) -> str:
        begin = fmt_date_long(self.invoice.treatment_date)
        end = fmt_date_long(self.invoice.treatment_date_end or self.invoice.treatment_date)
        return begin if begin == end else f"{begin} - {end}"

    @property
    def total_amount(self) -> Decimal:
        return self.invoice.total_amount

    @property
    def amount_due(self) -> Decimal:
        return swiss_round(self.total_amount)

    @property
    def diagnosis_codes(self) -> list[DiagnosisCode]:
        return self.invoice.diagnosis_codes

    @property
    def tardoc_lines(self) -> list[InvoiceLineItem]:
        return [item for item in self.line_items if item.is_tardoc]

    @property
    def regular_lines(self) -> list[InvoiceLineItem]:
        return [item for item in self.line_items if not item.is_tardoc]

    @classmethod
    def from_sumex_input(cls, data: SumexInvoiceInput) -> "TiersPayantDocument":
        law = data.law_type.name
        reason = data.treatment_reason.name.lower()
        billing = {TiersMode.Garant: "TG", TiersMode.Payant: "TP", TiersMode.Soldant: "TS"}[data.tiers_mode]
        invoice = BillingInvoice(
            invoice_number=data.invoice_id,
            invoice_date=data.invoice_date,
            treatment_date=data.treatment_date_begin,
            treatment_date_end=data.treatment_date_end,
            total_amount=data.total_amount,
            provider_gln=data.provider_gln,
            provider_zsr=data.provider_zsr,
            provider_iban=data.iban,
            insurance_gln=data.insurance_gln,
            insurance_name=data.insurance_address.display_name if data.insurance_address else None,
            patient_ssn=data.patient_ssn,
            treatment_canton=data.treatment_canton,
            health_insurance_law=law,
            billing_type=billing,
            treatment_reason=reason,
            diagnosis_codes=[
                DiagnosisCode(type="ICD" if d.type is DiagnosisType.ICD else d.type.name, code=d.code)
                for d in data.diagnoses
            ],
        )
        line_items = [
            InvoiceLineItem(
                code=s.code,
                name=s.service_name,
                quantity=s.quantity,
                unit_price=s.unit * s.unit_factor,
                total_price=s.total,
                tariff_code=7 if s.tariff_type == TARDOC_TARIFF_TYPE else None,
                tp_al=s.unit if s.tariff_type == TARDOC_TARIFF_TYPE else Decimal("0"),
                tp_al_value=s.unit_factor if s.tariff_type == TARDOC_TARIFF_TYPE else Decimal("0"),
                external_factor_mt=s.external_factor,
                date_begin=s.date_begin,
                ref_code=s.reference_code,
                session_number=s.session_number,
            )
            for s in data.services
        ]
        pa = data.patient_address
        patient = PatientRecord(
            first_name=pa.given_name or "",
            last_name=pa.family_name or pa.company_name or "",
            dob=data.patient_birthdate,
            street_address=pa.street,
            postal_code=pa.zip,
            town=pa.city,
            gender="female" if data.patient_sex is SexType.Female else "male",
            avs_number=data.patient_ssn,
        )
        ba = data.biller_address
        provider = ProviderRecord(
            name=ba.display_name,
            gln=data.provider_gln,
            zsr=data.provider_zsr,
            street=ba.street,
            zip_code=ba.zip,
            city=ba.city,
            canton=data.treatment_canton,
            phone=ba.phone,
            iban=data.iban,
        )
        insurer = None
        if data.insurance_address:
            ia = data.insurance_address
            insurer = InsurerRecord(
                name=ia.display_name,
                gln=data.insurance_gln,
                street=ia.street,
                zip_code=ia.zip,
                city=ia.city,
                pobox=ia.po_box,
            )
        return cls(invoice=invoice, line_items=line_items, patient=patient, provider=provider, insurer=insurer)


# =============================================================================
# QR payloads
# =============================================================================


def payment_qr_payload(doc: TiersPayantDocument) -> str:
    """Swiss QR-bill payload for the rounded amount due."""
    provider, patient = doc.provider, doc.patient
    data = SwissQrBillData(
        iban=provider.iban or DEFAULT_IBAN,
        creditor_address_type=AddressType.COMBINED,
        creditor_name=provider.name or DEFAULT_CREDITOR_NAME,
        creditor_address_line1=provider.address,
        creditor_address_line2=provider.locality,
        creditor_country="CH",
        amount=doc.amount_due,
        currency="CHF",
        debtor_address_type=AddressType.COMBINED,
        debtor_name=f"{patient.first_name} {patient.last_name}".strip() or None,
        debtor_address_line1=patient.street_address or "",
        debtor_address_line2=patient.locality,
        debtor_country="CH",
        reference_type=ReferenceType.QRR,
        reference=generate_swiss_reference(doc.invoice.invoice_number),
        unstructured_message=f"Invoice {doc.invoice.invoice_number}",
    )
    return encode_swiss_qr_bill(data)


def invoice_ref_qr_payload(doc: TiersPayantDocument) -> str:
    return json.dumps({
        "type": "invoice_ref",
        "id": doc.invoice.invoice_number,
        "date": doc.invoice.invoice_date.isoformat(),
        "amount": fmt_number(doc.total_amount),
        "currency": "CHF",
        "biller_gln": doc.provider_gln,
        "insurance_gln": doc.insurer_gln,
    }, ensure_ascii=False)


def treatment_ref_qr_payload(doc: TiersPayantDocument) -> str:
    invoice = doc.invoice
    return json.dumps({
        "type": "treatment_ref",
        "patient_ssn": doc.patient_ssn,
        "canton": doc.canton,
        "law": doc.law,
        "reason": doc.treatment_reason,
        "diagnosis": [d.model_dump() for d in doc.diagnosis_codes],
        "date_begin": invoice.treatment_date.isoformat() if invoice.treatment_date else None,
        "date_end": invoice.treatment_date_end.isoformat() if invoice.treatment_date_end else None,
    }, ensure_ascii=False)


# =============================================================================
# Drawing
# =============================================================================


class _Page:
    """Canvas wrapper that takes top-left millimetre coordinates."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.y = 10.0

    def font(self, size: float, bold: bool = False):
        self.c.setFont(_BOLD if bold else _FONT, size)

    def text(self, x: float, text: str, y: float | None = None, align: str = "left"):
        py = (PAGE_HEIGHT_MM - (self.y if y is None else y)) * mm
        if align == "right":
            self.c.drawRightString(x * mm, py, text)
        elif align == "center":
            self.c.drawCentredString(x * mm, py, text)
        else:
            self.c.drawString(x * mm, py, text)

    def rule(self):
        self.c.setLineWidth(0.3 * mm)
        y = (PAGE_HEIGHT_MM - self.y) * mm
        self.c.line(MARGIN_MM * mm, y, (PAGE_WIDTH_MM - MARGIN_MM) * mm, y)

    def shade(self, x: float, y: float, width: float, height: float):
        self.c.setFillGray(0.94)
        self.c.rect(x * mm, (PAGE_HEIGHT_MM - y - height) * mm, width * mm, height * mm, stroke=0, fill=1)
        self.c.setFillGray(0)

    def qr(self, payload: str, x: float, y: float, size: float):
        """Draw ``payload`` as a QR symbol, one filled square per dark module."""
        symbol = segno.make(payload, error="m", micro=False)
        matrix = symbol.matrix
        border = 1
        count = len(matrix) + 2 * border
        module = size / count
        top = PAGE_HEIGHT_MM - y
        self.c.setFillGray(0)
        for r, row in enumerate(matrix):
            for col, dark in enumerate(row):
                if dark:
                    self.c.rect(
                        (x + (col + border) * module) * mm,
                        (top - (r + border + 1) * module) * mm,
                        module * mm,
                        module * mm,
                        stroke=0,
                        fill=1,
                    )

    def new_page(self, y: float = 15.0):
        self.c.showPage()
        self.y = y


_LABEL_X = MARGIN_MM
_VALUE_X = MARGIN_MM + 38
_RIGHT_LABEL_X = PAGE_WIDTH_MM / 2 + 5
_RIGHT_VALUE_X = PAGE_WIDTH_MM / 2 + 38
_LINE = 3.5

_COLUMNS = {
    "Date": MARGIN_MM,
    "Tarif": MARGIN_MM + 16,
    "Code tarif": MARGIN_MM + 24,
    "Code de réf.": MARGIN_MM + 45,
    "Gr": MARGIN_MM + 65,
    "Cs": MARGIN_MM + 70,
    "Qté": MARGIN_MM + 77,
    "Pt PM/Prix": MARGIN_MM + 90,
    "f PM": MARGIN_MM + 103,
    "Pt PT": MARGIN_MM + 113,
    "f PT": MARGIN_MM + 126,
    "E R T": MARGIN_MM + 136,
}
_AMOUNT_X = PAGE_WIDTH_MM - MARGIN_MM


def _header(p: _Page, title: str, send_size: float):
    p.font(11, bold=True)
    p.text(MARGIN_MM, title)
    p.font(7)
    p.text(PAGE_WIDTH_MM - MARGIN_MM - 35, RELEASE)
    p.y += 4
    p.font(send_size)
    p.text(PAGE_WIDTH_MM - MARGIN_MM - 30, SEND_TO)
    p.y += 6
    p.rule()
    p.y += 4


def _row(p: _Page, label: str, value: str, right_label: str = "", right_value: str = ""):
    p.font(7, bold=True)
    p.text(_LABEL_X, label)
    p.font(7)
    p.text(_VALUE_X, truncate(value, VALUE_LIMIT))
    if right_label or right_value:
        p.font(7, bold=True)
        p.text(_RIGHT_LABEL_X, right_label)
        p.font(7)
        p.text(_RIGHT_VALUE_X, truncate(right_value, RIGHT_VALUE_LIMIT))
    p.y += _LINE


def _parties(p: _Page, doc: TiersPayantDocument):
    invoice, patient, provider, insurer = doc.invoice, doc.patient, doc.provider, doc.insurer
    invoice_date = fmt_date_long(invoice.invoice_date)

    _row(p, "Document", "Identification", "", "Page : 1")
    _row(p, "Auteur de la", "No GLN (B)")
    p.text(_VALUE_X + 20, doc.provider_gln, y=p.y - _LINE)
    p.text(_VALUE_X + 55, provider.name, y=p.y - _LINE)
    _row(p, "facture", "No RCC (B)")
    p.text(_VALUE_X + 20, doc.provider_zsr, y=p.y - _LINE)
    p.text(_VALUE_X + 55, provider.address, y=p.y - _LINE)
    p.y += 1

    patient_rows = [
        ("Patient", "Nom", "No GLN", doc.insurer_gln, patient.last_name, 12),
        ("", "Prénom", "", doc.insurer_name, patient.first_name, 12),
        ("", "Rue", "", insurer.street if insurer else "", patient.street_address, 12),
        ("", "NPA", "", insurer.pobox if insurer else "", patient.postal_code, 12),
        ("", "Localité", "", insurer.locality if insurer else "", patient.town, 12),
        ("", "Date de naissance", "", "", fmt_date_long(patient.dob), 25),
        ("", "Sexe", "", "", _gender_label(patient), 12),
    ]
    for label, field, right_label, right_value, value, offset in patient_rows:
        _row(p, label, field, right_label, right_value or "")
        p.font(7)
        p.text(_VALUE_X + offset, value or "", y=p.y - _LINE)

    _row(p, "No AVS", doc.patient_ssn)
    _row(p, "Canton", doc.canton)
    _row(p, "Copie", "oui")
    _row(p, "Type de", "TP" if doc.billing_type == "TP" else "TG", "Date/No GaPrCh", "")
    _row(p, "remboursement", "")
    _row(p, "Loi", law_label(doc.law), "Date / No de facture", f"{invoice_date} / {invoice.invoice_number}")
    _row(p, "Consultation", doc.consultation_period, "Date / No de rappel", "")
    _row(p, "Motif consultation", reason_label(doc.treatment_reason))
    _row(p, "Rôle / Lieu", "Docteur/Doctoresse · Cabinet")
    p.y += 2
    p.rule()
    p.y += 4

    p.font(7, bold=True)
    p.text(_LABEL_X, "Fournisseur de")
    p.font(7)
    p.text(_VALUE_X, "No GLN (P)")
    p.text(_VALUE_X + 22, doc.provider_gln)
    p.text(_VALUE_X + 55, provider.name)
    if provider.phone:
        p.text(_AMOUNT_X, f"Tél.: {provider.phone}", align="right")
    p.y += _LINE
    p.font(7, bold=True)
    p.text(_LABEL_X, "prestations")
    p.font(7)
    p.text(_VALUE_X, "No GLN (L)")
    p.text(_VALUE_X + 22, doc.provider_gln)
    p.y += _LINE
    p.text(_VALUE_X, "No RCC (P)")
    p.text(_VALUE_X + 22, doc.provider_zsr)
    p.text(_VALUE_X + 55, f"{provider.address} · {provider.locality}")
    p.y += 5
    p.rule()
    p.y += 4


def _gender_label(patient: PatientRecord) -> str:
    match patient.gender:
        case "female":
            return "Femme / F"
        case "male":
            return "Homme / M"
        case _:
            return ""


def diagnosis_summary(codes: list[DiagnosisCode]) -> tuple[str, str]:
    """Return the ``Test/<types>`` label and the comma-joined codes."""
    types = list(dict.fromkeys(d.type for d in codes))
    label = "Test/" + ("/".join(types) if types else "ICD")
    return label, ", ".join(d.code for d in codes) or "-"


def _diagnosis(p: _Page, doc: TiersPayantDocument):
    label, codes = diagnosis_summary(doc.diagnosis_codes)
    p.font(7, bold=True)
    p.text(_LABEL_X, "Diagnostic")
    p.font(7)
    p.text(_VALUE_X, label)
    p.text(_VALUE_X + 22, codes)
    p.y += 5
    p.rule()
    p.y += 4
    p.font(7, bold=True)
    p.text(_LABEL_X, "Commentaire")
    p.y += 4

    provider = doc.provider
    p.text(_LABEL_X, "Paramètres")
    p.font(7)
    p.text(_VALUE_X, "No GLN / RCC / Section")
    p.text(_VALUE_X + 55, "Adresse")
    p.y += _LINE
    p.text(_LABEL_X, "1 - Fournisseur de prestations")
    p.text(_VALUE_X + 12, f"{doc.provider_gln}/{doc.provider_zsr}")
    p.text(_VALUE_X + 55, f"{provider.name} {provider.address} · {provider.locality}")
    p.y += 5


def _table_header(p: _Page):
    p.shade(MARGIN_MM, p.y - 1, CONTENT_WIDTH_MM, 4)
    p.font(6, bold=True)
    for title, x in _COLUMNS.items():
        p.text(x, title, y=p.y + 2)
    p.text(_AMOUNT_X, "Montant", y=p.y + 2, align="right")
    p.y += 5


def service_row(doc: TiersPayantDocument, item: InvoiceLineItem) -> dict[str, str]:
    """Column texts for one line item, keyed by column title."""
    row_date = fmt_date(item.date_begin or doc.invoice.treatment_date)
    if item.is_tardoc:
        ert = " ".join([
            fmt_number(item.external_factor_mt if item.external_factor_mt is not None else 1),
            fmt_number(item.external_factor_tt if item.external_factor_tt is not None else 1),
            str(item.service_attributes or 0),
        ])
        return {
            "Date": row_date,
            "Tarif": str(item.tariff_code or 7).zfill(3),
            "Code tarif": item.tardoc_code or item.code or "",
            "Code de réf.": item.ref_code or "",
            "Gr": "",
            "Cs": str(item.session_number or 1),
            "Qté": num(item.quantity),
            "Pt PM/Prix": num(item.tp_al),
            "f PM": num(item.tp_al_value),
            "Pt PT": num(item.tp_tl),
            "f PT": num(item.tp_tl_value),
            "E R T": ert,
            "Montant": num(item.total_price),
        }
    return {
        "Date": row_date,
        "Tarif": "000",
        "Code tarif": item.code or "",
        "Code de réf.": "",
        "Gr": "",
        "Cs": "1",
        "Qté": num(item.quantity),
        "Pt PM/Prix": num(item.unit_price),
        "f PM": "",
        "Pt PT": "",
        "f PT": "",
        "E R T": "",
        "Montant": num(item.total_price),
    }


def _services(p: _Page, doc: TiersPayantDocument):
    _table_header(p)
    p.font(6)
    for item in doc.tardoc_lines + doc.regular_lines:
        row = service_row(doc, item)
        for title, x in _COLUMNS.items():
            if row[title]:
                p.text(x, row[title])
        p.text(_AMOUNT_X, row["Montant"], align="right")
        p.y += 3
        p.font(5.5)
        p.text(_COLUMNS["Code tarif"], truncate(item.name, DESCRIPTION_LIMIT))
        p.font(6)
        p.y += _LINE
        if p.y > PAGE_BREAK_Y:
            p.new_page()
            _table_header(p)
            p.font(6)


def _totals(p: _Page, doc: TiersPayantDocument):
    total = num(doc.total_amount)
    p.y += 2
    p.font(7, bold=True)
    p.text(_COLUMNS["E R T"] - 10, "Sous-total")
    p.text(_AMOUNT_X, total, align="right")
    p.y += 8
    if p.y > VAT_BREAK_Y:
        p.new_page()

    p.font(7, bold=True)
    p.text(MARGIN_MM + 20, "Code")
    p.text(MARGIN_MM + 32, "Taux")
    p.text(MARGIN_MM + 48, "Montant")
    p.text(MARGIN_MM + 68, "TVA")
    p.text(MARGIN_MM + 95, "No TVA :")
    p.text(_AMOUNT_X - 30, "Montant total :")
    p.text(_AMOUNT_X, total, align="right")
    p.y += 4
    p.font(7)
    p.text(MARGIN_MM + 22, "0")
    p.text(MARGIN_MM + 32, "0.00")
    p.text(MARGIN_MM + 48, total)
    p.text(MARGIN_MM + 68, "0.00")
    p.text(MARGIN_MM + 95, "Devise : CHF")
    p.y += 5
    p.font(7, bold=True)
    p.text(_AMOUNT_X - 30, "Montant de la")
    p.y += _LINE
    p.text(_AMOUNT_X - 30, "facture :")
    p.text(_AMOUNT_X, num(doc.amount_due), align="right")


def patient_line(patient: PatientRecord) -> str:
    female = patient.is_female
    parts = [
        f"{'Madame' if female else 'Monsieur'} {patient.last_name} {patient.first_name}",
        patient.street_address,
        patient.locality,
        f"Date de naissance: {fmt_date_long(patient.dob)}" if patient.dob else None,
        f"Sexe: {'Femme' if female else 'Homme'} / {'F' if female else 'M'}",
    ]
    return " · ".join(part for part in parts if part)


def _qr_page(p: _Page, doc: TiersPayantDocument):
    p.new_page(y=10)
    _header(p, QR_TITLE, 7)
    p.font(7, bold=True)
    p.text(MARGIN_MM, "Document:")
    p.font(7)
    p.text(MARGIN_MM + 22, f"{doc.invoice.invoice_number} / {fmt_date_long(doc.invoice.invoice_date)}")
    p.y += 4
    p.font(7, bold=True)
    p.text(MARGIN_MM, "Patient:")
    p.font(7)
    p.text(MARGIN_MM + 22, truncate(patient_line(doc.patient), PATIENT_LINE_LIMIT))
    p.y += 10

    payloads = [payment_qr_payload(doc), invoice_ref_qr_payload(doc), treatment_ref_qr_payload(doc)]
    spacing = (CONTENT_WIDTH_MM - 3 * QR_SIZE_MM) / 4
    p.font(8, bold=True)
    for idx, payload in enumerate(payloads):
        x = MARGIN_MM + (idx + 1) * spacing + idx * QR_SIZE_MM
        p.qr(payload, x, p.y, QR_SIZE_MM)
        p.text(x + QR_SIZE_MM / 2, f"QR-Code {idx + 1}", y=p.y + QR_SIZE_MM + 4, align="center")


def render_tiers_payant_pdf(
    invoice: BillingInvoice | TiersPayantDocument,
    line_items: list[InvoiceLineItem] | None = None,
    patient: PatientRecord | None = None,
    provider: ProviderRecord | None = None,
    insurer: InsurerRecord | None = None,
) -> bytes:
    """Render the Tiers-Payant copy and return the PDF bytes.

    Either pass a ready :class:`TiersPayantDocument`, or the invoice with its
    line items and parties. Layout and QR errors propagate.
    """
    if isinstance(invoice, TiersPayantDocument):
        doc = invoice
    else:
        doc = TiersPayantDocument(
            invoice=invoice,
            line_items=line_items or invoice.line_items,
            patient=patient or PatientRecord(),
            provider=provider or ProviderRecord(),
            insurer=insurer,
        )

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    c.setTitle(f"{TITLE} {doc.invoice.invoice_number}")
    p = _Page(c)
    _header(p, TITLE, 6)
    _parties(p, doc)
    _diagnosis(p, doc)
    _services(p, doc)
    _totals(p, doc)
    _qr_page(p, doc)
    c.showPage()
    c.save()
    log.debug("Rendered Tiers-Payant PDF for %s", doc.invoice.invoice_number)
    return buffer.getvalue()


def render_sumex_input_pdf(data: SumexInvoiceInput) -> bytes:
    """PDF renderer for :func:`swiss_medical_billing.sumex.build_invoice_request`."""
    return render_tiers_payant_pdf(TiersPayantDocument.from_sumex_input(data))
