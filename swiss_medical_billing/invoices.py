"""Invoice records as the clinic ledger stores them.

These are the inputs to :mod:`swiss_medical_billing.medidata` (which derives
Sumex services from line items) and :mod:`swiss_medical_billing.tiers_payant_pdf`.
Numeric columns arrive as strings, floats or ``None`` from storage, so the
validators coerce them the same lenient way.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from swiss_medical_billing.models import _to_decimal


def _to_date(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class DiagnosisCode(BaseModel):
    type: str = "ICD"
    code: str = "Z00.0"


class InvoiceLineItem(BaseModel):
    """One row of ``invoice_line_items``.

    Attributes:
        tariff_code: Numeric tariff (5 = ACF, 7 = TARDOC).
        tp_al / tp_tl: Tax points for the medical and technical part.
        tp_al_value / tp_tl_value: Point values applied to them.
        catalog_name: Catalog the code was picked from ("ACF", "TARDOC", ...).
    """
    code: str | None = None
    name: str | None = None
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    total_price: Decimal = Decimal("0")
    tariff_code: int | None = None
    tardoc_code: str | None = None
    tp_al: Decimal = Decimal("0")
    tp_tl: Decimal = Decimal("0")
    tp_al_value: Decimal = Decimal("0")
    tp_tl_value: Decimal = Decimal("0")
    external_factor_mt: Decimal | None = None
    external_factor_tt: Decimal | None = None
    date_begin: date | None = None
    provider_gln: str | None = None
    responsible_gln: str | None = None
    ref_code: str | None = None
    session_number: int | None = None
    service_attributes: int | None = None
    side_type: int | None = None
    catalog_name: str | None = None

    @field_validator(
        "quantity", "unit_price", "total_price", "tp_al", "tp_tl", "tp_al_value", "tp_tl_value",
        mode="before",
    )
    @classmethod
    def coerce_amount(cls, v):
        if v is None or v == "":
            return Decimal("0")
        return _to_decimal(v)

    @field_validator("external_factor_mt", "external_factor_tt", mode="before")
    @classmethod
    def coerce_factor(cls, v):
        if v is None or v == "":
            return None
        return _to_decimal(v)

    @field_validator("date_begin", mode="before")
    @classmethod
    def coerce_date(cls, v):
        return _to_date(v)

    @property
    def is_tardoc(self) -> bool:
        return self.tariff_code == 7 or bool(self.tardoc_code)


class BillingInvoice(BaseModel):
    """The invoice header columns the billing core reads."""
    invoice_number: str
    invoice_date: date
    treatment_date: date | None = None
    treatment_date_end: date | None = None
    total_amount: Decimal = Decimal("0")
    provider_gln: str | None = None
    provider_zsr: str | None = None
    provider_iban: str | None = None
    doctor_name: str | None = None
    insurance_gln: str | None = None
    insurance_name: str | None = None
    patient_ssn: str | None = None
    patient_card_number: str | None = None
    treatment_canton: str | None = None
    health_insurance_law: str | None = None
    billing_type: str | None = None
    treatment_reason: str | None = None
    medical_case_number: str | None = None
    accident_date: date | None = None
    reminder_level: int = 0
    copy_to_guarantor: bool = False
    diagnosis_codes: list[DiagnosisCode] = Field(default_factory=list)
    line_items: list[InvoiceLineItem] = Field(default_factory=list)

    @field_validator("total_amount", mode="before")
    @classmethod
    def coerce_total(cls, v):
        if v is None or v == "":
            return Decimal("0")
        return _to_decimal(v)

    @field_validator("invoice_date", "treatment_date", "treatment_date_end", "accident_date", mode="before")
    @classmethod
    def coerce_dates(cls, v):
        return _to_date(v)


class PatientRecord(BaseModel):
    first_name: str = ""
    last_name: str = ""
    dob: date | None = None
    street_address: str | None = None
    postal_code: str | None = None
    town: str | None = None
    gender: str | None = None
    avs_number: str | None = None
    email: str | None = None
    phone: str | None = None

    @field_validator("dob", mode="before")
    @classmethod
    def coerce_dob(cls, v):
        return _to_date(v)

    @property
    def is_female(self) -> bool:
        return self.gender == "female"

    @property
    def locality(self) -> str:
        return " ".join(p for p in (self.postal_code, self.town) if p)


class ProviderRecord(BaseModel):
    """Treating doctor or clinic as printed on the invoice."""
    name: str = ""
    gln: str | None = None
    zsr: str | None = None
    street: str | None = None
    street_no: str | None = None
    zip_code: str | None = None
    city: str | None = None
    canton: str | None = None
    phone: str | None = None
    iban: str | None = None
    salutation: str | None = None
    title: str | None = None

    @property
    def address(self) -> str:
        return " ".join(p for p in (self.street, self.street_no) if p)

    @property
    def locality(self) -> str:
        return " ".join(p for p in (self.zip_code, self.city) if p)


class InsurerRecord(BaseModel):
    name: str = ""
    gln: str | None = None
    street: str | None = None
    zip_code: str | None = None
    city: str | None = None
    pobox: str | None = None

    @property
    def locality(self) -> str:
        return " ".join(p for p in (self.zip_code, self.city) if p)
