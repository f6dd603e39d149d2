"""Data models for camt.054 parsing, payment matching and the audit trail."""

from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


def _to_decimal(v):
    # Floats go through str() so 0.1 stays 0.1.
    if isinstance(v, (int, float, str)) and not isinstance(v, bool):
        try:
            return Decimal(str(v).strip() or "0")
        except InvalidOperation as e:
            raise ValueError(f"Invalid amount: {v!r}") from e
    return v


class CreditDebit(str, Enum):
    """Booking direction of a statement entry (``CdtDbtInd``)."""
    CRDT = "CRDT"
    DBIT = "DBIT"


class MatchStatus(str, Enum):
    """Outcome of matching one bank credit against the ledger."""
    MATCHED = "matched"
    UNMATCHED = "unmatched"
    OVERPAID = "overpaid"
    UNDERPAID = "underpaid"
    ALREADY_PAID = "already_paid"
    DUPLICATE = "duplicate"
    ERROR = "error"


# Statuses that changed a ledger balance.
PAYMENT_APPLIED_STATUSES = frozenset({
    MatchStatus.MATCHED, MatchStatus.OVERPAID, MatchStatus.UNDERPAID,
})


class InvoiceStatus(str, Enum):
    OPEN = "OPEN"
    PARTIAL_PAID = "PARTIAL_PAID"
    PAID = "PAID"
    OVERPAID = "OVERPAID"
    CANCELLED = "CANCELLED"
    PARTIAL_LOSS = "PARTIAL_LOSS"


class InstallmentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class ImportStatus(str, Enum):
    """``partial`` when any transaction stayed unmatched."""
    PARTIAL = "partial"
    COMPLETED = "completed"
    FAILED = "failed"


# =============================================================================
# Bank statement
# =============================================================================


class ParsedTransaction(BaseModel):
    """One ``Ntry`` of a camt.054 notification.

    ``amount`` is signed: debits (``DBIT``) are negative.
    """
    model_config = {"frozen": True}

    booking_date: date | None = None
    amount: Decimal = Decimal("0")
    currency: str = "CHF"
    credit_debit: CreditDebit = CreditDebit.CRDT
    reference_number: str | None = None
    debtor_name: str | None = None
    ultimate_debtor_name: str | None = None
    debtor_iban: str | None = None
    description: str | None = None
    bank_reference: str | None = None
    end_to_end_id: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def validate_amount(cls, v):
        """Ensure amount is a valid decimal."""
        return _to_decimal(v)

    @property
    def is_credit(self) -> bool:
        return self.credit_debit is CreditDebit.CRDT


class Camt054Statement(BaseModel):
    """Header data and entries of one camt.054 document."""
    transactions: list[ParsedTransaction] = Field(default_factory=list)
    message_id: str | None = None
    iban: str | None = None
    bank_name: str | None = None
    date_from: str | None = None
    date_to: str | None = None


# =============================================================================
# Ledger records
# =============================================================================


class InvoiceRecord(BaseModel):
    """An invoice as stored in the ledger.

    ``version`` increases with every write and guards conditional updates.
    """
    model_config = {"frozen": True}

    id: str
    invoice_number: str
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    status: InvoiceStatus = InvoiceStatus.OPEN
    reference_number: str | None = None
    paid_at: datetime | None = None
    version: int = 0

    @field_validator("total_amount", "paid_amount", mode="before")
    @classmethod
    def validate_amounts(cls, v):
        return Decimal("0") if v is None else _to_decimal(v)


class InstallmentRecord(BaseModel):
    """One installment of a payment plan for an invoice."""
    model_config = {"frozen": True}

    id: str
    invoice_id: str
    installment_number: int
    invoice_number: str | None = None
    amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    status: InstallmentStatus = InstallmentStatus.PENDING
    reference_number: str | None = None
    paid_at: datetime | None = None
    version: int = 0

    @field_validator("amount", "paid_amount", mode="before")
    @classmethod
    def validate_amounts(cls, v):
        return Decimal("0") if v is None else _to_decimal(v)

    @property
    def display_number(self) -> str:
        return self.invoice_number or f"Installment #{self.installment_number}"


# =============================================================================
# Matching results and audit trail
# =============================================================================


class MatchResult(BaseModel):
    """Classification of one credit and the ledger change it caused."""
    model_config = {"frozen": True}

    transaction: ParsedTransaction
    match_status: MatchStatus
    match_notes: str
    matched_invoice_id: str | None = None
    matched_installment_id: str | None = None
    matched_invoice_number: str | None = None
    parent_invoice_id: str | None = None
    previous_paid_amount: Decimal | None = None
    new_paid_amount: Decimal | None = None

    @property
    def counts_as_unmatched(self) -> bool:
        return self.match_status in (
            MatchStatus.UNMATCHED, MatchStatus.DUPLICATE, MatchStatus.ERROR,
        )


class PaymentImport(BaseModel):
    """Header row of one camt.054 import batch."""
    file_name: str
    file_url: str | None = None
    imported_by_user_id: str | None = None
    imported_by_name: str | None = None
    total_transactions: int = 0
    matched_count: int = 0
    unmatched_count: int = 0
    already_paid_count: int = 0
    overpaid_count: int = 0
    underpaid_count: int = 0
    total_amount: Decimal = Decimal("0")
    matched_amount: Decimal = Decimal("0")
    message_id: str | None = None
    iban: str | None = None
    bank_name: str | None = None
    statement_date_from: str | None = None
    statement_date_to: str | None = None
    status: ImportStatus = ImportStatus.COMPLETED


class PaymentImportItem(BaseModel):
    """Audit row for one processed transaction. ``amount`` is unsigned."""
    import_id: str
    booking_date: date | None = None
    amount: Decimal
    currency: str
    credit_debit: CreditDebit
    reference_number: str | None = None
    debtor_name: str | None = None
    debtor_iban: str | None = None
    ultimate_debtor_name: str | None = None
    description: str | None = None
    bank_reference: str | None = None
    end_to_end_id: str | None = None
    match_status: MatchStatus
    match_notes: str
    matched_invoice_id: str | None = None
    matched_installment_id: str | None = None
    matched_invoice_number: str | None = None
    parent_invoice_id: str | None = None
    previous_paid_amount: Decimal | None = None
    new_paid_amount: Decimal | None = None

    @classmethod
    def from_match(cls, import_id: str, result: MatchResult) -> "PaymentImportItem":
        txn = result.transaction
        return cls(
            import_id=import_id,
            booking_date=txn.booking_date,
            amount=abs(txn.amount),
            currency=txn.currency,
            credit_debit=txn.credit_debit,
            reference_number=txn.reference_number,
            debtor_name=txn.debtor_name,
            debtor_iban=txn.debtor_iban,
            ultimate_debtor_name=txn.ultimate_debtor_name,
            description=txn.description,
            bank_reference=txn.bank_reference,
            end_to_end_id=txn.end_to_end_id,
            match_status=result.match_status,
            match_notes=result.match_notes,
            matched_invoice_id=result.matched_invoice_id,
            matched_installment_id=result.matched_installment_id,
            matched_invoice_number=result.matched_invoice_number,
            parent_invoice_id=result.parent_invoice_id,
            previous_paid_amount=result.previous_paid_amount,
            new_paid_amount=result.new_paid_amount,
        )


class _CamelModel(BaseModel):
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class ImportSummary(_CamelModel):
    """Counters reported back to the uploader."""
    total_transactions: int = 0
    matched: int = 0
    unmatched: int = 0
    already_paid: int = 0
    overpaid: int = 0
    underpaid: int = 0
    total_amount: Decimal = Decimal("0")
    matched_amount: Decimal = Decimal("0")
    message_id: str | None = None
    iban: str | None = None
    bank_name: str | None = None


class ImportResultRow(_CamelModel):
    """Per-transaction row of the import response."""
    reference_number: str | None = None
    amount: Decimal
    currency: str
    debtor_name: str | None = None
    booking_date: date | None = None
    match_status: MatchStatus
    match_notes: str
    matched_invoice_number: str | None = None

    @classmethod
    def from_match(cls, result: MatchResult) -> "ImportResultRow":
        txn = result.transaction
        return cls(
            reference_number=txn.reference_number,
            amount=txn.amount,
            currency=txn.currency,
            debtor_name=txn.debtor_name or txn.ultimate_debtor_name,
            booking_date=txn.booking_date,
            match_status=result.match_status,
            match_notes=result.match_notes,
            matched_invoice_number=result.matched_invoice_number,
        )


class ImportOutcome(_CamelModel):
    """Result of :func:`swiss_medical_billing.matcher.import_statement`.

    On failure ``error`` explains why; ``results`` still lists whatever was
    processed before the failure.
    """
    success: bool
    import_id: str | None = None
    summary: ImportSummary | None = None
    results: list[ImportResultRow] = Field(default_factory=list)
    match_results: list[MatchResult] = Field(default_factory=list, exclude=True)
    error: str | None = None

    def as_dict(self) -> dict:
        """Render the camelCase response document (amounts as strings)."""
        return self.model_dump(mode="json", by_alias=True)
