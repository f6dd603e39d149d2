from .importer import Camt054AccountConfig, Importer  # noqa: F401

# Payment reconciliation
from .camt054 import is_camt054, parse_camt054
from .config import MatchingConfig, MediDataConfig
from .ledger import AuditStore, InMemoryAuditStore, InMemoryLedger, Ledger
from .matcher import PaymentMatcher, import_statement

# Reference numbers
from .reference import (
    format_swiss_reference_with_spaces,  # groups of 2-5-5-5-5-5 digits
    generate_swiss_reference,            # invoice number -> 27-digit QR reference
    is_valid_swiss_reference,
)

# Sumex invoices and MediData
from .medidata import ClinicProfile, plan_transmissions, send_invoice, sumex_input_from_invoice
from .sumex import SumexInvoiceInput, build_invoice_request
from .sumex_response import parse_invoice_response

# Tiers-Payant PDF
from .tiers_payant_pdf import render_sumex_input_pdf, render_tiers_payant_pdf

# Errors
from .errors import (
    AuditStoreError,
    BillingError,
    ConcurrentUpdateError,
    InvoiceBuildError,
    LedgerError,
    TransmissionError,
)

# Data models
from .invoices import BillingInvoice, InvoiceLineItem, PatientRecord
from .models import (
    Camt054Statement,
    ImportOutcome,
    InstallmentRecord,
    InvoiceRecord,
    MatchResult,
    MatchStatus,
    ParsedTransaction,
)

__all__ = [
    # beangulp importer
    "Camt054AccountConfig",
    "Importer",
    # Payment reconciliation
    "is_camt054",
    "parse_camt054",
    "MatchingConfig",
    "MediDataConfig",
    "AuditStore",
    "InMemoryAuditStore",
    "InMemoryLedger",
    "Ledger",
    "PaymentMatcher",
    "import_statement",
    # Reference numbers
    "format_swiss_reference_with_spaces",
    "generate_swiss_reference",
    "is_valid_swiss_reference",
    # Sumex invoices and MediData
    "ClinicProfile",
    "plan_transmissions",
    "send_invoice",
    "sumex_input_from_invoice",
    "SumexInvoiceInput",
    "build_invoice_request",
    "parse_invoice_response",
    # Tiers-Payant PDF
    "render_sumex_input_pdf",
    "render_tiers_payant_pdf",
    # Errors
    "AuditStoreError",
    "BillingError",
    "ConcurrentUpdateError",
    "InvoiceBuildError",
    "LedgerError",
    "TransmissionError",
    # Data models
    "BillingInvoice",
    "InvoiceLineItem",
    "PatientRecord",
    "Camt054Statement",
    "ImportOutcome",
    "InstallmentRecord",
    "InvoiceRecord",
    "MatchResult",
    "MatchStatus",
    "ParsedTransaction",
]
