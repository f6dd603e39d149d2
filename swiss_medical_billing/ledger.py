"""Ledger and audit-store collaborators used by the payment matcher.

The matcher only talks to the :class:`Ledger` and :class:`AuditStore`
protocols. Writes are conditional on the record ``version`` the caller read;
a stale version raises :class:`~swiss_medical_billing.errors.ConcurrentUpdateError`.

The in-memory implementations back the tests and the documentation examples,
and show the contract a database-backed store has to honour.
"""

import threading
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Protocol

from swiss_medical_billing.errors import ConcurrentUpdateError, LedgerError
from swiss_medical_billing.models import (
    InstallmentRecord,
    InstallmentStatus,
    InvoiceRecord,
    InvoiceStatus,
    PAYMENT_APPLIED_STATUSES,
    PaymentImport,
    PaymentImportItem,
)


class Ledger(Protocol):
    def find_invoice_by_reference(self, reference: str) -> InvoiceRecord | None: ...

    def find_installment_by_reference(self, reference: str) -> InstallmentRecord | None: ...

    def get_invoice(self, invoice_id: str) -> InvoiceRecord | None: ...

    def get_installment(self, installment_id: str) -> InstallmentRecord | None: ...

    def list_installments(self, invoice_id: str) -> list[InstallmentRecord]: ...

    def update_invoice(
        self,
        invoice_id: str,
        *,
        paid_amount: Decimal,
        status: InvoiceStatus,
        paid_at: datetime | None,
        expected_version: int,
    ) -> InvoiceRecord: ...

    def update_installment(
        self,
        installment_id: str,
        *,
        paid_amount: Decimal,
        status: InstallmentStatus,
        paid_at: datetime | None,
        expected_version: int,
    ) -> InstallmentRecord: ...


class AuditStore(Protocol):
    def save_import(self, record: PaymentImport) -> str: ...

    def save_item(self, item: PaymentImportItem) -> None: ...

    def has_bank_reference(self, bank_reference: str) -> bool: ...


class InMemoryLedger:
    """Thread-safe dictionary ledger with compare-and-set writes."""

    def __init__(
        self,
        invoices: list[InvoiceRecord] | None = None,
        installments: list[InstallmentRecord] | None = None,
    ):
        self._lock = threading.Lock()
        self.invoices: dict[str, InvoiceRecord] = {i.id: i for i in invoices or []}
        self.installments: dict[str, InstallmentRecord] = {i.id: i for i in installments or []}

    def add_invoice(self, invoice: InvoiceRecord) -> InvoiceRecord:
        with self._lock:
            self.invoices[invoice.id] = invoice
        return invoice

    def add_installment(self, installment: InstallmentRecord) -> InstallmentRecord:
        with self._lock:
            self.installments[installment.id] = installment
        return installment

    def find_invoice_by_reference(self, reference: str) -> InvoiceRecord | None:
        with self._lock:
            return next(
                (i for i in self.invoices.values() if i.reference_number == reference),
                None,
            )

    def find_installment_by_reference(self, reference: str) -> InstallmentRecord | None:
        with self._lock:
            return next(
                (i for i in self.installments.values() if i.reference_number == reference),
                None,
            )

    def get_invoice(self, invoice_id: str) -> InvoiceRecord | None:
        with self._lock:
            return self.invoices.get(invoice_id)

    def get_installment(self, installment_id: str) -> InstallmentRecord | None:
        with self._lock:
            return self.installments.get(installment_id)

    def list_installments(self, invoice_id: str) -> list[InstallmentRecord]:
        with self._lock:
            siblings = [i for i in self.installments.values() if i.invoice_id == invoice_id]
        return sorted(siblings, key=lambda i: i.installment_number)

    def update_invoice(self, invoice_id, *, paid_amount, status, paid_at, expected_version):
        with self._lock:
            current = self.invoices.get(invoice_id)
            if current is None:
                raise LedgerError(f"Invoice {invoice_id} not found")
            if current.version != expected_version:
                raise ConcurrentUpdateError(invoice_id, expected_version, current.version)
            updated = current.model_copy(update={
                "paid_amount": paid_amount,
                "status": status,
                "paid_at": paid_at,
                "version": current.version + 1,
            })
            self.invoices[invoice_id] = updated
            return updated

    def update_installment(self, installment_id, *, paid_amount, status, paid_at, expected_version):
        with self._lock:
            current = self.installments.get(installment_id)
            if current is None:
                raise LedgerError(f"Installment {installment_id} not found")
            if current.version != expected_version:
                raise ConcurrentUpdateError(installment_id, expected_version, current.version)
            updated = current.model_copy(update={
                "paid_amount": paid_amount,
                "status": status,
                "paid_at": paid_at,
                "version": current.version + 1,
            })
            self.installments[installment_id] = updated
            return updated


class InMemoryAuditStore:
    """Keeps import records and their items in lists."""

    def __init__(self):
        self._lock = threading.Lock()
        self.imports: dict[str, PaymentImport] = {}
        self.items: list[PaymentImportItem] = []

    def save_import(self, record: PaymentImport) -> str:
        import_id = str(uuid.uuid4())
        with self._lock:
            self.imports[import_id] = record
        return import_id

    def save_item(self, item: PaymentImportItem) -> None:
        with self._lock:
            self.items.append(item)

    def has_bank_reference(self, bank_reference: str) -> bool:
        """True when an earlier item applied a payment with this reference."""
        with self._lock:
            return any(
                item.bank_reference == bank_reference
                and item.match_status in PAYMENT_APPLIED_STATUSES
                for item in self.items
            )

    def items_for(self, import_id: str) -> list[PaymentImportItem]:
        return [item for item in self.items if item.import_id == import_id]
