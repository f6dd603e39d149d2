"""Reconcile camt.054 credits against open invoices and installments.

Every credit carrying a structured reference is looked up first among
invoices and then among installments. The payment is added to the record's
paid amount and the record's status follows from the new balance:

    new paid within ±tolerance of the total  -> matched   (PAID)
    new paid above total + tolerance         -> overpaid  (invoice OVERPAID,
                                                            installment PAID)
    otherwise                                -> underpaid (invoice PARTIAL_PAID,
                                                            installment PENDING)

Records that are already settled are reported as ``already_paid`` and left
untouched. Installment payments are rolled up into their parent invoice.

All writes are conditional on the version that was read. When another import
wins the race, the record is re-read and the payment classified again, so a
payment is never applied on top of a balance it did not see.
"""

import logging
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from decimal import Decimal

from swiss_medical_billing.camt054 import NO_TRANSACTIONS_MESSAGE, parse_camt054
from swiss_medical_billing.config import MatchingConfig
from swiss_medical_billing.errors import AuditStoreError, ConcurrentUpdateError, LedgerError
from swiss_medical_billing.ledger import AuditStore, Ledger
from swiss_medical_billing.models import (
    PAYMENT_APPLIED_STATUSES,
    Camt054Statement,
    ImportOutcome,
    ImportResultRow,
    ImportStatus,
    ImportSummary,
    InstallmentRecord,
    InstallmentStatus,
    InvoiceRecord,
    InvoiceStatus,
    MatchResult,
    MatchStatus,
    ParsedTransaction,
    PaymentImport,
    PaymentImportItem,
)
from swiss_medical_billing.reference import strip_reference

log = logging.getLogger(__name__)


def classify_payment(total: Decimal, new_paid: Decimal, tolerance: Decimal) -> MatchStatus:
    """Classify a new paid amount against the amount due."""
    if total - tolerance <= new_paid <= total + tolerance:
        return MatchStatus.MATCHED
    if new_paid > total + tolerance:
        return MatchStatus.OVERPAID
    return MatchStatus.UNDERPAID


def is_settled(total: Decimal, paid: Decimal, tolerance: Decimal) -> bool:
    return total - paid <= tolerance


def invoice_status_for(status: MatchStatus) -> InvoiceStatus:
    match status:
        case MatchStatus.MATCHED:
            return InvoiceStatus.PAID
        case MatchStatus.OVERPAID:
            return InvoiceStatus.OVERPAID
        case MatchStatus.UNDERPAID:
            return InvoiceStatus.PARTIAL_PAID
        case _:
            raise ValueError(f"No invoice status for match status {status.value!r}")


def installment_status_for(status: MatchStatus) -> InstallmentStatus:
    # Installments have no OVERPAID state.
    match status:
        case MatchStatus.MATCHED | MatchStatus.OVERPAID:
            return InstallmentStatus.PAID
        case MatchStatus.UNDERPAID:
            return InstallmentStatus.PENDING
        case _:
            raise ValueError(f"No installment status for match status {status.value!r}")


def invoice_status_from_installments(
    installments: list[InstallmentRecord],
    invoice_total: Decimal,
    tolerance: Decimal,
) -> tuple[Decimal, InvoiceStatus]:
    """Derive the parent invoice balance from its installments.

    Returns:
        The summed paid amount and the resulting invoice status.
    """
    paid = sum((i.paid_amount for i in installments), Decimal("0"))
    all_paid = all(i.status is InstallmentStatus.PAID for i in installments)
    if all_paid and paid >= invoice_total - tolerance:
        return paid, InvoiceStatus.PAID
    if paid > invoice_total + tolerance:
        return paid, InvoiceStatus.OVERPAID
    if paid > tolerance:
        return paid, InvoiceStatus.PARTIAL_PAID
    return paid, InvoiceStatus.OPEN


class PaymentMatcher:
    """Apply bank credits to the ledger, one transaction at a time.

    Args:
        ledger: Invoice and installment store.
        audit: Import history, used to recognise bank references that were
               already applied. Optional for standalone matching.
        config: Tolerance, retry and timeout settings.
        now: Clock for ``paid_at`` timestamps.
    """

    def __init__(
        self,
        ledger: Ledger,
        audit: AuditStore | None = None,
        config: MatchingConfig | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.ledger = ledger
        self.audit = audit
        self.config = config or MatchingConfig()
        self.now = now or (lambda: datetime.now(timezone.utc))

    @property
    def tolerance(self) -> Decimal:
        return self.config.tolerance

    def _money(self, amount: Decimal) -> str:
        return f"{amount:.2f}"

    def _paid_at(self, settled: bool) -> datetime | None:
        return self.now() if settled else None

    def _is_duplicate(self, txn: ParsedTransaction, seen: set[str]) -> bool:
        if self.config.skip_deduplication or not txn.bank_reference:
            return False
        if txn.bank_reference in seen:
            return True
        return self.audit is not None and self.audit.has_bank_reference(txn.bank_reference)

    def match_transaction(
        self, txn: ParsedTransaction, seen_bank_references: set[str] | None = None
    ) -> MatchResult:
        """Match one credit and apply it to the ledger.

        Ledger failures, and any other exception raised while looking up or
        writing records, are reported as an ``error`` result, never raised.
        """
        seen = seen_bank_references if seen_bank_references is not None else set()
        if not txn.reference_number or not strip_reference(txn.reference_number):
            return MatchResult(
                transaction=txn,
                match_status=MatchStatus.UNMATCHED,
                match_notes="No reference number in transaction",
            )

        ref = strip_reference(txn.reference_number)
        try:
            invoice = self.ledger.find_invoice_by_reference(ref)
            if invoice is not None:
                result = self._match_invoice(txn, invoice, seen)
            else:
                installment = self.ledger.find_installment_by_reference(ref)
                if installment is None:
                    log.info("No invoice or installment for reference %s", ref)
                    return MatchResult(
                        transaction=txn,
                        match_status=MatchStatus.UNMATCHED,
                        match_notes=f"No invoice or installment found for reference: {ref}",
                    )
                result = self._match_installment(txn, installment, seen)
        except LedgerError as e:
            log.error("Ledger lookup failed for reference %s: %s", ref, e)
            return MatchResult(
                transaction=txn,
                match_status=MatchStatus.ERROR,
                match_notes=f"Ledger lookup failed: {e}",
            )
        except Exception as e:
            log.exception("Unexpected failure while matching reference %s", ref)
            return MatchResult(
                transaction=txn,
                match_status=MatchStatus.ERROR,
                match_notes=f"Failed to process transaction: {e}",
            )

        if result.match_status in PAYMENT_APPLIED_STATUSES and txn.bank_reference:
            seen.add(txn.bank_reference)
        return result

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    def _match_invoice(
        self, txn: ParsedTransaction, invoice: InvoiceRecord, seen: set[str]
    ) -> MatchResult:
        payment = abs(txn.amount)
        cur = self.config.currency
        ids = {
            "matched_invoice_id": invoice.id,
            "matched_invoice_number": invoice.invoice_number,
        }

        if self._is_duplicate(txn, seen):
            log.info("Bank reference %s already applied to invoice %s", txn.bank_reference, invoice.invoice_number)
            return MatchResult(
                transaction=txn,
                match_status=MatchStatus.DUPLICATE,
                match_notes=(
                    f"Bank reference {txn.bank_reference} was already applied "
                    f"to invoice {invoice.invoice_number}"
                ),
                previous_paid_amount=invoice.paid_amount,
                new_paid_amount=invoice.paid_amount,
                **ids,
            )

        for attempt in range(self.config.max_conflict_retries + 1):
            total = invoice.total_amount
            previous = invoice.paid_amount
            if invoice.status is InvoiceStatus.PAID or is_settled(total, previous, self.tolerance):
                return MatchResult(
                    transaction=txn,
                    match_status=MatchStatus.ALREADY_PAID,
                    match_notes=(
                        f"Invoice {invoice.invoice_number} is already fully paid "
                        f"({self._money(previous)}/{self._money(total)} {cur})"
                    ),
                    previous_paid_amount=previous,
                    new_paid_amount=previous,
                    **ids,
                )

            new_paid = previous + payment
            status = classify_payment(total, new_paid, self.tolerance)
            invoice_status = invoice_status_for(status)
            try:
                self.ledger.update_invoice(
                    invoice.id,
                    paid_amount=new_paid,
                    status=invoice_status,
                    paid_at=self._paid_at(invoice_status in (InvoiceStatus.PAID, InvoiceStatus.OVERPAID)),
                    expected_version=invoice.version,
                )
            except ConcurrentUpdateError as e:
                log.warning("Invoice %s changed during matching (attempt %d): %s", invoice.invoice_number, attempt + 1, e)
                refreshed = self.ledger.get_invoice(invoice.id)
                if refreshed is None:
                    raise LedgerError(f"Invoice {invoice.id} no longer exists") from e
                invoice = refreshed
                continue
            except LedgerError as e:
                log.error("Failed to update invoice %s: %s", invoice.invoice_number, e)
                return MatchResult(
                    transaction=txn,
                    match_status=MatchStatus.ERROR,
                    match_notes=f"Failed to update invoice: {e}",
                    previous_paid_amount=previous,
                    **ids,
                )

            log.info("Invoice %s %s: %s -> %s %s", invoice.invoice_number, status.value, previous, new_paid, cur)
            return MatchResult(
                transaction=txn,
                match_status=status,
                match_notes=self._invoice_notes(status, invoice, payment, previous, new_paid),
                previous_paid_amount=previous,
                new_paid_amount=new_paid,
                **ids,
            )

        return MatchResult(
            transaction=txn,
            match_status=MatchStatus.ERROR,
            match_notes=(
                f"Failed to update invoice: {invoice.invoice_number} kept changing "
                f"concurrently, gave up after {self.config.max_conflict_retries + 1} attempts"
            ),
            **ids,
        )

    def _invoice_notes(self, status, invoice, payment, previous, new_paid) -> str:
        cur = self.config.currency
        total = invoice.total_amount
        match status:
            case MatchStatus.MATCHED:
                return f"Exact match: {self._money(payment)} {cur}. Invoice {invoice.invoice_number} fully paid."
            case MatchStatus.OVERPAID:
                return (
                    f"Overpaid by {self._money(new_paid - total)} {cur}. "
                    f"Payment: {self._money(payment)}, Total: {self._money(total)}, "
                    f"Already paid: {self._money(previous)}"
                )
            case MatchStatus.UNDERPAID:
                return (
                    f"Partial payment: {self._money(payment)} {cur}. "
                    f"Still owed: {self._money(total - new_paid)} {cur}."
                )
            case _:
                return ""

    # -------------------------------------------------------------------------
    # Installments
    # -------------------------------------------------------------------------

    def _match_installment(
        self, txn: ParsedTransaction, installment: InstallmentRecord, seen: set[str]
    ) -> MatchResult:
        payment = abs(txn.amount)
        cur = self.config.currency
        ids = {
            "matched_installment_id": installment.id,
            "matched_invoice_number": installment.display_number,
            "parent_invoice_id": installment.invoice_id,
        }

        if self._is_duplicate(txn, seen):
            log.info("Bank reference %s already applied to %s", txn.bank_reference, installment.display_number)
            return MatchResult(
                transaction=txn,
                match_status=MatchStatus.DUPLICATE,
                match_notes=(
                    f"Bank reference {txn.bank_reference} was already applied "
                    f"to installment {installment.display_number}"
                ),
                previous_paid_amount=installment.paid_amount,
                new_paid_amount=installment.paid_amount,
                **ids,
            )

        for attempt in range(self.config.max_conflict_retries + 1):
            due = installment.amount
            previous = installment.paid_amount
            if installment.status is InstallmentStatus.PAID or is_settled(due, previous, self.tolerance):
                return MatchResult(
                    transaction=txn,
                    match_status=MatchStatus.ALREADY_PAID,
                    match_notes=(
                        f"Installment {installment.display_number} already paid "
                        f"({self._money(previous)}/{self._money(due)} {cur})"
                    ),
                    previous_paid_amount=previous,
                    new_paid_amount=previous,
                    **ids,
                )

            new_paid = previous + payment
            status = classify_payment(due, new_paid, self.tolerance)
            installment_status = installment_status_for(status)
            try:
                updated = self.ledger.update_installment(
                    installment.id,
                    paid_amount=new_paid,
                    status=installment_status,
                    paid_at=self._paid_at(installment_status is InstallmentStatus.PAID),
                    expected_version=installment.version,
                )
            except ConcurrentUpdateError as e:
                log.warning("Installment %s changed during matching (attempt %d): %s", installment.id, attempt + 1, e)
                refreshed = self.ledger.get_installment(installment.id)
                if refreshed is None:
                    raise LedgerError(f"Installment {installment.id} no longer exists") from e
                installment = refreshed
                continue
            except LedgerError as e:
                log.error("Failed to update installment %s: %s", installment.id, e)
                return MatchResult(
                    transaction=txn,
                    match_status=MatchStatus.ERROR,
                    match_notes=f"Failed to update installment: {e}",
                    previous_paid_amount=previous,
                    **ids,
                )

            notes = self._installment_notes(status, installment, payment, new_paid)
            cascade_error = self._roll_up_installments(updated)
            if cascade_error:
                notes = f"{notes} Parent invoice not updated: {cascade_error}"
            log.info("Installment %s %s: %s -> %s %s", installment.id, status.value, previous, new_paid, cur)
            return MatchResult(
                transaction=txn,
                match_status=status,
                match_notes=notes,
                previous_paid_amount=previous,
                new_paid_amount=new_paid,
                **ids,
            )

        return MatchResult(
            transaction=txn,
            match_status=MatchStatus.ERROR,
            match_notes=(
                f"Failed to update installment: {installment.display_number} kept changing "
                f"concurrently, gave up after {self.config.max_conflict_retries + 1} attempts"
            ),
            **ids,
        )

    def _installment_notes(self, status, installment, payment, new_paid) -> str:
        cur = self.config.currency
        due = installment.amount
        match status:
            case MatchStatus.MATCHED:
                return f"Exact match: {self._money(payment)} {cur}. Installment {installment.display_number} fully paid."
            case MatchStatus.OVERPAID:
                return (
                    f"Overpaid by {self._money(new_paid - due)} {cur}. "
                    f"Payment: {self._money(payment)}, Due: {self._money(due)}"
                )
            case MatchStatus.UNDERPAID:
                return (
                    f"Partial payment: {self._money(payment)} {cur}. "
                    f"Still owed: {self._money(due - new_paid)} {cur}."
                )
            case _:
                return ""

    def _roll_up_installments(self, installment: InstallmentRecord) -> str | None:
        """Recompute the parent invoice from all of its installments.

        Returns an error message when the parent could not be updated; the
        installment payment itself stays applied.
        """
        for attempt in range(self.config.max_conflict_retries + 1):
            try:
                siblings = self.ledger.list_installments(installment.invoice_id)
                parent = self.ledger.get_invoice(installment.invoice_id)
                if parent is None:
                    log.warning("Parent invoice %s of installment %s not found", installment.invoice_id, installment.id)
                    return f"invoice {installment.invoice_id} not found"
                total = parent.total_amount or sum((s.amount for s in siblings), Decimal("0"))
                paid, status = invoice_status_from_installments(siblings, total, self.tolerance)
                self.ledger.update_invoice(
                    parent.id,
                    paid_amount=paid,
                    status=status,
                    paid_at=self._paid_at(status in (InvoiceStatus.PAID, InvoiceStatus.OVERPAID)),
                    expected_version=parent.version,
                )
                log.debug("Invoice %s rolled up from installments: %s (%s)", parent.invoice_number, paid, status.value)
                return None
            except ConcurrentUpdateError as e:
                log.warning("Parent invoice %s changed during roll-up (attempt %d): %s", installment.invoice_id, attempt + 1, e)
                continue
            except LedgerError as e:
                log.error("Failed to roll up installments into invoice %s: %s", installment.invoice_id, e)
                return str(e)
            except Exception as e:
                log.exception("Unexpected failure rolling up installments into invoice %s", installment.invoice_id)
                return str(e) or type(e).__name__
        return "concurrent updates"

    # -------------------------------------------------------------------------
    # Batches
    # -------------------------------------------------------------------------

    def match_transactions(
        self,
        transactions: Iterable[ParsedTransaction],
        timeout: float | None = None,
        timer: Callable[[], float] = time.monotonic,
    ) -> tuple[list[MatchResult], bool]:
        """Match credits sequentially.

        Args:
            transactions: Credits to apply, in statement order.
            timeout: Seconds after which the remaining transactions are left
                     unprocessed. ``None`` disables the deadline.
            timer: Monotonic clock used for the deadline.
        Returns:
            The results for processed transactions and whether the deadline hit.
        """
        deadline = None if timeout is None else timer() + timeout
        seen: set[str] = set()
        results: list[MatchResult] = []
        for txn in transactions:
            if deadline is not None and timer() > deadline:
                return results, True
            results.append(self.match_transaction(txn, seen))
        return results, False


def summarize(
    statement: Camt054Statement,
    credits: list[ParsedTransaction],
    results: list[MatchResult],
) -> ImportSummary:
    """Count results the way the import report shows them."""
    summary = ImportSummary(
        total_transactions=len(credits),
        total_amount=sum((t.amount for t in credits), Decimal("0")),
        message_id=statement.message_id,
        iban=statement.iban,
        bank_name=statement.bank_name,
    )
    for result in results:
        match result.match_status:
            case MatchStatus.MATCHED:
                summary.matched += 1
            case MatchStatus.OVERPAID:
                summary.overpaid += 1
            case MatchStatus.UNDERPAID:
                summary.underpaid += 1
            case MatchStatus.ALREADY_PAID:
                summary.already_paid += 1
            case MatchStatus.UNMATCHED | MatchStatus.DUPLICATE | MatchStatus.ERROR:
                summary.unmatched += 1
        if result.match_status in PAYMENT_APPLIED_STATUSES:
            summary.matched_amount += abs(result.transaction.amount)
    return summary


def import_statement(
    xml: str | bytes | None,
    *,
    file_name: str | None,
    ledger: Ledger,
    audit: AuditStore,
    file_url: str | None = None,
    imported_by_user_id: str | None = None,
    imported_by_name: str | None = None,
    config: MatchingConfig | None = None,
    now: Callable[[], datetime] | None = None,
    timer: Callable[[], float] = time.monotonic,
) -> ImportOutcome:
    """Parse a camt.054 file, match its credits and record the import.

    Never raises: every failure is returned as ``success=False`` with an
    ``error`` message and whatever results were produced.
    """
    try:
        return _import_statement(
            xml,
            file_name=file_name,
            ledger=ledger,
            audit=audit,
            file_url=file_url,
            imported_by_user_id=imported_by_user_id,
            imported_by_name=imported_by_name,
            config=config or MatchingConfig(),
            now=now,
            timer=timer,
        )
    except Exception as e:
        log.exception("Bank XML processing error for %s", file_name)
        return ImportOutcome(success=False, error=str(e) or "Internal server error")


def _import_statement(xml, *, file_name, ledger, audit, file_url, imported_by_user_id,
                      imported_by_name, config, now, timer) -> ImportOutcome:
    if not xml or not file_name:
        return ImportOutcome(success=False, error="Missing xmlContent or fileName")

    statement = parse_camt054(xml)
    if not statement.transactions:
        return ImportOutcome(success=False, error=NO_TRANSACTIONS_MESSAGE)

    credits = [t for t in statement.transactions if t.is_credit and t.amount > 0]
    log.info(
        "Importing %s: %d entries, %d credits (message %s)",
        file_name, len(statement.transactions), len(credits), statement.message_id,
    )

    matcher = PaymentMatcher(ledger, audit, config, now=now)
    results, timed_out = matcher.match_transactions(
        credits, timeout=config.batch_timeout(len(credits)), timer=timer,
    )
    summary = summarize(statement, credits, results)

    if timed_out:
        status = ImportStatus.FAILED
    elif summary.unmatched > 0:
        status = ImportStatus.PARTIAL
    else:
        status = ImportStatus.COMPLETED

    record = PaymentImport(
        file_name=file_name,
        file_url=file_url,
        imported_by_user_id=imported_by_user_id,
        imported_by_name=imported_by_name,
        total_transactions=summary.total_transactions,
        matched_count=summary.matched,
        unmatched_count=summary.unmatched,
        already_paid_count=summary.already_paid,
        overpaid_count=summary.overpaid,
        underpaid_count=summary.underpaid,
        total_amount=summary.total_amount,
        matched_amount=summary.matched_amount,
        message_id=statement.message_id,
        iban=statement.iban,
        bank_name=statement.bank_name,
        statement_date_from=statement.date_from,
        statement_date_to=statement.date_to,
        status=status,
    )
    rows = [ImportResultRow.from_match(r) for r in results]

    try:
        import_id = audit.save_import(record)
    except AuditStoreError as e:
        log.error("Failed to save import record for %s: %s", file_name, e)
        return ImportOutcome(
            success=False,
            summary=summary,
            results=rows,
            match_results=results,
            error=f"Failed to save import record: {e}",
        )

    for result in results:
        try:
            audit.save_item(PaymentImportItem.from_match(import_id, result))
        except AuditStoreError as e:
            log.error(
                "Failed to save import item for reference %s (import %s): %s",
                result.transaction.reference_number, import_id, e,
            )

    error = None
    if timed_out:
        error = (
            f"Import timed out after processing {len(results)} of "
            f"{len(credits)} transactions"
        )
        log.error("%s (import %s)", error, import_id)

    return ImportOutcome(
        success=not timed_out,
        import_id=import_id,
        summary=summary,
        results=rows,
        match_results=results,
        error=error,
    )
