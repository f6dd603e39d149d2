"""Parser for ISO 20022 camt.054 (bank-to-customer debit/credit notification).

Swiss banks send one ``Ntry`` per booked payment. For QR-bill payments the
structured creditor reference sits in ``NtryDtls/TxDtls/RmtInf/Strd/CdtrRefInf/Ref``.
Only the first ``TxDtls`` block of an entry is read, so batch bookings that
aggregate several payments yield the details of the first one.
"""

import datetime
import logging
from decimal import Decimal, InvalidOperation

from swiss_medical_billing.models import Camt054Statement, CreditDebit, ParsedTransaction
from swiss_medical_billing.xmlextract import get_all_matches, get_attr, get_tag_content, text_of

log = logging.getLogger(__name__)

DEFAULT_CURRENCY = "CHF"
CAMT054_MARKERS = ("camt.054", "BkToCstmrDbtCdtNtfctn")
NO_TRANSACTIONS_MESSAGE = "No transactions found in XML. Is this a valid camt.054 file?"


def is_camt054(xml: str | None) -> bool:
    """Cheap content sniff used before a full parse."""
    if not xml:
        return False
    head = xml[:4096]
    return any(marker in head for marker in CAMT054_MARKERS)


def parse_iso_date(value: str | None) -> datetime.date | None:
    """Parse ``YYYY-MM-DD`` or the date part of an ISO datetime."""
    if not value:
        return None
    try:
        return datetime.date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _parse_amount(entry: str, idx: int) -> Decimal:
    raw = get_tag_content(entry, "Amt")
    if not raw:
        return Decimal("0")
    try:
        return Decimal(raw)
    except InvalidOperation:
        log.warning("Entry %d has an unreadable amount %r, using 0", idx, raw)
        return Decimal("0")


def _parse_credit_debit(entry: str) -> CreditDebit:
    indicator = (get_tag_content(entry, "CdtDbtInd") or "").upper()
    return CreditDebit.DBIT if indicator == CreditDebit.DBIT.value else CreditDebit.CRDT


def parse_entry(entry: str, idx: int = 1) -> ParsedTransaction:
    """Build a :class:`ParsedTransaction` from one ``<Ntry>`` block."""
    booking_date = parse_iso_date(
        get_tag_content(entry, "BookgDt>Dt") or get_tag_content(entry, "BookgDt>DtTm")
    )
    credit_debit = _parse_credit_debit(entry)
    amount = _parse_amount(entry, idx)
    if credit_debit is CreditDebit.DBIT:
        amount = -abs(amount)

    tx_blocks = get_all_matches(entry, "TxDtls")
    tx_block = tx_blocks[0] if tx_blocks else entry

    description = (
        text_of(entry, "AddtlNtryInf")
        or text_of(tx_block, "AddtlTxInf")
        or text_of(tx_block, "RmtInf>Ustrd")
    )

    return ParsedTransaction(
        booking_date=booking_date,
        amount=amount,
        currency=get_attr(entry, "Amt", "Ccy") or DEFAULT_CURRENCY,
        credit_debit=credit_debit,
        reference_number=text_of(tx_block, "CdtrRefInf>Ref"),
        debtor_name=text_of(tx_block, "Dbtr>Pty>Nm") or text_of(tx_block, "Dbtr>Nm"),
        ultimate_debtor_name=text_of(tx_block, "UltmtDbtr>Pty>Nm") or text_of(tx_block, "UltmtDbtr>Nm"),
        debtor_iban=text_of(tx_block, "DbtrAcct>Id>IBAN"),
        description=description,
        bank_reference=text_of(tx_block, "Refs>AcctSvcrRef") or text_of(entry, "AcctSvcrRef"),
        end_to_end_id=text_of(tx_block, "Refs>EndToEndId"),
    )


def parse_camt054(xml: str | bytes | None) -> Camt054Statement:
    """Parse a camt.054 document into a :class:`Camt054Statement`.

    Never raises: a document without entries yields a statement with no
    transactions, which callers report as a business error.
    """
    if isinstance(xml, bytes):
        xml = xml.decode("utf-8", errors="replace")
    if not xml:
        return Camt054Statement()

    entries = get_all_matches(xml, "Ntry")
    transactions = [parse_entry(entry, idx) for idx, entry in enumerate(entries, 1)]
    log.debug("Parsed %d camt.054 entries", len(transactions))

    return Camt054Statement(
        transactions=transactions,
        message_id=text_of(xml, "GrpHdr>MsgId"),
        iban=text_of(xml, "Acct>Id>IBAN"),
        bank_name=text_of(xml, "Svcr>FinInstnId>Nm"),
        date_from=text_of(xml, "FrToDt>FrDtTm"),
        date_to=text_of(xml, "FrToDt>ToDtTm"),
    )

