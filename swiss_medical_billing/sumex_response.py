"""Reader for Forum Datenaustausch ``generalInvoiceResponse`` documents.

Insurers answer an invoice with exactly one of ``accepted``, ``rejected``
or ``pending``. The reader pulls out the outcome, the echoed invoice
reference, the parties, the balance and any error/message notifications.
It uses the regex extractor, so it accepts any namespace prefix and never
raises: unrecognized documents produce ``success=False``.
"""

import logging
from decimal import Decimal, InvalidOperation
from enum import Enum, IntEnum

from pydantic import BaseModel, Field

from swiss_medical_billing.xmlextract import get_all_matches, get_attr, text_of

log = logging.getLogger(__name__)


class ResponseType(IntEnum):
    Pending = 1
    Rejected = 2
    Accepted = 3


class StatusType(IntEnum):
    Unknown = 2
    Ambiguous = 3
    Received = 4
    Frozen = 5
    Processed = 6
    Granted = 7
    Canceled = 8
    Claimed = 9
    Reimbursed = 10


class SubmissionStatus(str, Enum):
    """Submission state a response moves an invoice to."""
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    PENDING = "pending"


_RESPONSE_ELEMENTS = {
    "accepted": ResponseType.Accepted,
    "rejected": ResponseType.Rejected,
    "pending": ResponseType.Pending,
}


class ResponseNotification(BaseModel):
    code: str = ""
    text: str = ""
    is_error: bool = False
    record_id: int = 0
    error_value: str = ""
    valid_value: str = ""


class ResponseBalance(BaseModel):
    amount: Decimal = Decimal("0")
    amount_reminder: Decimal = Decimal("0")
    amount_due: Decimal = Decimal("0")
    amount_paid: Decimal = Decimal("0")
    amount_unpaid: Decimal = Decimal("0")
    amount_vat: Decimal = Decimal("0")
    currency: str = "CHF"
    vat_number: str | None = None


class ResponseInvoiceRef(BaseModel):
    request_id: str
    request_date: str | None = None
    request_timestamp: int | None = None


class ParsedInvoiceResponse(BaseModel):
    success: bool
    language: str | None = None
    modus: str | None = None
    guid: str | None = None
    response_type: ResponseType | None = None
    response_timestamp: int | None = None
    invoice_ref: ResponseInvoiceRef | None = None
    biller_gln: str | None = None
    biller_zsr: str | None = None
    provider_gln: str | None = None
    provider_zsr: str | None = None
    insurance_gln: str | None = None
    explanation: str | None = None
    status_in: StatusType | None = None
    status_out: StatusType | None = None
    balance: ResponseBalance | None = None
    notifications: list[ResponseNotification] = Field(default_factory=list)
    error: str | None = None

    @property
    def submission_status(self) -> SubmissionStatus | None:
        match self.response_type:
            case ResponseType.Accepted:
                return SubmissionStatus.ACCEPTED
            case ResponseType.Rejected:
                return SubmissionStatus.REJECTED
            case ResponseType.Pending:
                return SubmissionStatus.PENDING
            case _:
                return None

    @property
    def errors(self) -> list[ResponseNotification]:
        return [n for n in self.notifications if n.is_error]


def _int(value: str | None) -> int | None:
    if value is None or not value.strip().lstrip("-").isdigit():
        return None
    return int(value)


def _decimal(value: str | None) -> Decimal:
    if not value:
        return Decimal("0")
    try:
        return Decimal(value.strip())
    except InvalidOperation:
        log.warning("Ignoring malformed response amount %r", value)
        return Decimal("0")


def _status(value: str | None) -> StatusType | None:
    if not value:
        return None
    for status in StatusType:
        if status.name.lower() == value.strip().lower():
            return status
    return StatusType.Unknown


def _notification(element: str, tag: str, is_error: bool) -> ResponseNotification:
    return ResponseNotification(
        code=get_attr(element, tag, "code") or "",
        text=get_attr(element, tag, "text") or text_of(element, tag) or "",
        is_error=is_error,
        record_id=_int(get_attr(element, tag, "record_id")) or 0,
        error_value=get_attr(element, tag, "error_value") or "",
        valid_value=get_attr(element, tag, "valid_value") or "",
    )


def _balance(xml: str) -> ResponseBalance | None:
    if not get_all_matches(xml, "balance"):
        return None
    return ResponseBalance(
        amount=_decimal(get_attr(xml, "balance", "amount")),
        amount_reminder=_decimal(get_attr(xml, "balance", "amount_reminder")),
        amount_due=_decimal(get_attr(xml, "balance", "amount_due")),
        amount_paid=_decimal(get_attr(xml, "balance", "amount_paid")),
        amount_unpaid=_decimal(get_attr(xml, "balance", "amount_unpaid")),
        amount_vat=_decimal(get_attr(xml, "balance", "amount_vat")),
        currency=get_attr(xml, "balance", "currency") or "CHF",
        vat_number=get_attr(xml, "balance", "vat_number"),
    )


def parse_invoice_response(xml: str | bytes | None) -> ParsedInvoiceResponse:
    """Parse a ``generalInvoiceResponse`` document."""
    if isinstance(xml, bytes):
        xml = xml.decode("utf-8", errors="replace")
    if not xml or not get_all_matches(xml, "payload"):
        return ParsedInvoiceResponse(success=False, error="Not a generalInvoiceResponse document")

    outcome = None
    for tag, response_type in _RESPONSE_ELEMENTS.items():
        blocks = get_all_matches(xml, tag)
        if blocks:
            outcome = (tag, response_type, blocks[0])
            break
    if outcome is None:
        return ParsedInvoiceResponse(
            success=False, error="Response contains no accepted, rejected or pending element",
        )
    tag, response_type, block = outcome

    invoice_ref = None
    request_id = get_attr(xml, "invoice", "request_id")
    if request_id:
        invoice_ref = ResponseInvoiceRef(
            request_id=request_id,
            request_date=get_attr(xml, "invoice", "request_date"),
            request_timestamp=_int(get_attr(xml, "invoice", "request_timestamp")),
        )

    notifications = [_notification(e, "error", True) for e in get_all_matches(block, "error")]
    notifications += [_notification(m, "message", False) for m in get_all_matches(block, "message")]

    response = ParsedInvoiceResponse(
        success=True,
        language=get_attr(xml, "response", "language"),
        modus=get_attr(xml, "response", "modus"),
        guid=get_attr(xml, "response", "guid"),
        response_type=response_type,
        response_timestamp=_int(get_attr(xml, "payload", "response_timestamp")),
        invoice_ref=invoice_ref,
        biller_gln=get_attr(xml, "biller", "gln"),
        biller_zsr=get_attr(xml, "biller", "zsr"),
        provider_gln=get_attr(xml, "provider", "gln"),
        provider_zsr=get_attr(xml, "provider", "zsr"),
        insurance_gln=get_attr(xml, "insurance", "gln"),
        explanation=text_of(block, "explanation"),
        status_in=_status(get_attr(block, tag, "status_in")),
        status_out=_status(get_attr(block, tag, "status_out")),
        balance=_balance(block),
        notifications=notifications,
    )
    log.info(
        "Response for %s: %s (%d notifications)",
        request_id or "?", tag, len(notifications),
    )
    return response
