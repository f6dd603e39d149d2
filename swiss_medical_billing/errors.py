"""Exception hierarchy for the billing core.

Ledger and audit failures carry the storage layer's message unchanged so
the matcher can copy it into a result's ``match_notes``.
"""


class BillingError(Exception):
    """Base class for all errors raised by this package."""


class LedgerError(BillingError):
    """The ledger collaborator failed to read or write a record."""


class ConcurrentUpdateError(LedgerError):
    """A conditional write lost against a concurrent update.

    Attributes:
        record_id: Id of the invoice or installment that changed.
        expected_version: Version the writer based its update on.
        actual_version: Version found in the store at write time.
    """

    def __init__(self, record_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Record {record_id} changed concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.record_id = record_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class AuditStoreError(BillingError):
    """Persisting an import record or an import item failed."""


class InvoiceBuildError(BillingError):
    """The Sumex XML could not be produced.

    ``abort_info`` is set when the serializer itself aborted, as opposed to
    the input failing validation.
    """

    def __init__(self, message: str, abort_info: str | None = None):
        super().__init__(message)
        self.abort_info = abort_info


class TransmissionError(BillingError):
    """The transmitter rejected or failed to deliver a document."""
