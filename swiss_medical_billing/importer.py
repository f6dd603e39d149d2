import datetime
import logging
from dataclasses import dataclass
from pathlib import Path

import beangulp
from beangulp import Ingest
from beancount.core import data
from beancount.core.amount import Amount
from lxml import etree

from swiss_medical_billing.camt054 import DEFAULT_CURRENCY, is_camt054, parse_camt054
from swiss_medical_billing.identifiers import normalize_iban
from swiss_medical_billing.models import Camt054Statement, ParsedTransaction
from swiss_medical_billing.reference import strip_reference

log = logging.getLogger(__name__)

VALID_SUFFIXES = frozenset({".xml", ".camt", ".054"})
VALID_MIME_TYPES = frozenset({"application/xml", "text/xml"})


@dataclass
class Camt054AccountConfig:
    """Configuration for a bank account that delivers camt.054 notifications.

    Attributes:
        account_name: The Beancount account name (e.g., 'Assets:Bank:PostFinance:Clinic')
        currency: Default currency for entries without a ``Ccy`` attribute (e.g., 'CHF')
        iban: Optional IBAN of the account. When set, the importer only matches
                    files whose ``Acct/Id/IBAN`` is this IBAN (whitespace ignored).
                    When None, the importer matches any camt.054 file.
        receivable_account: Optional account that incoming payments carrying a
                    structured reference are booked against (e.g.,
                    'Assets:Receivables:Patients'). When None, entries keep a
                    single posting and are left for manual categorisation.
        skip_deduplication: When True, skip bank-reference deduplication (default: False).
                    Useful for forcing re-import of entries.

    Example:
        config = Camt054AccountConfig(
            account_name='Assets:Bank:PostFinance:Clinic',
            currency='CHF',
            iban='CH93 0076 2011 6238 5295 7',
            receivable_account='Assets:Receivables:Patients',
        )
    """
    account_name: str
    currency: str = DEFAULT_CURRENCY
    iban: str | None = None
    receivable_account: str | None = None
    skip_deduplication: bool = False


def read_statement(filepath: str) -> Camt054Statement:
    """Read ``filepath`` and parse it as camt.054."""
    with open(filepath, "rb") as f:
        return parse_camt054(f.read())


def find_iban(filepath: str) -> str | None:
    """Quickly extract the account IBAN from a camt.054 file without full parsing.

    Args:
        filepath: Path to the camt.054 file
    Returns:
        The IBAN without whitespace, or None if not found
    """
    try:
        parser = etree.XMLParser(recover=True, resolve_entities=False)
        with open(filepath, "rb") as f:
            tree = etree.parse(f, parser)
    except (OSError, etree.XMLSyntaxError) as e:
        log.debug("Could not read %s: %s", filepath, e)
        return None
    if tree.getroot() is None:
        return None
    # camt.054 documents are namespaced; match by local name.
    for elem in tree.xpath("//*[local-name()='Acct']/*[local-name()='Id']/*[local-name()='IBAN']"):
        if text := (elem.text or "").strip():
            return normalize_iban(text)
    return None


class Importer(beangulp.Importer):
    """Importer for camt.054 credit/debit notifications."""

    def __init__(
        self,
        config: Camt054AccountConfig,
        flag: str = "*",
        debug: bool = False,
    ):
        """
        Initialize the camt.054 importer using a configuration object.

        Args:
            config: A Camt054AccountConfig object with account details.
            flag: Transaction flag (default: "*").
            debug: Log every skipped or deduplicated entry (default: False).
        """
        self.account_name = config.account_name
        self.currency = config.currency
        self.iban = normalize_iban(config.iban) if config.iban else None
        self.receivable_account = config.receivable_account
        self.skip_deduplication = config.skip_deduplication
        self.flag = flag
        self.debug = debug

    def _note(self, message: str, *args):
        if self.debug:
            log.info(message, *args)

    def _read_head(self, filepath: str) -> str:
        with open(filepath, "rb") as f:
            return f.read(4096).decode("utf-8", errors="replace")

    def _extract_existing_bank_refs(self, existing_entries: list[data.Directive]) -> set[str]:
        """Collect the ``bank_ref`` metadata of transactions already in the ledger."""
        existing: set[str] = set()
        for entry in existing_entries:
            if isinstance(entry, data.Transaction):
                bank_ref = entry.meta.get("bank_ref")
                if bank_ref:
                    existing.add(bank_ref)
        return existing

    def identify(self, filepath: str) -> bool:
        """Check if the file is a camt.054 notification.

        When an IBAN is configured, also verifies that the file's account IBAN matches.
        This enables multiple importers to handle different bank accounts.
        """
        path = Path(filepath)
        mime_type = beangulp.mimetypes.guess_type(filepath, strict=False)[0]
        if path.suffix.lower() not in VALID_SUFFIXES and mime_type not in VALID_MIME_TYPES:
            return False

        try:
            if not is_camt054(self._read_head(filepath)):
                return False
        except OSError:
            return False

        if self.iban is None:
            return True
        return find_iban(filepath) == self.iban

    def account(self, filepath: str) -> str:
        """Return the account name for the file."""
        return self.account_name

    def filename(self, filepath: str) -> str:
        """Generate a descriptive filename for the imported data.

        E.g., 'camt054.Clinic.notification.xml' for 'Assets:Bank:PostFinance:Clinic'
        """
        account_suffix = self.account_name.split(":")[-1]
        return f"camt054.{account_suffix}.{Path(filepath).name}"

    def date(self, filepath: str) -> datetime.date | None:
        """Extract the latest booking date from the file."""
        statement = read_statement(filepath)
        dates = [t.booking_date for t in statement.transactions if t.booking_date]
        if not dates:
            return datetime.date.today()
        return max(dates)

    def _metadata(self, filepath: str, idx: int, txn: ParsedTransaction) -> dict:
        metadata = data.new_metadata(filepath, idx)
        if txn.reference_number:
            metadata["reference"] = strip_reference(txn.reference_number)
        if txn.bank_reference:
            metadata["bank_ref"] = txn.bank_reference
        if txn.end_to_end_id and txn.end_to_end_id != "NOTPROVIDED":
            metadata["end_to_end_id"] = txn.end_to_end_id
        debtor = txn.debtor_name or txn.ultimate_debtor_name
        if debtor:
            metadata["debtor"] = debtor
        if txn.debtor_iban:
            metadata["debtor_iban"] = txn.debtor_iban
        return metadata

    def finalize(self, txn: data.Transaction, row: ParsedTransaction) -> data.Transaction | None:
        """Book incoming payments with a structured reference against receivables.

        Args:
            txn: The transaction object to finalize.
            row: The parsed camt.054 entry.

        Returns:
            The transaction, with a balancing posting when it settles a receivable.
        """
        if not txn.postings or not self.receivable_account:
            return txn
        if row.is_credit and row.reference_number:
            return self._add_balancing_posting(txn, self.receivable_account)
        return txn

    def _add_balancing_posting(
        self, txn: data.Transaction, account: str
    ) -> data.Transaction:
        opposite_units = Amount(
            -txn.postings[0].units.number, txn.postings[0].units.currency
        )
        balancing_posting = data.Posting(account, opposite_units, None, None, None, None)
        return txn._replace(postings=txn.postings + [balancing_posting])

    def extract(self, filepath: str, existing_entries: list[data.Directive]) -> list[data.Directive]:
        """
        Extract transactions from a camt.054 file.

        Deduplication is performed on the bank's own entry reference
        (``AcctSvcrRef``, stored as ``bank_ref`` metadata). Entries whose
        reference already exists in the ledger are skipped. This can be
        disabled by setting skip_deduplication=True in the config.

        Args:
            filepath: Path to the camt.054 file
            existing_entries: Existing directives from the ledger, used for
                             deduplication.

        Returns:
            List of extracted Beancount transactions, excluding duplicates.
        """
        statement = read_statement(filepath)
        if not statement.transactions:
            self._note("Skipping file %s: no entries found", filepath)
            return []

        existing_refs: set[str] = set()
        if not self.skip_deduplication:
            existing_refs = self._extract_existing_bank_refs(existing_entries)

        entries = []
        skipped_duplicates = 0
        for idx, row in enumerate(statement.transactions, 1):
            if row.booking_date is None:
                self._note("Skipping entry %d in %s due to missing booking date", idx, filepath)
                continue
            if row.bank_reference and row.bank_reference in existing_refs:
                skipped_duplicates += 1
                self._note("Skipping duplicate entry %d (bank_ref: %s)", idx, row.bank_reference)
                continue

            payee = row.debtor_name or row.ultimate_debtor_name
            narration = row.description or (
                f"Payment {strip_reference(row.reference_number)}" if row.reference_number else ""
            )
            units = Amount(row.amount, row.currency or self.currency)
            txn = data.Transaction(
                meta=self._metadata(filepath, idx, row),
                date=row.booking_date,
                flag=self.flag,
                payee=payee,
                narration=narration,
                tags=data.EMPTY_SET,
                links=data.EMPTY_SET,
                postings=[data.Posting(self.account_name, units, None, None, None, None)],
            )
            finalized = self.finalize(txn, row)
            if finalized is None:
                continue
            entries.append(finalized)
            if row.bank_reference:
                existing_refs.add(row.bank_reference)

        if skipped_duplicates:
            self._note("Deduplication: skipped %d duplicate entries", skipped_duplicates)
        return entries


def get_importers() -> list[beangulp.Importer]:
    """Create and return a list of configured importers.

    Example with two bank accounts:
        return [
            Importer(Camt054AccountConfig(
                account_name='Assets:Bank:PostFinance:Clinic',
                iban='CH9300762011623852957',
                receivable_account='Assets:Receivables:Patients',
            )),
            Importer(Camt054AccountConfig(
                account_name='Assets:Bank:UBS:Operating',
                iban='CH5604835012345678009',
            )),
        ]
    """
    return [
        Importer(Camt054AccountConfig(
            account_name='Assets:Bank:Clinic',
            currency='CHF',
            receivable_account='Assets:Receivables:Patients',
        )),
    ]


def main():
    """Entry point for the command-line interface.

    Uses beangulp.Ingest for the identify/extract/archive workflow,
    e.g. ``swiss-billing-camt extract downloads/``.
    """
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    ingest = Ingest(get_importers())
    ingest.main()


if __name__ == '__main__':
    main()
