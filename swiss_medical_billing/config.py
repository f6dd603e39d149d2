"""Configuration objects for matching, MediData transmission and rendering."""

import os
from dataclasses import dataclass
from decimal import Decimal

DEFAULT_CURRENCY = "CHF"
DEFAULT_SENDER_GLN = "2099988899483"
DEFAULT_INTERMEDIATE_GLN = "7601001304307"
TG_NO_TRANSMISSION_GLN = "2000000000008"
SIMULATOR_GLN = "2099988876514"


@dataclass
class MatchingConfig:
    """Settings for reconciling camt.054 credits against the ledger.

    Attributes:
        tolerance: Amount within which a payment counts as exact (default 0.01).
        currency: Currency used in match notes (e.g., 'CHF').
        skip_deduplication: When True, do not classify repeated bank references
                    as ``duplicate``. Useful for forcing a re-import.
        max_conflict_retries: How often a write that lost against a concurrent
                    update is re-read and re-classified before giving up.
        timeout_base_seconds: Fixed part of the batch deadline.
        timeout_per_transaction_seconds: Added to the deadline per transaction
                    in the statement, so large statements get more time.
    """
    tolerance: Decimal = Decimal("0.01")
    currency: str = DEFAULT_CURRENCY
    skip_deduplication: bool = False
    max_conflict_retries: int = 3
    timeout_base_seconds: float = 30.0
    timeout_per_transaction_seconds: float = 1.0

    def batch_timeout(self, transaction_count: int) -> float:
        """Return the deadline in seconds for a batch of ``transaction_count``."""
        return self.timeout_base_seconds + self.timeout_per_transaction_seconds * transaction_count


@dataclass
class MediDataConfig:
    """Transport addressing for MediData submissions.

    Attributes:
        sender_gln: GLN of the sending clinic account on the MediData network.
        intermediate_gln: GLN of the MediData intermediate (``via``).
        tg_no_transmission_gln: Transport receiver for Tiers Garant invoices,
                    which are not forwarded to the insurer.
        simulator_gln: Receiver used when an invoice carries no insurer GLN.
        simulator_flag: When set, a ``invoiceresponsegenerator`` comment is
                    injected after the XML declaration so the test platform
                    answers with the requested response type.
    """
    sender_gln: str = DEFAULT_SENDER_GLN
    intermediate_gln: str = DEFAULT_INTERMEDIATE_GLN
    tg_no_transmission_gln: str = TG_NO_TRANSMISSION_GLN
    simulator_gln: str = SIMULATOR_GLN
    simulator_flag: str | None = None

    @classmethod
    def from_env(cls, environ=None) -> "MediDataConfig":
        """Build a config from ``MEDIDATA_*`` environment variables."""
        env = os.environ if environ is None else environ
        return cls(
            sender_gln=env.get("MEDIDATA_SENDER_GLN") or DEFAULT_SENDER_GLN,
            intermediate_gln=env.get("MEDIDATA_INTERMEDIATE_GLN") or DEFAULT_INTERMEDIATE_GLN,
            tg_no_transmission_gln=env.get("MEDIDATA_TG_GLN") or TG_NO_TRANSMISSION_GLN,
            simulator_gln=env.get("MEDIDATA_SIMULATOR_GLN") or SIMULATOR_GLN,
            simulator_flag=env.get("MEDIDATA_SIMULATOR_FLAG") or None,
        )
