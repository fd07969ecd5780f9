"""Remote task ledger access."""

from .client import Attachment, LedgerClient, LedgerError

__all__ = ["Attachment", "LedgerClient", "LedgerError"]
