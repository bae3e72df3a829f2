"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly.
All primary keys are TEXT (UUID strings generated via uuid4()).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from ..parsers.base import DESCRIPTION_SEPARATOR, CanonicalTransaction

MERCHANT_MAX_LENGTH = 100

# Card-terminal and channel prefixes that precede the merchant name.
_MERCHANT_PREFIX_RE = re.compile(
    r"^(?:(?:EFTPOS|VISA|MASTERCARD|POS|PURCHASE|DEBIT|CARD"
    r"|INTERNET BANKING|ONLINE)\b[\s:\-*]*)+",
    re.IGNORECASE,
)


def _new_id() -> str:
    return str(uuid4())


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Import:
    owner: str
    file_name: str
    file_hash: str
    id: str = field(default_factory=_new_id)
    record_count: int | None = None
    status: str = "pending"
    error_message: str | None = None
    created_at: str = field(default_factory=_now)
    completed_at: str | None = None


@dataclass
class Transaction:
    owner: str
    date: str
    amount: float
    description: str
    source: str
    id: str = field(default_factory=_new_id)
    merchant: str | None = None
    category: str | None = None
    is_income: bool = False
    account: str | None = None
    import_id: str | None = None
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)

    @classmethod
    def from_canonical(
        cls,
        txn: CanonicalTransaction,
        import_id: str | None = None,
        account: str | None = None,
    ) -> Transaction:
        """Build the persisted record; is_income and merchant are derived here."""
        return cls(
            owner=txn.owner,
            date=txn.date,
            amount=txn.amount,
            description=txn.description,
            source=txn.source.value,
            merchant=extract_merchant(txn.description),
            is_income=txn.amount > 0,
            account=account,
            import_id=import_id,
        )


def extract_merchant(description: str) -> str | None:
    """Best-effort merchant name from a bank description.

    Strips card-terminal prefixes ("EFTPOS", "VISA PURCHASE", ...) and keeps
    the first description segment.
    """
    if not description:
        return None
    first = description.split(DESCRIPTION_SEPARATOR)[0]
    merchant = _MERCHANT_PREFIX_RE.sub("", first).strip()
    if not merchant:
        merchant = first.strip()
    return merchant[:MERCHANT_MAX_LENGTH] or None
