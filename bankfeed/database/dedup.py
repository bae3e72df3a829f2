"""Signature-based deduplication for transaction imports.

A transaction's signature is ``date|amount|description`` (amount to two
decimals, trimmed, lower-cased). Two checks run in order, first match wins:

1. Stored: the signature already exists for this owner in the store
2. In-batch: the signature appeared earlier in the same batch

Matching is exact string equality. Near-duplicates (different description
wording for the same charge) are not collapsed, and signatures are scoped
per owner so two users importing the same statement never collide.

Stored signatures are fetched once per batch. Two concurrent batches for the
same owner can therefore both insert a row that neither has seen yet.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field

from ..parsers.base import CanonicalTransaction, compute_signature
from .store import TransactionStore

logger = logging.getLogger(__name__)


class SignatureFetchError(Exception):
    """Existing signatures could not be loaded; the batch must not proceed."""


@dataclass
class DedupResult:
    """Outcome of deduplicating one batch, in input order."""
    unique: list[CanonicalTransaction] = field(default_factory=list)
    duplicates: list[CanonicalTransaction] = field(default_factory=list)
    in_batch_duplicates: list[CanonicalTransaction] = field(default_factory=list)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates) + len(self.in_batch_duplicates)


class DedupEngine:
    """Filter a batch down to transactions not already stored for the owner."""

    def __init__(self, store: TransactionStore):
        self.store = store

    async def existing_signatures(self, owner: str) -> set[str]:
        try:
            rows = await self.store.fetch_signature_fields(owner)
            # Malformed stored rows fail the fetch too
            return {
                compute_signature(r["date"], float(r["amount"]), r["description"] or "")
                for r in rows
            }
        except Exception as e:
            raise SignatureFetchError(
                f"could not load existing transactions for '{owner}': {e}"
            ) from e

    async def filter_new(
        self, transactions: list[CanonicalTransaction], owner: str
    ) -> DedupResult:
        """Split a batch into unique, stored-duplicate and in-batch-duplicate.

        Raises:
            SignatureFetchError: If existing signatures cannot be fetched.
        """
        result = DedupResult()
        if not transactions:
            return result

        stored = await self.existing_signatures(owner)
        seen: set[str] = set()
        for txn in transactions:
            sig = txn.signature
            if sig in stored:
                result.duplicates.append(txn)
            elif sig in seen:
                result.in_batch_duplicates.append(txn)
            else:
                seen.add(sig)
                result.unique.append(txn)

        logger.debug(
            "Dedup for %s: %d unique, %d stored duplicate(s), %d in-batch duplicate(s)",
            owner, len(result.unique), len(result.duplicates),
            len(result.in_batch_duplicates),
        )
        return result


def compute_content_hash(content: bytes | str) -> str:
    """SHA256 of the raw file content, recorded on the import log."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()
