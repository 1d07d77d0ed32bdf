"""
Persistence contracts used by the concession ledger.

The ledger treats the hosted backend as a document store: per-row
read/update/delete, query-by-field, and a batched multi-row update. No
cross-row transaction is assumed beyond what `batch_update` gives for its
own set of writes.

Field mappings passed to `update`/`batch_update` are keyed by ConcessionBlock
attribute names (e.g. "remaining_quantity", "status", "locked_at"); adapters
translate them to their column names and wire formats.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Tuple

from domain.concession_block import ConcessionBlock
from domain.customer import ConcessionBalance, Customer

BlockFields = Mapping[str, Any]


class BlockStore(Protocol):
    def get(self, block_id: str) -> Optional[ConcessionBlock]:
        """Fetch a block, or None if it does not exist."""

    def put(self, block: ConcessionBlock) -> None:
        """Insert a new block."""

    def update(self, block_id: str, fields: BlockFields, expected: Optional[BlockFields] = None) -> bool:
        """
        Apply a partial update.

        When `expected` is given, the write only applies if every expected field
        still holds its expected value. Returns False if no row was updated.
        """

    def delete(self, block_id: str) -> bool:
        """Delete a block only if it is unlocked. Returns False if nothing was deleted."""

    def query_by_customer(self, customer_id: str) -> List[ConcessionBlock]:
        """All blocks owned by a customer, in no particular order."""

    def query_active_expiring(self, as_of: datetime) -> List[ConcessionBlock]:
        """Blocks with status = active and expiry_date <= as_of."""

    def batch_update(
        self,
        updates: Sequence[Tuple[str, BlockFields]],
        expected: Optional[BlockFields] = None,
    ) -> List[str]:
        """
        Apply several partial updates as one batch.

        When `expected` is given, each row is only written if it still holds
        every expected value; rows changed by another writer since they were
        read are skipped. Returns the IDs of the rows actually updated.
        """


class CustomerStore(Protocol):
    def get(self, customer_id: str) -> Optional[Customer]:
        """Fetch a customer, or None if it does not exist."""

    def update_balance(self, customer_id: str, balance: ConcessionBalance) -> None:
        """Write the derived balance fields to the customer record."""


__all__ = [
    "BlockFields",
    "BlockStore",
    "CustomerStore",
]
