"""
Balance aggregation service.

Keeps the customer's cached balance fields (concession_balance,
expired_concessions) in line with their concession blocks.

The balance is treated as a materialized view: every refresh re-reads the full
block set and rewrites both fields. There is no incremental path, so calling
`recompute` again always repairs whatever a crashed or racing writer left behind.
A failed recompute never rolls back the block write that preceded it.
"""

from __future__ import annotations

import logging

from domain.customer import ConcessionBalance
from domain.errors import LedgerError
from repositories.block_store import BlockStore, CustomerStore

logger = logging.getLogger(__name__)


class BalanceAggregator:
    """Recomputes and persists a customer's derived balance from their blocks."""

    def __init__(self, blocks: BlockStore, customers: CustomerStore):
        self._blocks = blocks
        self._customers = customers

    def compute(self, customer_id: str) -> ConcessionBalance:
        """Derive the balance from the current block set without writing it."""

        return ConcessionBalance.from_blocks(self._blocks.query_by_customer(customer_id))

    def recompute(self, customer_id: str) -> ConcessionBalance:
        """
        Recompute the customer's balance from scratch and write it back.

        Idempotent and safe to call redundantly.

        Raises:
            NotFoundError: the customer record does not exist
            StoreError: reading blocks or writing the customer failed
        """

        try:
            balance = self.compute(customer_id)
            self._customers.update_balance(customer_id, balance)
        except LedgerError:
            logger.error("Failed to update concession balance for customer %s", customer_id, exc_info=True)
            raise

        logger.debug(
            "Concession balance for customer %s: total=%d expired=%d",
            customer_id,
            balance.concession_balance,
            balance.expired_concessions,
        )
        return balance


__all__ = [
    "BalanceAggregator",
]
