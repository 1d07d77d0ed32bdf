"""
Concession ledger facade.

Wires the ledger components over one block store, one customer store and one
clock, and exposes the calling surface used by check-in, purchase and admin
tools. All quantity, status and lock writes go through here so that every
mutation is paired with a balance recompute.

Example:
    ledger = build_supabase_ledger()
    block = ledger.consume_next(student_id)
    if block is None:
        # Nothing to consume: offer a casual entry instead
        ...
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from domain.concession_block import ConcessionBlock, PackageRef
from domain.customer import ConcessionBalance
from domain.errors import InvariantError
from domain.time import Clock, utc_now
from repositories.block_store import BlockStore, CustomerStore
from services.allocation_service import AllocationPolicy
from services.balance_service import BalanceAggregator
from services.concession_block_service import MAX_CONDITIONAL_ATTEMPTS, BlockLifecycle
from services.expiry_service import ExpiryMaintainer
from services.lock_service import LockManager

logger = logging.getLogger(__name__)


class ConcessionLedger:
    def __init__(
        self,
        blocks: BlockStore,
        customers: CustomerStore,
        clock: Clock = utc_now,
        default_actor: str = "unknown",
    ):
        self.customers = customers
        self.balances = BalanceAggregator(blocks, customers)
        self.lifecycle = BlockLifecycle(blocks, customers, self.balances, clock=clock, default_actor=default_actor)
        self.allocation = AllocationPolicy(blocks)
        self.locks = LockManager(blocks, clock=clock, default_actor=default_actor)
        self.expiry = ExpiryMaintainer(blocks, self.balances, clock=clock)

    # Lifecycle

    def create(
        self,
        customer_id: str,
        package: PackageRef,
        quantity: int,
        price: Union[Decimal, int, float, str],
        payment_method: Optional[str],
        expiry_date: Optional[datetime],
        purchase_date: Optional[datetime] = None,
        transaction_ref: Optional[str] = None,
        notes: str = "",
        actor: Optional[str] = None,
        expiry_months: Optional[int] = None,
    ) -> str:
        return self.lifecycle.create(
            customer_id,
            package,
            quantity,
            price,
            payment_method,
            expiry_date,
            purchase_date=purchase_date,
            transaction_ref=transaction_ref,
            notes=notes,
            actor=actor,
            expiry_months=expiry_months,
        )

    def gift(
        self,
        customer_id: str,
        quantity: int,
        expiry_date: Optional[datetime],
        gift_date: Optional[datetime] = None,
        notes: str = "",
        transaction_ref: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> str:
        return self.lifecycle.gift(
            customer_id,
            quantity,
            expiry_date,
            gift_date=gift_date,
            notes=notes,
            transaction_ref=transaction_ref,
            actor=actor,
        )

    def consume(self, block_id: str) -> ConcessionBlock:
        return self.lifecycle.consume(block_id)

    def restore(self, block_id: str) -> ConcessionBlock:
        return self.lifecycle.restore(block_id)

    def delete(self, block_id: str) -> ConcessionBlock:
        return self.lifecycle.delete(block_id)

    def list_blocks(self, customer_id: str) -> List[ConcessionBlock]:
        return self.lifecycle.list_blocks(customer_id)

    # Allocation

    def next_available(self, customer_id: str, allow_expired: bool = False) -> Optional[ConcessionBlock]:
        return self.allocation.next_available(customer_id, allow_expired=allow_expired)

    def consume_next(self, customer_id: str, allow_expired: bool = False) -> Optional[ConcessionBlock]:
        """
        Select the next block FIFO and use one entry from it (check-in helper).

        If the selected block runs out between selection and consumption (another
        check-in got there first), selection is repeated against fresh state.

        Returns:
            The block after consumption, or None if nothing was available
        """

        for attempt in range(1, MAX_CONDITIONAL_ATTEMPTS + 1):
            block = self.allocation.next_available(customer_id, allow_expired=allow_expired)
            if block is None:
                return None
            try:
                return self.lifecycle.consume(block.block_id)
            except InvariantError:
                if attempt == MAX_CONDITIONAL_ATTEMPTS:
                    raise
                logger.warning(
                    "Concession block %s was depleted before it could be used; selecting again",
                    block.block_id,
                )
        return None

    # Locks

    def lock(self, block_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> ConcessionBlock:
        return self.locks.lock(block_id, actor=actor, notes=notes)

    def unlock(self, block_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> ConcessionBlock:
        return self.locks.unlock(block_id, actor=actor, notes=notes)

    def update_lock_notes(self, block_id: str, notes: Optional[str], actor: Optional[str] = None) -> ConcessionBlock:
        return self.locks.update_lock_notes(block_id, notes, actor=actor)

    def lock_all_expired(self, customer_id: str, actor: Optional[str] = None) -> int:
        return self.locks.lock_all_expired(customer_id, actor=actor)

    # Maintenance

    def sweep(self) -> int:
        return self.expiry.sweep()

    def recompute(self, customer_id: str) -> ConcessionBalance:
        return self.balances.recompute(customer_id)


def build_supabase_ledger() -> ConcessionLedger:
    """Build a ledger against the configured Supabase project (reads .env on first use)."""

    from repositories.client import (
        CONCESSION_BLOCKS_TABLE,
        CUSTOMERS_TABLE,
        LEDGER_ACTOR,
        supabase,
    )
    from repositories.concession_block_repository import SupabaseBlockStore
    from repositories.customer_repository import SupabaseCustomerStore

    return ConcessionLedger(
        SupabaseBlockStore(supabase, CONCESSION_BLOCKS_TABLE),
        SupabaseCustomerStore(supabase, CUSTOMERS_TABLE),
        default_actor=LEDGER_ACTOR,
    )


__all__ = [
    "ConcessionLedger",
    "build_supabase_ledger",
]
