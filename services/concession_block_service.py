"""
Concession block lifecycle service.

Handles:
- Creating blocks at purchase (and gifted blocks)
- Consuming one entry at check-in and restoring it when a check-in is reversed
- Unlock-gated deletion
- Listing a customer's blocks for display

Every mutation is followed by a full balance recompute for the owning customer.
The block write and the balance write are two separate calls: if the second one
fails the block change stands and the error is surfaced, and any later recompute
repairs the aggregate.

Quantity changes are written as conditional updates keyed on the
remaining_quantity and status that were read, so two concurrent check-ins
against the same block cannot both write the same decremented value, and a
check-in racing the expiry sweep cannot write a stale status back.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional, Union

from domain.concession_block import (
    GIFTED_PACKAGE,
    ConcessionBlock,
    PackageRef,
    derive_status,
    make_block_id,
)
from domain.customer import UNKNOWN_CUSTOMER_NAME
from domain.errors import InvariantError, LockedError, NotFoundError, StoreError
from domain.time import Clock, add_months, require_utc_timestamp, utc_now
from repositories.block_store import BlockStore, CustomerStore
from services.balance_service import BalanceAggregator

logger = logging.getLogger(__name__)

# Attempts at a conditional quantity update before giving up on a hot block.
MAX_CONDITIONAL_ATTEMPTS: int = 3


def package_expiry(purchase_date: datetime, expiry_months: Optional[int]) -> Optional[datetime]:
    """
    Expiry date for a package valid for `expiry_months` calendar months.

    None or 0 months means the block never expires.
    """

    require_utc_timestamp("purchase_date", purchase_date)
    if not expiry_months:
        return None
    return add_months(purchase_date, expiry_months)


class BlockLifecycle:
    """Creates blocks and moves their remaining quantity up and down."""

    def __init__(
        self,
        blocks: BlockStore,
        customers: CustomerStore,
        balances: BalanceAggregator,
        clock: Clock = utc_now,
        default_actor: str = "unknown",
    ):
        self._blocks = blocks
        self._customers = customers
        self._balances = balances
        self._clock = clock
        self._default_actor = default_actor

    def _get(self, block_id: str) -> ConcessionBlock:
        block = self._blocks.get(block_id)
        if block is None:
            raise NotFoundError("Concession block", block_id)
        return block

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
        """
        Create a new concession block for a customer.

        A block whose expiry date is already in the past is created as expired
        (e.g. a backdated purchase entered after the fact). Without an explicit
        expiry_date, `expiry_months` is counted from the purchase date.

        Returns:
            The new block ID

        Raises:
            InvariantError: quantity < 1
            NotFoundError: the customer does not exist
            StoreError: the backend failed
        """

        if quantity < 1:
            raise InvariantError(f"quantity must be >= 1, got {quantity}")

        now = self._clock()
        actual_purchase_date = purchase_date or now
        require_utc_timestamp("purchase_date", actual_purchase_date)
        if expiry_date is None:
            expiry_date = package_expiry(actual_purchase_date, expiry_months)
        if expiry_date is not None:
            require_utc_timestamp("expiry_date", expiry_date)

        customer = self._customers.get(customer_id)
        if customer is None:
            raise NotFoundError("Customer", customer_id)

        customer_name = customer.full_name()
        if customer_name == UNKNOWN_CUSTOMER_NAME:
            logger.warning("Customer %s has no name; labelling concession block as %r", customer_id, customer_name)

        block = ConcessionBlock(
            block_id=make_block_id(
                customer.first_name,
                customer.last_name,
                actual_purchase_date,
                int(now.timestamp() * 1000),
            ),
            customer_id=customer_id,
            customer_name=customer_name,
            package=package,
            original_quantity=quantity,
            remaining_quantity=quantity,
            purchase_date=actual_purchase_date,
            expiry_date=expiry_date,
            status=derive_status(quantity, expiry_date, now),
            price=Decimal(str(price)),
            payment_method=payment_method,
            transaction_ref=transaction_ref,
            notes=notes,
            created_at=now,
            created_by=actor or self._default_actor,
        )

        self._blocks.put(block)
        logger.info(
            "Created concession block %s for customer %s (%d x %s, status=%s)",
            block.block_id,
            customer_id,
            quantity,
            package.package_id,
            block.status.value,
        )

        self._balances.recompute(customer_id)
        return block.block_id

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
        """Create a free block of gifted entries (price 0, no payment method)."""

        return self.create(
            customer_id,
            GIFTED_PACKAGE,
            quantity,
            Decimal("0"),
            "none",
            expiry_date,
            purchase_date=gift_date,
            transaction_ref=transaction_ref,
            notes=notes,
            actor=actor,
        )

    def _change_quantity(
        self,
        block_id: str,
        transition: Callable[[ConcessionBlock], ConcessionBlock],
        action: str,
    ) -> ConcessionBlock:
        for attempt in range(1, MAX_CONDITIONAL_ATTEMPTS + 1):
            current = self._get(block_id)
            updated = transition(current)

            applied = self._blocks.update(
                block_id,
                {"remaining_quantity": updated.remaining_quantity, "status": updated.status},
                expected={"remaining_quantity": current.remaining_quantity, "status": current.status},
            )
            if applied:
                self._balances.recompute(current.customer_id)
                return updated

            logger.warning(
                "Concession block %s changed during %s (attempt %d/%d)",
                block_id,
                action,
                attempt,
                MAX_CONDITIONAL_ATTEMPTS,
            )

        raise StoreError(
            f"Concession block {block_id} kept changing during {action}; "
            f"gave up after {MAX_CONDITIONAL_ATTEMPTS} attempts"
        )

    def consume(self, block_id: str) -> ConcessionBlock:
        """
        Use one entry from a block.

        Does not check lock or expiry state: callers select the block through
        AllocationPolicy.

        Raises:
            NotFoundError: the block does not exist
            InvariantError: the block is already depleted
        """

        return self._change_quantity(block_id, lambda block: block.consumed(), "consume")

    def restore(self, block_id: str) -> ConcessionBlock:
        """
        Give one entry back to a block (e.g. a deleted or edited check-in).

        Raises:
            NotFoundError: the block does not exist
            InvariantError: the block is already at its original quantity
        """

        return self._change_quantity(block_id, lambda block: block.restored(self._clock()), "restore")

    def delete(self, block_id: str) -> ConcessionBlock:
        """
        Delete an unlocked block and recompute the owner's balance.

        Returns the deleted block so callers can clean up linked records
        (e.g. its transaction_ref).

        Raises:
            NotFoundError: the block does not exist
            LockedError: the block is locked
        """

        block = self._get(block_id)
        if block.is_locked:
            raise LockedError(block_id, "Cannot delete a locked concession block. Unlock it first.")

        if not self._blocks.delete(block_id):
            # Lost a race with a lock or another delete; report what the block is now.
            current = self._blocks.get(block_id)
            if current is None:
                raise NotFoundError("Concession block", block_id)
            if current.is_locked:
                raise LockedError(block_id, "Cannot delete a locked concession block. Unlock it first.")
            raise StoreError(f"Failed to delete concession block {block_id}")

        logger.info("Deleted concession block %s for customer %s", block_id, block.customer_id)
        self._balances.recompute(block.customer_id)
        return block

    def list_blocks(self, customer_id: str) -> List[ConcessionBlock]:
        """All of a customer's blocks, most recent purchase first."""

        blocks = self._blocks.query_by_customer(customer_id)
        return sorted(blocks, key=lambda b: (b.purchase_date, b.block_id), reverse=True)


__all__ = [
    "BlockLifecycle",
    "MAX_CONDITIONAL_ATTEMPTS",
    "package_expiry",
]
