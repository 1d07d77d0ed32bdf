"""
Concession expiry maintenance.

Intended to run on a schedule (see scripts/sweep_expired_blocks.py). Moves
active blocks whose expiry date has passed to status 'expired' in one batched
write, then recomputes the balance once per affected customer.

The batched write only touches rows that are still active when it lands: a
check-in that depleted a block after the candidate query wins, and that block
is neither counted nor recomputed here.

Failure semantics are best-effort: only customers whose rows were actually
updated are recomputed, and the reported count is what was transitioned, not
what was attempted.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Set, Tuple

from domain.concession_block import BlockStatus
from domain.errors import LedgerError, StoreError
from domain.time import Clock, utc_now
from repositories.block_store import BlockFields, BlockStore
from services.balance_service import BalanceAggregator

logger = logging.getLogger(__name__)


class ExpiryMaintainer:
    """Periodic sweep that marks past-expiry blocks as expired."""

    def __init__(self, blocks: BlockStore, balances: BalanceAggregator, clock: Clock = utc_now):
        self._blocks = blocks
        self._balances = balances
        self._clock = clock

    def sweep(self) -> int:
        """
        Mark expired blocks.

        Returns:
            Number of blocks transitioned to expired

        Raises:
            StoreError: the batched write failed, or one or more balance
                recomputes failed for transient backend reasons after the
                blocks were transitioned
            NotFoundError / InvariantError: a recompute hit missing or
                inconsistent data; raised after every other affected
                customer has been recomputed
        """

        now = self._clock()
        # The query is inclusive; a block is only past expiry strictly after its expiry date.
        candidates = [b for b in self._blocks.query_active_expiring(now) if b.is_past_expiry(now)]
        if not candidates:
            logger.info("Expiry sweep: no active blocks past expiry")
            return 0

        owner_by_block: Dict[str, str] = {}
        updates: List[Tuple[str, BlockFields]] = []
        for block in candidates:
            expired = block.expired()
            owner_by_block[block.block_id] = block.customer_id
            updates.append((block.block_id, {"status": expired.status}))

        updated_ids = self._blocks.batch_update(updates, expected={"status": BlockStatus.ACTIVE})
        if len(updated_ids) < len(updates):
            logger.warning(
                "Expiry sweep: %d of %d blocks transitioned (others changed since they were read)",
                len(updated_ids),
                len(updates),
            )

        # One recompute per distinct customer, in first-seen order.
        affected: List[str] = []
        seen: Set[str] = set()
        for block_id in updated_ids:
            customer_id = owner_by_block.get(block_id)
            if customer_id is not None and customer_id not in seen:
                seen.add(customer_id)
                affected.append(customer_id)

        unavailable: List[str] = []
        data_error: Optional[LedgerError] = None
        for customer_id in affected:
            try:
                self._balances.recompute(customer_id)
            except StoreError:
                unavailable.append(customer_id)
            except LedgerError as e:
                if data_error is None:
                    data_error = e

        logger.info(
            "Expiry sweep: %d blocks marked %s across %d customers",
            len(updated_ids),
            BlockStatus.EXPIRED.value,
            len(affected),
        )

        if data_error is not None:
            raise data_error
        if unavailable:
            raise StoreError(
                f"Expired {len(updated_ids)} concession blocks but balance recompute failed for "
                f"{len(unavailable)} customers: {', '.join(unavailable)}"
            )
        return len(updated_ids)


__all__ = [
    "ExpiryMaintainer",
]
