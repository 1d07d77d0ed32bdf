"""
Concession allocation service.

Decides which block the next entry for a customer should come from. This is a
point-in-time, read-only query: it never writes, and two callers racing on the
same customer may both be handed the same block. The conditional write in
BlockLifecycle.consume keeps the quantity correct in that case.
"""

from __future__ import annotations

from typing import List, Optional

from domain.allocation import consumable_blocks, select_next_block
from domain.concession_block import ConcessionBlock
from repositories.block_store import BlockStore


class AllocationPolicy:
    """FIFO selection over a customer's usable blocks."""

    def __init__(self, blocks: BlockStore):
        self._blocks = blocks

    def next_available(self, customer_id: str, allow_expired: bool = False) -> Optional[ConcessionBlock]:
        """
        Get the next available block for a customer (oldest purchase first).

        Returns None when nothing can be consumed. Store failures propagate as
        StoreError rather than being reported as "nothing available".
        """

        return select_next_block(self._blocks.query_by_customer(customer_id), allow_expired=allow_expired)

    def available_blocks(self, customer_id: str, allow_expired: bool = False) -> List[ConcessionBlock]:
        """Every block allocation could pick, in the order it would pick them."""

        return consumable_blocks(self._blocks.query_by_customer(customer_id), allow_expired=allow_expired)


__all__ = [
    "AllocationPolicy",
]
