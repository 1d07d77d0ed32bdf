"""
Domain: FIFO allocation of concession entries (pure).

Selection rule:
- Candidates have remaining_quantity > 0 and are not locked.
- Expired blocks are candidates only when allow_expired is set.
- Candidates are ordered by purchase_date ascending (oldest purchase first,
  regardless of expiry state), ties broken by block_id so selection is reproducible.

A customer's oldest money is always spent first.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from .concession_block import ConcessionBlock


def fifo_key(block: ConcessionBlock) -> Tuple[datetime, str]:
    return (block.purchase_date, block.block_id)


def consumable_blocks(blocks: Iterable[ConcessionBlock], *, allow_expired: bool) -> List[ConcessionBlock]:
    """All blocks allocation may pick from, in FIFO order."""

    candidates = [b for b in blocks if b.is_consumable(allow_expired=allow_expired)]
    return sorted(candidates, key=fifo_key)


def select_next_block(blocks: Iterable[ConcessionBlock], *, allow_expired: bool) -> Optional[ConcessionBlock]:
    """Return the block the next entry should come from, or None if nothing is available."""

    candidates = consumable_blocks(blocks, allow_expired=allow_expired)
    return candidates[0] if candidates else None


__all__ = [
    "consumable_blocks",
    "fifo_key",
    "select_next_block",
]
