"""
Concession block locking service.

A lock is an operator flag that keeps a block out of allocation without
touching its quantity or status, e.g. to hold expired entries for review or
refund. Locking is distinct from expiry: an expired block is only marked, a
locked block cannot be used at all.

Audit pairs are mutually exclusive: locking stamps locked_at/locked_by and
clears unlocked_at/unlocked_by, and unlocking does the reverse.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from domain.concession_block import ConcessionBlock
from domain.errors import NotFoundError
from domain.time import Clock, utc_now
from repositories.block_store import BlockFields, BlockStore

logger = logging.getLogger(__name__)


def _lock_fields(block: ConcessionBlock, notes: Optional[str]) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "is_locked": block.is_locked,
        "locked_at": block.locked_at,
        "locked_by": block.locked_by,
        "unlocked_at": block.unlocked_at,
        "unlocked_by": block.unlocked_by,
    }
    # Existing notes are kept unless new ones are given.
    if notes is not None:
        fields["lock_notes"] = notes
    return fields


class LockManager:
    """Locks and unlocks blocks, individually or in bulk for expired ones."""

    def __init__(self, blocks: BlockStore, clock: Clock = utc_now, default_actor: str = "unknown"):
        self._blocks = blocks
        self._clock = clock
        self._default_actor = default_actor

    def _get(self, block_id: str) -> ConcessionBlock:
        block = self._blocks.get(block_id)
        if block is None:
            raise NotFoundError("Concession block", block_id)
        return block

    def _write(self, block_id: str, fields: BlockFields) -> None:
        if not self._blocks.update(block_id, fields):
            raise NotFoundError("Concession block", block_id)

    def lock(self, block_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> ConcessionBlock:
        """
        Lock a block (prevent use even if it has remaining quantity).

        Locking an already locked block re-stamps the audit fields.
        """

        actor = actor or self._default_actor
        updated = self._get(block_id).locked(actor=actor, at=self._clock(), notes=notes)
        self._write(block_id, _lock_fields(updated, notes))
        logger.info("Locked concession block %s (by %s)", block_id, actor)
        return updated

    def unlock(self, block_id: str, actor: Optional[str] = None, notes: Optional[str] = None) -> ConcessionBlock:
        """Unlock a block (allow use again)."""

        actor = actor or self._default_actor
        updated = self._get(block_id).unlocked(actor=actor, at=self._clock(), notes=notes)
        self._write(block_id, _lock_fields(updated, notes))
        logger.info("Unlocked concession block %s (by %s)", block_id, actor)
        return updated

    def update_lock_notes(self, block_id: str, notes: Optional[str], actor: Optional[str] = None) -> ConcessionBlock:
        """Replace a block's lock notes without changing its lock state. Empty clears them."""

        updated = self._get(block_id).with_lock_notes(
            notes or "",
            actor=actor or self._default_actor,
            at=self._clock(),
        )
        self._write(
            block_id,
            {
                "lock_notes": updated.lock_notes,
                "notes_updated_at": updated.notes_updated_at,
                "notes_updated_by": updated.notes_updated_by,
            },
        )
        return updated

    def lock_all_expired(self, customer_id: str, actor: Optional[str] = None) -> int:
        """
        Lock every unlocked block of a customer whose expiry date has passed.

        All locks go out in one batched write. Blocks that are already locked are
        left alone, audit fields included.

        Returns:
            Number of blocks locked (0 is a valid result)
        """

        actor = actor or self._default_actor
        now = self._clock()

        updates: List[Tuple[str, BlockFields]] = []
        for block in self._blocks.query_by_customer(customer_id):
            if block.is_locked or not block.is_past_expiry(now):
                continue
            locked = block.locked(actor=actor, at=now)
            updates.append((block.block_id, _lock_fields(locked, None)))

        if not updates:
            return 0

        # Blocks locked by someone else since the scan keep their audit fields.
        locked_ids = self._blocks.batch_update(updates, expected={"is_locked": False})
        logger.info("Locked %d expired concession blocks for customer %s (by %s)", len(locked_ids), customer_id, actor)
        return len(locked_ids)


__all__ = [
    "LockManager",
]
