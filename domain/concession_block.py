"""
Domain: Concession blocks (prepaid entry bundles).

Contract excerpts implemented here:
- 0 <= remaining_quantity <= original_quantity at all times.
- status = depleted iff remaining_quantity = 0.
- status = expired only if expiry_date is set, expiry_date < now and remaining_quantity > 0.
- Locked blocks are excluded from consumption regardless of status.
- A block never changes owner (customer_id) or package.

Status is redundant with (remaining_quantity, expiry_date, now) but persisted for
queryability. It is only ever computed through `derive_status` at write time so it
cannot drift from the fields that determine it.

This module contains only pure domain entities/value objects: no I/O, no database, no frameworks.
All timestamps must be passed explicitly.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from .errors import InvariantError
from .time import require_utc_timestamp


class BlockStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    DEPLETED = "depleted"


@dataclass(frozen=True, slots=True)
class PackageRef:
    """Identifier + display name of the purchased package (opaque to the ledger)."""

    package_id: str
    name: str


GIFTED_PACKAGE = PackageRef(package_id="gifted-concessions", name="Gifted Concessions")


def derive_status(remaining_quantity: int, expiry_date: Optional[datetime], as_of: datetime) -> BlockStatus:
    """
    Compute a block's status from the fields that determine it.

    Depletion wins over expiry: once a block has nothing left, its expiry date is
    kept for display only.
    """

    require_utc_timestamp("as_of", as_of)
    if remaining_quantity == 0:
        return BlockStatus.DEPLETED
    if expiry_date is not None and expiry_date < as_of:
        return BlockStatus.EXPIRED
    return BlockStatus.ACTIVE


def _slug(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]", "-", value.lower())
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-") or "unknown"


def make_block_id(
    first_name: Optional[str],
    last_name: Optional[str],
    purchase_date: datetime,
    timestamp_ms: int,
) -> str:
    """
    Build a readable, unique block ID: `first-last-purchased-YYYY-MM-DD-<ms>`.

    The millisecond suffix keeps IDs unique when one customer buys several
    blocks on the same day.
    """

    require_utc_timestamp("purchase_date", purchase_date)
    first = _slug(first_name or "Unknown")
    last = _slug(last_name or "Unknown")
    return f"{first}-{last}-purchased-{purchase_date.date().isoformat()}-{timestamp_ms}"


@dataclass(frozen=True, slots=True)
class ConcessionBlock:
    """
    Immutable snapshot of one purchased bundle of entries.

    Transitions (consume, restore, lock, unlock, expire) return new instances;
    the original snapshot is never modified.
    """

    block_id: str
    customer_id: str
    package: PackageRef
    original_quantity: int
    remaining_quantity: int
    purchase_date: datetime
    status: BlockStatus
    expiry_date: Optional[datetime] = None
    customer_name: str = "Unknown"

    # Lock state and audit pairs (mutually exclusive: stamping one clears the other)
    is_locked: bool = False
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    unlocked_at: Optional[datetime] = None
    unlocked_by: Optional[str] = None
    lock_notes: Optional[str] = None
    notes_updated_at: Optional[datetime] = None
    notes_updated_by: Optional[str] = None

    # Provenance (opaque to ledger logic)
    price: Decimal = Decimal("0")
    payment_method: Optional[str] = None
    transaction_ref: Optional[str] = None
    notes: str = ""
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    def __post_init__(self) -> None:
        if self.original_quantity < 1:
            raise InvariantError("original_quantity must be >= 1")
        if not 0 <= self.remaining_quantity <= self.original_quantity:
            raise InvariantError(
                f"remaining_quantity must be within [0, {self.original_quantity}], "
                f"got {self.remaining_quantity}"
            )
        if (self.status == BlockStatus.DEPLETED) != (self.remaining_quantity == 0):
            raise InvariantError("status must be 'depleted' iff remaining_quantity is 0")
        if self.status == BlockStatus.EXPIRED and self.expiry_date is None:
            raise InvariantError("a block without an expiry date cannot be 'expired'")

        require_utc_timestamp("purchase_date", self.purchase_date)
        for name in ("expiry_date", "locked_at", "unlocked_at", "notes_updated_at", "created_at"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)

    @property
    def is_depleted(self) -> bool:
        return self.remaining_quantity == 0

    def is_past_expiry(self, as_of: datetime) -> bool:
        """True if the block has an expiry date strictly before `as_of`."""

        require_utc_timestamp("as_of", as_of)
        return self.expiry_date is not None and self.expiry_date < as_of

    def is_consumable(self, *, allow_expired: bool) -> bool:
        """Whether allocation may pick this block for the next entry."""

        if self.remaining_quantity <= 0 or self.is_locked:
            return False
        if self.status == BlockStatus.EXPIRED and not allow_expired:
            return False
        return True

    def consumed(self) -> "ConcessionBlock":
        """
        Return a new block with one entry used.

        Lock and expiry are not checked here; the caller picked the block.
        """

        if self.remaining_quantity == 0:
            raise InvariantError(f"Concession block {self.block_id} is already depleted")
        remaining = self.remaining_quantity - 1
        status = BlockStatus.DEPLETED if remaining == 0 else self.status
        return replace(self, remaining_quantity=remaining, status=status)

    def restored(self, as_of: datetime) -> "ConcessionBlock":
        """Return a new block with one entry given back (e.g. a reversed check-in)."""

        if self.remaining_quantity >= self.original_quantity:
            raise InvariantError(
                f"Cannot restore concession block {self.block_id}: already at original quantity "
                f"({self.original_quantity})"
            )
        remaining = self.remaining_quantity + 1
        status = self.status
        if status == BlockStatus.DEPLETED:
            status = derive_status(remaining, self.expiry_date, as_of)
        return replace(self, remaining_quantity=remaining, status=status)

    def expired(self) -> "ConcessionBlock":
        """Return a new block marked expired (quantity untouched)."""

        if self.status != BlockStatus.ACTIVE:
            raise InvariantError(f"Only active blocks can expire, {self.block_id} is {self.status.value}")
        if self.expiry_date is None:
            raise InvariantError(f"Concession block {self.block_id} has no expiry date")
        return replace(self, status=BlockStatus.EXPIRED)

    def locked(self, *, actor: str, at: datetime, notes: Optional[str] = None) -> "ConcessionBlock":
        require_utc_timestamp("locked_at", at)
        return replace(
            self,
            is_locked=True,
            locked_at=at,
            locked_by=actor,
            unlocked_at=None,
            unlocked_by=None,
            lock_notes=notes if notes is not None else self.lock_notes,
        )

    def unlocked(self, *, actor: str, at: datetime, notes: Optional[str] = None) -> "ConcessionBlock":
        require_utc_timestamp("unlocked_at", at)
        return replace(
            self,
            is_locked=False,
            unlocked_at=at,
            unlocked_by=actor,
            locked_at=None,
            locked_by=None,
            lock_notes=notes if notes is not None else self.lock_notes,
        )

    def with_lock_notes(self, notes: str, *, actor: str, at: datetime) -> "ConcessionBlock":
        require_utc_timestamp("notes_updated_at", at)
        return replace(self, lock_notes=notes, notes_updated_at=at, notes_updated_by=actor)


__all__ = [
    "BlockStatus",
    "ConcessionBlock",
    "GIFTED_PACKAGE",
    "PackageRef",
    "derive_status",
    "make_block_id",
]
