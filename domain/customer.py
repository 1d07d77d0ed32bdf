"""
Domain: Customers (studio students) and their derived concession balance.

The balance fields on the customer record are a projection of the customer's
concession blocks, never a source of truth:
- concession_balance = sum(remaining_quantity) over blocks with remaining_quantity > 0
- expired_concessions = the same sum restricted to status = expired

They are always recomputed in full from the block set (never patched by deltas),
so a recompute repairs any earlier inconsistency.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .concession_block import BlockStatus, ConcessionBlock

UNKNOWN_CUSTOMER_NAME = "Unknown"


@dataclass(frozen=True, slots=True)
class ConcessionBalance:
    """Cached per-customer totals derived from the block set."""

    concession_balance: int = 0
    expired_concessions: int = 0

    @staticmethod
    def from_blocks(blocks: Iterable[ConcessionBlock]) -> "ConcessionBalance":
        total = 0
        expired = 0
        for block in blocks:
            if block.remaining_quantity <= 0:
                continue
            total += block.remaining_quantity
            if block.status == BlockStatus.EXPIRED:
                expired += block.remaining_quantity
        return ConcessionBalance(concession_balance=total, expired_concessions=expired)

    @property
    def usable(self) -> int:
        """Entries that are not expired."""
        return self.concession_balance - self.expired_concessions


@dataclass(frozen=True, slots=True)
class Customer:
    """Customer record as seen by the ledger: identity, name for labels, cached balance."""

    customer_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    balance: ConcessionBalance = ConcessionBalance()

    def full_name(self) -> str:
        """Display label; degrades to "Unknown" rather than failing."""

        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or UNKNOWN_CUSTOMER_NAME


__all__ = [
    "ConcessionBalance",
    "Customer",
    "UNKNOWN_CUSTOMER_NAME",
]
