"""
Domain: Ledger error taxonomy.

Callers (check-in, purchase and admin tools) must be able to tell apart:
- nothing to consume (allocation returns None, no error),
- a bookkeeping bug (InvariantError),
- an operator-protected block (LockedError),
- a transient backend failure worth retrying (StoreError).
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base class for all concession ledger errors."""


class NotFoundError(LedgerError):
    """Raised when a referenced block or customer does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} not found: {identifier}")


class InvariantError(LedgerError, ValueError):
    """Raised when an operation would break a quantity or status invariant."""


class LockedError(LedgerError):
    """Raised when an operation requiring an unlocked block hits a locked one."""

    def __init__(self, block_id: str, message: str | None = None):
        self.block_id = block_id
        super().__init__(message or f"Concession block is locked: {block_id}. Unlock it first.")


class StoreError(LedgerError, RuntimeError):
    """Raised when the underlying document store fails (network, permission, etc.)."""


__all__ = [
    "LedgerError",
    "NotFoundError",
    "InvariantError",
    "LockedError",
    "StoreError",
]
