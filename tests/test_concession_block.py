"""
Tests for `domain/concession_block.py`.

Covers contract rules:
- 0 <= remaining_quantity <= original_quantity; original_quantity >= 1.
- status = depleted iff remaining_quantity = 0.
- expired requires an expiry date.
- Status derivation (depletion wins over expiry, expiry is strict "<").
- Consume/restore transitions and their boundaries.
- Lock/unlock audit pairs are mutually exclusive.
- Block IDs are readable and stable.
- No side effects: transitions return new instances.
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from domain.concession_block import BlockStatus, derive_status, make_block_id
from domain.errors import InvariantError
from fakes import make_block

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
PURCHASED = datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


def test_derive_status_depleted_wins_over_expiry() -> None:
    past = NOW - timedelta(days=1)
    assert derive_status(0, past, NOW) == BlockStatus.DEPLETED
    assert derive_status(0, None, NOW) == BlockStatus.DEPLETED


def test_derive_status_expired_only_strictly_before_now() -> None:
    assert derive_status(3, NOW - timedelta(seconds=1), NOW) == BlockStatus.EXPIRED
    assert derive_status(3, NOW, NOW) == BlockStatus.ACTIVE
    assert derive_status(3, NOW + timedelta(days=1), NOW) == BlockStatus.ACTIVE
    assert derive_status(3, None, NOW) == BlockStatus.ACTIVE


def test_derive_status_rejects_naive_timestamp() -> None:
    with pytest.raises(ValueError, match="timezone-aware"):
        derive_status(3, None, datetime(2025, 6, 1))


def test_block_rejects_out_of_range_quantities() -> None:
    with pytest.raises(InvariantError):
        make_block("b", original=0, remaining=0, purchase_date=PURCHASED)
    with pytest.raises(InvariantError):
        make_block("b", original=5, remaining=6, purchase_date=PURCHASED)
    with pytest.raises(InvariantError):
        make_block("b", original=5, remaining=-1, purchase_date=PURCHASED, status=BlockStatus.ACTIVE)


def test_block_status_must_match_quantity() -> None:
    with pytest.raises(InvariantError, match="depleted"):
        make_block("b", remaining=0, purchase_date=PURCHASED, status=BlockStatus.ACTIVE)
    with pytest.raises(InvariantError, match="depleted"):
        make_block("b", remaining=2, purchase_date=PURCHASED, status=BlockStatus.DEPLETED)


def test_expired_block_requires_expiry_date() -> None:
    with pytest.raises(InvariantError, match="expiry date"):
        make_block("b", purchase_date=PURCHASED, status=BlockStatus.EXPIRED)


def test_block_requires_utc_timestamps() -> None:
    with pytest.raises(ValueError):
        make_block("b", purchase_date=datetime(2025, 1, 1))
    with pytest.raises(ValueError, match="offset 0"):
        make_block(
            "b",
            purchase_date=PURCHASED,
            expiry_date=datetime(2025, 7, 1, tzinfo=timezone(timedelta(hours=12))),
        )


def test_block_is_immutable() -> None:
    block = make_block("b", purchase_date=PURCHASED)
    with pytest.raises(FrozenInstanceError):
        block.remaining_quantity = 1  # type: ignore[misc]


def test_consumed_decrements_and_depletes_at_zero() -> None:
    block = make_block("b", original=2, purchase_date=PURCHASED)

    once = block.consumed()
    assert once.remaining_quantity == 1
    assert once.status == BlockStatus.ACTIVE
    assert block.remaining_quantity == 2

    twice = once.consumed()
    assert twice.remaining_quantity == 0
    assert twice.status == BlockStatus.DEPLETED

    with pytest.raises(InvariantError, match="already depleted"):
        twice.consumed()


def test_consumed_keeps_expired_status_until_depleted() -> None:
    block = make_block(
        "b",
        original=2,
        purchase_date=PURCHASED,
        expiry_date=NOW - timedelta(days=1),
        status=BlockStatus.EXPIRED,
    )
    assert block.consumed().status == BlockStatus.EXPIRED
    assert block.consumed().consumed().status == BlockStatus.DEPLETED


def test_restored_re_derives_status_from_depleted() -> None:
    depleted = make_block("b", original=3, remaining=0, purchase_date=PURCHASED)
    assert depleted.restored(NOW).status == BlockStatus.ACTIVE

    expired_then_depleted = make_block(
        "b",
        original=3,
        remaining=0,
        purchase_date=PURCHASED,
        expiry_date=NOW - timedelta(days=1),
    )
    restored = expired_then_depleted.restored(NOW)
    assert restored.remaining_quantity == 1
    assert restored.status == BlockStatus.EXPIRED


def test_restored_refuses_to_exceed_original_quantity() -> None:
    full = make_block("b", original=3, purchase_date=PURCHASED)
    with pytest.raises(InvariantError, match="original quantity"):
        full.restored(NOW)


def test_consume_then_restore_round_trips() -> None:
    block = make_block("b", original=4, remaining=2, purchase_date=PURCHASED)
    assert block.consumed().restored(NOW) == block


def test_expired_transition_only_from_active_with_expiry() -> None:
    block = make_block("b", purchase_date=PURCHASED, expiry_date=NOW - timedelta(days=1))
    expired = block.expired()
    assert expired.status == BlockStatus.EXPIRED
    assert expired.remaining_quantity == block.remaining_quantity

    with pytest.raises(InvariantError):
        expired.expired()
    with pytest.raises(InvariantError):
        make_block("b", purchase_date=PURCHASED).expired()


def test_lock_and_unlock_audit_pairs_are_mutually_exclusive() -> None:
    block = make_block("b", purchase_date=PURCHASED)

    locked = block.locked(actor="admin-1", at=NOW, notes="refund pending")
    assert locked.is_locked is True
    assert (locked.locked_at, locked.locked_by) == (NOW, "admin-1")
    assert (locked.unlocked_at, locked.unlocked_by) == (None, None)
    assert locked.lock_notes == "refund pending"

    later = NOW + timedelta(hours=1)
    unlocked = locked.unlocked(actor="admin-2", at=later)
    assert unlocked.is_locked is False
    assert (unlocked.unlocked_at, unlocked.unlocked_by) == (later, "admin-2")
    assert (unlocked.locked_at, unlocked.locked_by) == (None, None)
    # Notes survive unless replaced.
    assert unlocked.lock_notes == "refund pending"

    # Quantity and status are untouched by locking.
    assert unlocked.remaining_quantity == block.remaining_quantity
    assert unlocked.status == block.status


def test_is_consumable_rules() -> None:
    active = make_block("a", purchase_date=PURCHASED)
    expired = make_block("e", purchase_date=PURCHASED, expiry_date=PURCHASED, status=BlockStatus.EXPIRED)
    depleted = make_block("d", remaining=0, purchase_date=PURCHASED)
    locked = make_block("l", purchase_date=PURCHASED, is_locked=True)

    assert active.is_consumable(allow_expired=False) is True
    assert expired.is_consumable(allow_expired=False) is False
    assert expired.is_consumable(allow_expired=True) is True
    assert depleted.is_consumable(allow_expired=True) is False
    assert locked.is_consumable(allow_expired=True) is False


def test_make_block_id_is_readable_slug() -> None:
    purchased = datetime(2025, 3, 4, 9, 30, tzinfo=timezone.utc)
    assert make_block_id("Jane", "Doe", purchased, 1741080600000) == "jane-doe-purchased-2025-03-04-1741080600000"
    assert make_block_id("Mary Ann", "O'Neil", purchased, 1) == "mary-ann-o-neil-purchased-2025-03-04-1"
    assert make_block_id(None, "", purchased, 1) == "unknown-unknown-purchased-2025-03-04-1"
