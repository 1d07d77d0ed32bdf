"""
Tests for `services/concession_block_service.py` (BlockLifecycle).

Covers contract rules:
- Create stores a full block (remaining = original) and refreshes the balance.
- A block created with an expiry date in the past is expired immediately.
- Consume/restore keep 0 <= remaining <= original and depleted iff 0.
- Quantity writes are conditional on the remaining_quantity and status that were read.
- Locked blocks cannot be deleted; deleting refreshes the balance.
- A failed balance write does not undo the block write.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.concession_block import BlockStatus, PackageRef
from domain.customer import ConcessionBalance, Customer
from domain.errors import InvariantError, LockedError, NotFoundError, StoreError
from fakes import FakeClock, InMemoryBlockStore, InMemoryCustomerStore, make_block
from services.balance_service import BalanceAggregator
from services.concession_block_service import MAX_CONDITIONAL_ATTEMPTS, BlockLifecycle

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
PACKAGE = PackageRef(package_id="5-class", name="5 Class Concession")


def _lifecycle(blocks=(), customers=None):
    block_store = InMemoryBlockStore(blocks)
    customer_store = InMemoryCustomerStore(
        customers if customers is not None else [Customer("student-1", first_name="Jane", last_name="Doe")]
    )
    lifecycle = BlockLifecycle(
        block_store,
        customer_store,
        BalanceAggregator(block_store, customer_store),
        clock=FakeClock(NOW),
        default_actor="front-desk",
    )
    return lifecycle, block_store, customer_store


def test_create_consume_until_depleted() -> None:
    lifecycle, blocks, customers = _lifecycle()

    block_id = lifecycle.create("student-1", PACKAGE, 5, Decimal("75.00"), "cash", None)
    block = blocks.get(block_id)
    assert block.remaining_quantity == 5
    assert block.original_quantity == 5
    assert block.status == BlockStatus.ACTIVE
    assert customers.balance_of("student-1") == ConcessionBalance(5, 0)

    for expected_remaining in (4, 3, 2, 1, 0):
        assert lifecycle.consume(block_id).remaining_quantity == expected_remaining

    block = blocks.get(block_id)
    assert block.remaining_quantity == 0
    assert block.status == BlockStatus.DEPLETED
    assert customers.balance_of("student-1") == ConcessionBalance(0, 0)

    with pytest.raises(InvariantError):
        lifecycle.consume(block_id)
    assert blocks.get(block_id).remaining_quantity == 0


def test_create_with_past_expiry_is_expired_immediately() -> None:
    lifecycle, blocks, customers = _lifecycle()

    block_id = lifecycle.create("student-1", PACKAGE, 5, 75, "cash", NOW - timedelta(days=1))

    block = blocks.get(block_id)
    assert block.status == BlockStatus.EXPIRED
    assert block.remaining_quantity == 5
    assert customers.balance_of("student-1") == ConcessionBalance(5, 5)


def test_create_records_provenance() -> None:
    lifecycle, blocks, _ = _lifecycle()
    purchased = datetime(2025, 5, 20, tzinfo=timezone.utc)

    block_id = lifecycle.create(
        "student-1",
        PACKAGE,
        10,
        "150",
        "eftpos",
        None,
        purchase_date=purchased,
        transaction_ref="txn-42",
        notes="term 2",
    )

    assert block_id == f"jane-doe-purchased-2025-05-20-{int(NOW.timestamp() * 1000)}"
    block = blocks.get(block_id)
    assert block.customer_name == "Jane Doe"
    assert block.purchase_date == purchased
    assert block.price == Decimal("150")
    assert block.payment_method == "eftpos"
    assert block.transaction_ref == "txn-42"
    assert block.created_at == NOW
    assert block.created_by == "front-desk"
    assert block.is_locked is False


def test_create_rejects_bad_input() -> None:
    lifecycle, blocks, _ = _lifecycle()

    with pytest.raises(InvariantError):
        lifecycle.create("student-1", PACKAGE, 0, 0, "cash", None)
    with pytest.raises(NotFoundError):
        lifecycle.create("ghost", PACKAGE, 5, 0, "cash", None)
    assert blocks.blocks == {}


def test_create_for_unnamed_customer_uses_unknown_label() -> None:
    lifecycle, blocks, _ = _lifecycle(customers=[Customer("student-9")])

    block_id = lifecycle.create("student-9", PACKAGE, 1, 0, None, None)

    assert block_id.startswith("unknown-unknown-purchased-2025-06-01-")
    assert blocks.get(block_id).customer_name == "Unknown"


def test_gift_creates_free_block() -> None:
    lifecycle, blocks, customers = _lifecycle()

    block_id = lifecycle.gift("student-1", 2, NOW + timedelta(days=30), notes="birthday", actor="owner")

    block = blocks.get(block_id)
    assert block.package.package_id == "gifted-concessions"
    assert block.price == Decimal("0")
    assert block.created_by == "owner"
    assert customers.balance_of("student-1") == ConcessionBalance(2, 0)


def test_consume_restore_round_trip() -> None:
    original = make_block("b", original=5, remaining=3, purchase_date=NOW - timedelta(days=10))
    lifecycle, blocks, _ = _lifecycle([original])

    lifecycle.consume("b")
    lifecycle.restore("b")

    assert blocks.get("b") == original


def test_restore_from_depleted_re_derives_status() -> None:
    lifecycle, blocks, customers = _lifecycle(
        [make_block("b", original=5, remaining=0, purchase_date=NOW - timedelta(days=10))]
    )

    restored = lifecycle.restore("b")

    assert restored.remaining_quantity == 1
    assert restored.status == BlockStatus.ACTIVE
    assert customers.balance_of("student-1") == ConcessionBalance(1, 0)


def test_restore_at_original_quantity_fails() -> None:
    lifecycle, blocks, customers = _lifecycle([make_block("b", original=5, purchase_date=NOW)])

    with pytest.raises(InvariantError):
        lifecycle.restore("b")
    assert blocks.get("b").remaining_quantity == 5
    assert customers.balance_writes == []


def test_missing_block_raises_not_found() -> None:
    lifecycle, _, _ = _lifecycle()
    for operation in (lifecycle.consume, lifecycle.restore, lifecycle.delete):
        with pytest.raises(NotFoundError):
            operation("missing")


def test_consume_retries_when_block_changes_underneath() -> None:
    lifecycle, blocks, customers = _lifecycle([make_block("b", original=5, purchase_date=NOW)])
    blocks.conflicts["b"] = 1

    updated = lifecycle.consume("b")

    assert updated.remaining_quantity == 4
    assert blocks.get("b").remaining_quantity == 4
    assert customers.balance_writes == ["student-1"]


def test_consume_gives_up_on_a_hot_block() -> None:
    lifecycle, blocks, customers = _lifecycle([make_block("b", original=5, purchase_date=NOW)])
    blocks.conflicts["b"] = MAX_CONDITIONAL_ATTEMPTS

    with pytest.raises(StoreError):
        lifecycle.consume("b")
    assert blocks.get("b").remaining_quantity == 5
    assert customers.balance_writes == []


def test_block_write_stands_when_balance_write_fails() -> None:
    lifecycle, blocks, customers = _lifecycle([make_block("b", original=5, purchase_date=NOW)])
    customers.failing.add("student-1")

    with pytest.raises(StoreError):
        lifecycle.consume("b")
    assert blocks.get("b").remaining_quantity == 4

    # A later recompute repairs the aggregate.
    customers.failing.clear()
    lifecycle.consume("b")
    assert customers.balance_of("student-1") == ConcessionBalance(3, 0)


def test_delete_unlocked_block_refreshes_balance() -> None:
    lifecycle, blocks, customers = _lifecycle(
        [
            make_block("keep", original=2, purchase_date=NOW),
            make_block("drop", original=3, purchase_date=NOW, transaction_ref="txn-7"),
        ]
    )

    deleted = lifecycle.delete("drop")

    assert deleted.transaction_ref == "txn-7"
    assert blocks.get("drop") is None
    assert customers.balance_of("student-1") == ConcessionBalance(2, 0)


def test_delete_locked_block_is_refused() -> None:
    lifecycle, blocks, customers = _lifecycle([make_block("b", purchase_date=NOW, is_locked=True)])

    with pytest.raises(LockedError, match="Unlock it first"):
        lifecycle.delete("b")
    assert blocks.get("b") is not None
    assert customers.balance_writes == []


def test_list_blocks_newest_first() -> None:
    lifecycle, _, _ = _lifecycle(
        [
            make_block("old", purchase_date=NOW - timedelta(days=60)),
            make_block("new", purchase_date=NOW),
            make_block("mid", purchase_date=NOW - timedelta(days=30)),
            make_block("other", customer_id="student-2", purchase_date=NOW),
        ]
    )
    assert [b.block_id for b in lifecycle.list_blocks("student-1")] == ["new", "mid", "old"]


class StaleFirstReadBlockStore(InMemoryBlockStore):
    """Returns one outdated snapshot of a block, as if the expiry sweep landed just after the read."""

    def __init__(self, blocks, stale):
        super().__init__(blocks)
        self._stale = {block.block_id: block for block in stale}

    def get(self, block_id):
        if block_id in self._stale:
            return self._stale.pop(block_id)
        return super().get(block_id)


def test_consume_does_not_write_stale_status_over_expiry() -> None:
    purchased = NOW - timedelta(days=90)
    expired = make_block(
        "b", original=5, purchase_date=purchased, expiry_date=NOW - timedelta(days=1), status=BlockStatus.EXPIRED
    )
    stale_active = make_block("b", original=5, purchase_date=purchased, expiry_date=NOW - timedelta(days=1))
    block_store = StaleFirstReadBlockStore([expired], [stale_active])
    customer_store = InMemoryCustomerStore([Customer("student-1")])
    lifecycle = BlockLifecycle(
        block_store,
        customer_store,
        BalanceAggregator(block_store, customer_store),
        clock=FakeClock(NOW),
    )

    updated = lifecycle.consume("b")

    assert updated.status == BlockStatus.EXPIRED
    assert block_store.get("b").remaining_quantity == 4
    assert block_store.get("b").status == BlockStatus.EXPIRED
    assert customer_store.balance_of("student-1") == ConcessionBalance(4, 4)


def test_create_with_expiry_months_counts_from_purchase_date() -> None:
    lifecycle, blocks, _ = _lifecycle()

    defaulted = lifecycle.create("student-1", PACKAGE, 5, 0, "cash", None, expiry_months=6)
    backdated = lifecycle.create(
        "student-1",
        PACKAGE,
        5,
        0,
        "cash",
        None,
        purchase_date=datetime(2025, 1, 31, tzinfo=timezone.utc),
        expiry_months=1,
    )
    explicit = lifecycle.create(
        "student-1",
        PACKAGE,
        5,
        0,
        "cash",
        datetime(2026, 1, 1, tzinfo=timezone.utc),
        purchase_date=datetime(2025, 5, 1, tzinfo=timezone.utc),
        expiry_months=1,
    )

    assert blocks.get(defaulted).expiry_date == datetime(2025, 12, 1, 12, 0, 0, tzinfo=timezone.utc)
    assert blocks.get(backdated).expiry_date == datetime(2025, 2, 28, tzinfo=timezone.utc)
    assert blocks.get(backdated).status == BlockStatus.EXPIRED
    assert blocks.get(explicit).expiry_date == datetime(2026, 1, 1, tzinfo=timezone.utc)
