"""
Concession Block API Endpoints.

Admin endpoints for recording, consuming, locking and maintaining concession
blocks. Each endpoint is a thin call into the ConcessionLedger service.

Error mapping:
- 404: block or customer not found
- 409: the operation would break a quantity/status invariant (a bookkeeping bug upstream)
- 423: the block is locked
- 503: the backend failed; safe to retry
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_ledger
from api.models import (
    ActorRequest,
    BalanceResponse,
    ConcessionBlockListResponse,
    ConcessionBlockResponse,
    CountResponse,
    CreateBlockRequest,
    CreateBlockResponse,
    GiftBlockRequest,
    LockNotesRequest,
    LockRequest,
    NextBlockResponse,
)
from domain.concession_block import ConcessionBlock, PackageRef
from domain.errors import InvariantError, LedgerError, LockedError, NotFoundError, StoreError
from services.ledger import ConcessionLedger

router = APIRouter()


def _to_http_error(error: LedgerError) -> HTTPException:
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, LockedError):
        return HTTPException(status_code=423, detail=str(error))
    if isinstance(error, InvariantError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, StoreError):
        return HTTPException(status_code=503, detail=f"Backend unavailable, retry later: {error}")
    return HTTPException(status_code=500, detail=str(error))


def _as_utc(value: Optional[datetime], name: str) -> Optional[datetime]:
    """Normalize an incoming timestamp to UTC; naive timestamps are rejected."""
    if value is None:
        return None
    if value.tzinfo is None or value.utcoffset() is None:
        raise HTTPException(status_code=422, detail=f"{name} must include a timezone")
    return value.astimezone(timezone.utc)


def _to_response(block: ConcessionBlock) -> ConcessionBlockResponse:
    return ConcessionBlockResponse(
        block_id=block.block_id,
        customer_id=block.customer_id,
        customer_name=block.customer_name,
        package_id=block.package.package_id,
        package_name=block.package.name,
        original_quantity=block.original_quantity,
        remaining_quantity=block.remaining_quantity,
        purchase_date=block.purchase_date,
        expiry_date=block.expiry_date,
        status=block.status.value,
        is_locked=block.is_locked,
        locked_at=block.locked_at,
        locked_by=block.locked_by,
        unlocked_at=block.unlocked_at,
        unlocked_by=block.unlocked_by,
        lock_notes=block.lock_notes,
        price=block.price,
        payment_method=block.payment_method,
        transaction_ref=block.transaction_ref,
        notes=block.notes,
        created_at=block.created_at,
        created_by=block.created_by,
    )


# ============================================================================
# Customer-scoped endpoints
# ============================================================================

@router.post(
    "/customers/{customer_id}/concession-blocks",
    response_model=CreateBlockResponse,
    status_code=201,
    summary="Record Concession Purchase",
    description="Create a concession block for a customer and refresh their balance.",
)
def create_concession_block(
    customer_id: str,
    request: CreateBlockRequest,
    ledger: ConcessionLedger = Depends(get_ledger),
):
    """
    Record a purchased block of entries.

    The expiry date is taken from `expiry_date` when given, otherwise derived
    from `expiry_months` counted from the purchase date. A block whose expiry
    date is already past is created with status `expired`.
    """
    purchase_date = _as_utc(request.purchase_date, "purchase_date")
    expiry_date = _as_utc(request.expiry_date, "expiry_date")

    try:
        block_id = ledger.create(
            customer_id,
            PackageRef(package_id=request.package_id, name=request.package_name),
            request.quantity,
            request.price,
            request.payment_method,
            expiry_date,
            purchase_date=purchase_date,
            transaction_ref=request.transaction_ref,
            notes=request.notes,
            actor=request.actor,
            expiry_months=request.expiry_months,
        )
    except LedgerError as e:
        raise _to_http_error(e)

    return CreateBlockResponse(block_id=block_id)


@router.post(
    "/customers/{customer_id}/concession-blocks/gift",
    response_model=CreateBlockResponse,
    status_code=201,
    summary="Gift Concessions",
)
def gift_concessions(
    customer_id: str,
    request: GiftBlockRequest,
    ledger: ConcessionLedger = Depends(get_ledger),
):
    """Gift free entries to a customer (price 0, package `gifted-concessions`)."""
    try:
        block_id = ledger.gift(
            customer_id,
            request.quantity,
            _as_utc(request.expiry_date, "expiry_date"),
            gift_date=_as_utc(request.gift_date, "gift_date"),
            notes=request.notes,
            transaction_ref=request.transaction_ref,
            actor=request.actor,
        )
    except LedgerError as e:
        raise _to_http_error(e)

    return CreateBlockResponse(block_id=block_id)


@router.get(
    "/customers/{customer_id}/concession-blocks",
    response_model=ConcessionBlockListResponse,
    summary="List Customer Concession Blocks",
)
def list_concession_blocks(customer_id: str, ledger: ConcessionLedger = Depends(get_ledger)):
    """All of a customer's blocks, most recent purchase first."""
    try:
        blocks = ledger.list_blocks(customer_id)
    except LedgerError as e:
        raise _to_http_error(e)

    return ConcessionBlockListResponse(
        items=[_to_response(block) for block in blocks],
        total_count=len(blocks),
    )


@router.get(
    "/customers/{customer_id}/concession-blocks/next",
    response_model=NextBlockResponse,
    summary="Next Available Concession Block",
)
def next_available_block(
    customer_id: str,
    allow_expired: bool = Query(False, description="Include expired (but unlocked) blocks"),
    ledger: ConcessionLedger = Depends(get_ledger),
):
    """
    The block the next check-in would use (oldest purchase first).

    `block` is null when the customer has nothing to consume; that is not an error.
    """
    try:
        block = ledger.next_available(customer_id, allow_expired=allow_expired)
    except LedgerError as e:
        raise _to_http_error(e)

    return NextBlockResponse(block=_to_response(block) if block else None)


@router.post(
    "/customers/{customer_id}/concession-blocks/lock-expired",
    response_model=CountResponse,
    summary="Lock All Expired Blocks",
)
def lock_expired_blocks(
    customer_id: str,
    request: ActorRequest,
    ledger: ConcessionLedger = Depends(get_ledger),
):
    try:
        count = ledger.lock_all_expired(customer_id, actor=request.actor)
    except LedgerError as e:
        raise _to_http_error(e)

    return CountResponse(count=count)


@router.post(
    "/customers/{customer_id}/balance/recompute",
    response_model=BalanceResponse,
    summary="Recompute Concession Balance",
)
def recompute_balance(customer_id: str, ledger: ConcessionLedger = Depends(get_ledger)):
    """Rebuild the cached balance from the customer's blocks. Safe to call at any time."""
    try:
        balance = ledger.recompute(customer_id)
    except LedgerError as e:
        raise _to_http_error(e)

    return BalanceResponse(
        customer_id=customer_id,
        concession_balance=balance.concession_balance,
        expired_concessions=balance.expired_concessions,
    )


# ============================================================================
# Block-scoped endpoints
# ============================================================================

@router.post(
    "/concession-blocks/expiry-sweep",
    response_model=CountResponse,
    summary="Mark Expired Blocks",
)
def run_expiry_sweep(ledger: ConcessionLedger = Depends(get_ledger)):
    """Mark active blocks past their expiry date as expired. Normally run on a schedule."""
    try:
        count = ledger.sweep()
    except LedgerError as e:
        raise _to_http_error(e)

    return CountResponse(count=count)


@router.post(
    "/concession-blocks/{block_id}/consume",
    response_model=ConcessionBlockResponse,
    summary="Use One Entry",
)
def consume_entry(block_id: str, ledger: ConcessionLedger = Depends(get_ledger)):
    try:
        return _to_response(ledger.consume(block_id))
    except LedgerError as e:
        raise _to_http_error(e)


@router.post(
    "/concession-blocks/{block_id}/restore",
    response_model=ConcessionBlockResponse,
    summary="Restore One Entry",
)
def restore_entry(block_id: str, ledger: ConcessionLedger = Depends(get_ledger)):
    try:
        return _to_response(ledger.restore(block_id))
    except LedgerError as e:
        raise _to_http_error(e)


@router.post(
    "/concession-blocks/{block_id}/lock",
    response_model=ConcessionBlockResponse,
    summary="Lock Block",
)
def lock_block(block_id: str, request: LockRequest, ledger: ConcessionLedger = Depends(get_ledger)):
    try:
        return _to_response(ledger.lock(block_id, actor=request.actor, notes=request.notes))
    except LedgerError as e:
        raise _to_http_error(e)


@router.post(
    "/concession-blocks/{block_id}/unlock",
    response_model=ConcessionBlockResponse,
    summary="Unlock Block",
)
def unlock_block(block_id: str, request: LockRequest, ledger: ConcessionLedger = Depends(get_ledger)):
    try:
        return _to_response(ledger.unlock(block_id, actor=request.actor, notes=request.notes))
    except LedgerError as e:
        raise _to_http_error(e)


@router.put(
    "/concession-blocks/{block_id}/notes",
    response_model=ConcessionBlockResponse,
    summary="Update Lock Notes",
)
def update_lock_notes(block_id: str, request: LockNotesRequest, ledger: ConcessionLedger = Depends(get_ledger)):
    try:
        return _to_response(ledger.update_lock_notes(block_id, request.notes, actor=request.actor))
    except LedgerError as e:
        raise _to_http_error(e)


@router.delete(
    "/concession-blocks/{block_id}",
    response_model=ConcessionBlockResponse,
    summary="Delete Block",
    description="Delete an unlocked concession block. Locked blocks must be unlocked first.",
)
def delete_block(block_id: str, ledger: ConcessionLedger = Depends(get_ledger)):
    try:
        return _to_response(ledger.delete(block_id))
    except LedgerError as e:
        raise _to_http_error(e)
