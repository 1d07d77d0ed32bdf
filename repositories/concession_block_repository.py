"""
Concession block repository (persistence).

This module provides *only* persistence operations for the ConcessionBlock domain
entity. It contains no ledger rules (allocation, status derivation, balances); it
only enforces simple persistence constraints (conditional updates, unlocked-only
deletes) and translates Supabase failures into StoreError.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import httpx
from postgrest.exceptions import APIError

from domain.concession_block import BlockStatus, ConcessionBlock, PackageRef
from domain.errors import InvariantError, StoreError
from domain.time import require_utc_timestamp
from repositories.block_store import BlockFields

# Domain attribute -> column name. Keep this aligned with your database schema.
_COLUMN_BY_FIELD: Dict[str, str] = {
    "block_id": "block_id",
    "customer_id": "student_id",
    "customer_name": "student_name",
    "original_quantity": "original_quantity",
    "remaining_quantity": "remaining_quantity",
    "purchase_date": "purchase_date_utc",
    "expiry_date": "expiry_date_utc",
    "status": "status",
    "is_locked": "is_locked",
    "locked_at": "locked_at_utc",
    "locked_by": "locked_by",
    "unlocked_at": "unlocked_at_utc",
    "unlocked_by": "unlocked_by",
    "lock_notes": "lock_notes",
    "notes_updated_at": "notes_updated_at_utc",
    "notes_updated_by": "notes_updated_by",
    "price": "price",
    "payment_method": "payment_method",
    "transaction_ref": "transaction_ref",
    "notes": "notes",
    "created_at": "created_at_utc",
    "created_by": "created_by",
}

_UNIQUE_VIOLATION = "23505"


def _to_iso_utc(dt: datetime, *, name: str) -> str:
    """Serialize a UTC datetime to ISO-8601 (timezone-aware, offset 0)."""

    require_utc_timestamp(name, dt)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_utc_datetime(value: Any) -> datetime:
    """
    Parse a Supabase timestamp into a timezone-aware UTC datetime.

    Supabase commonly returns ISO-8601 strings, sometimes with a trailing 'Z'.
    """

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    else:
        raise TypeError(f"Unsupported timestamp type: {type(value)!r}")

    if dt.tzinfo is None or dt.utcoffset() is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _optional_datetime(row: Mapping[str, Any], column: str) -> Optional[datetime]:
    value = row.get(column)
    return _parse_utc_datetime(value) if value is not None else None


def _serialize_value(field: str, value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_iso_utc(value, name=field)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


def _fields_to_row(fields: BlockFields) -> Dict[str, Any]:
    """Translate a partial update keyed by domain attributes into a column payload."""

    row: Dict[str, Any] = {}
    for field, value in fields.items():
        column = _COLUMN_BY_FIELD.get(field)
        if column is None:
            raise ValueError(f"Unknown concession block field: {field}")
        row[column] = _serialize_value(field, value)
    return row


def _block_to_row(block: ConcessionBlock) -> Dict[str, Any]:
    fields = {field: getattr(block, field) for field in _COLUMN_BY_FIELD}
    row = _fields_to_row(fields)
    row["package_id"] = block.package.package_id
    row["package_name"] = block.package.name
    return row


def _row_to_block(row: Mapping[str, Any]) -> ConcessionBlock:
    """Convert a Supabase row into a ConcessionBlock."""

    return ConcessionBlock(
        block_id=str(row["block_id"]),
        customer_id=str(row["student_id"]),
        customer_name=str(row.get("student_name") or "Unknown"),
        package=PackageRef(package_id=str(row["package_id"]), name=str(row.get("package_name") or "")),
        original_quantity=int(row["original_quantity"]),
        remaining_quantity=int(row["remaining_quantity"]),
        purchase_date=_parse_utc_datetime(row["purchase_date_utc"]),
        expiry_date=_optional_datetime(row, "expiry_date_utc"),
        status=BlockStatus(str(row["status"])),
        is_locked=bool(row.get("is_locked", False)),
        locked_at=_optional_datetime(row, "locked_at_utc"),
        locked_by=row.get("locked_by"),
        unlocked_at=_optional_datetime(row, "unlocked_at_utc"),
        unlocked_by=row.get("unlocked_by"),
        lock_notes=row.get("lock_notes"),
        notes_updated_at=_optional_datetime(row, "notes_updated_at_utc"),
        notes_updated_by=row.get("notes_updated_by"),
        price=Decimal(str(row.get("price") or "0")),
        payment_method=row.get("payment_method"),
        transaction_ref=row.get("transaction_ref"),
        notes=str(row.get("notes") or ""),
        created_at=_optional_datetime(row, "created_at_utc"),
        created_by=row.get("created_by"),
    )


def _filter_expected(query: Any, expected: Optional[BlockFields]) -> Any:
    """Add one equality (or IS NULL) filter per expected field to a write query."""

    for column, value in _fields_to_row(expected or {}).items():
        if value is None:
            query = query.is_(column, "null")
        else:
            query = query.eq(column, value)
    return query


def execute_query(query: Any, action: str) -> List[Mapping[str, Any]]:
    """Run a PostgREST query and return its rows, surfacing any failure as StoreError."""

    try:
        response = query.execute()
    except APIError as exc:
        raise StoreError(f"Failed to {action}: {exc}") from exc
    except httpx.HTTPError as exc:
        raise StoreError(f"Failed to {action}: {exc}") from exc

    error = getattr(response, "error", None)
    if error:
        raise StoreError(f"Failed to {action}: {error}")
    return getattr(response, "data", None) or []


class SupabaseBlockStore:
    """BlockStore backed by a Supabase (PostgREST) table."""

    def __init__(self, client: Any, table: str = "concession_blocks"):
        self._client = client
        self._table = table

    def _query(self) -> Any:
        return self._client.table(self._table)

    def get(self, block_id: str) -> Optional[ConcessionBlock]:
        rows = execute_query(
            self._query().select("*").eq("block_id", block_id).limit(1),
            "fetch concession block",
        )
        if not rows:
            return None
        return _row_to_block(rows[0])

    def put(self, block: ConcessionBlock) -> None:
        try:
            execute_query(self._query().insert(_block_to_row(block)), "create concession block")
        except StoreError as exc:
            cause = exc.__cause__
            if isinstance(cause, APIError) and str(getattr(cause, "code", "")) == _UNIQUE_VIOLATION:
                raise InvariantError(f"Concession block already exists: {block.block_id}") from None
            raise

    def update(self, block_id: str, fields: BlockFields, expected: Optional[BlockFields] = None) -> bool:
        query = self._query().update(_fields_to_row(fields)).eq("block_id", block_id)
        rows = execute_query(_filter_expected(query, expected), "update concession block")
        return bool(rows)

    def delete(self, block_id: str) -> bool:
        # Only unlocked blocks may be deleted; the condition is part of the statement.
        rows = execute_query(
            self._query().delete().eq("block_id", block_id).eq("is_locked", False),
            "delete concession block",
        )
        return bool(rows)

    def query_by_customer(self, customer_id: str) -> List[ConcessionBlock]:
        rows = execute_query(
            self._query().select("*").eq("student_id", customer_id),
            "fetch concession blocks",
        )
        return [_row_to_block(row) for row in rows]

    def query_active_expiring(self, as_of: datetime) -> List[ConcessionBlock]:
        rows = execute_query(
            self._query()
            .select("*")
            .eq("status", BlockStatus.ACTIVE.value)
            .lte("expiry_date_utc", _to_iso_utc(as_of, name="as_of")),
            "fetch expiring concession blocks",
        )
        return [_row_to_block(row) for row in rows]

    def batch_update(
        self,
        updates: Sequence[Tuple[str, BlockFields]],
        expected: Optional[BlockFields] = None,
    ) -> List[str]:
        """
        Apply updates grouped by identical payload.

        Each group is a single `UPDATE ... WHERE block_id IN (...)` statement, which
        PostgREST runs in one transaction: all matching rows of a group change or
        none do. `expected` becomes part of the WHERE clause, so rows another
        writer changed since they were read are left alone and not reported.
        """

        groups: Dict[Tuple[Tuple[str, Any], ...], List[str]] = {}
        payloads: Dict[Tuple[Tuple[str, Any], ...], Dict[str, Any]] = {}
        for block_id, fields in updates:
            row = _fields_to_row(fields)
            key = tuple(sorted(row.items()))
            groups.setdefault(key, []).append(block_id)
            payloads[key] = row

        updated: List[str] = []
        for key, block_ids in groups.items():
            query = self._query().update(payloads[key]).in_("block_id", block_ids)
            rows = execute_query(_filter_expected(query, expected), "batch update concession blocks")
            updated.extend(str(row["block_id"]) for row in rows)
        return updated


__all__ = [
    "SupabaseBlockStore",
    "execute_query",
]
