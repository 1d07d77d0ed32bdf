"""
Customer repository for the ledger's view of student records.

Provides existence/name lookups and writes the derived concession balance
fields. Profile management lives elsewhere.
"""

from __future__ import annotations

from typing import Any, Optional

from domain.customer import ConcessionBalance, Customer
from domain.errors import NotFoundError
from repositories.concession_block_repository import execute_query


class SupabaseCustomerStore:
    """CustomerStore backed by the Supabase `students` table."""

    def __init__(self, client: Any, table: str = "students"):
        self._client = client
        self._table = table

    def get(self, customer_id: str) -> Optional[Customer]:
        """
        Get a customer by ID.

        Returns:
            Customer domain model or None if not found
        """
        rows = execute_query(
            self._client.table(self._table).select("*").eq("student_id", customer_id).limit(1),
            "fetch student",
        )
        if not rows:
            return None

        row = rows[0]
        return Customer(
            customer_id=str(row["student_id"]),
            first_name=row.get("first_name"),
            last_name=row.get("last_name"),
            email=row.get("email"),
            balance=ConcessionBalance(
                concession_balance=int(row.get("concession_balance") or 0),
                expired_concessions=int(row.get("expired_concessions") or 0),
            ),
        )

    def update_balance(self, customer_id: str, balance: ConcessionBalance) -> None:
        """
        Write both derived balance fields in one update.

        Raises NotFoundError if no student row matched.
        """
        rows = execute_query(
            self._client.table(self._table)
            .update(
                {
                    "concession_balance": balance.concession_balance,
                    "expired_concessions": balance.expired_concessions,
                }
            )
            .eq("student_id", customer_id),
            "update student balance",
        )
        if not rows:
            raise NotFoundError("Student", customer_id)


__all__ = [
    "SupabaseCustomerStore",
]
