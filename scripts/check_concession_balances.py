#!/usr/bin/env python3
"""
Check concession balances - compare each student's cached balance with the
balance derived from their concession blocks.

A mismatch means an earlier balance write failed after its block write
succeeded. Use --fix to recompute the mismatched balances.

Usage:
    python check_concession_balances.py STUDENT_ID [STUDENT_ID ...]
    python check_concession_balances.py STUDENT_ID --fix
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from services.ledger import build_supabase_ledger


def check_balances(student_ids, fix: bool = False) -> int:
    """Print cached vs derived balances. Returns the number of mismatches found."""

    ledger = build_supabase_ledger()
    customers = ledger.customers

    mismatches = 0

    print("=" * 70)
    print("CONCESSION BALANCE CHECK")
    print("=" * 70)
    print(f"{'Student':<30} {'Cached':>12} {'Derived':>12}  Status")
    print("-" * 70)

    for student_id in student_ids:
        customer = customers.get(student_id)
        if customer is None:
            print(f"{student_id:<30} {'-':>12} {'-':>12}  NOT FOUND")
            continue

        cached = customer.balance
        derived = ledger.balances.compute(student_id)
        cached_label = f"{cached.concession_balance}/{cached.expired_concessions}"
        derived_label = f"{derived.concession_balance}/{derived.expired_concessions}"

        if cached == derived:
            print(f"{student_id:<30} {cached_label:>12} {derived_label:>12}  OK")
            continue

        mismatches += 1
        if fix:
            ledger.recompute(student_id)
            print(f"{student_id:<30} {cached_label:>12} {derived_label:>12}  FIXED")
        else:
            print(f"{student_id:<30} {cached_label:>12} {derived_label:>12}  MISMATCH")

    print("=" * 70)
    print("Balances shown as total/expired")
    print(f"Mismatches: {mismatches}")
    if mismatches and not fix:
        print("Run again with --fix to recompute them.")
    print("=" * 70)
    return mismatches


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Compare cached concession balances with the block ledger",
    )
    parser.add_argument("student_ids", nargs="+", help="Student IDs to check")
    parser.add_argument("--fix", action="store_true", help="Recompute mismatched balances")
    args = parser.parse_args()

    mismatches = check_balances(args.student_ids, fix=args.fix)
    return 1 if mismatches and not args.fix else 0


if __name__ == "__main__":
    sys.exit(main())
