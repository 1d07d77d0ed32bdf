#!/usr/bin/env python3
"""
Concession Expiry Sweep

Marks active concession blocks whose expiry date has passed as 'expired' and
refreshes the balance of every affected student. Meant to run once a day
(cron, scheduled job), but safe to run at any time and as often as needed.

Usage:
    python sweep_expired_blocks.py
    python sweep_expired_blocks.py --verbose
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from domain.errors import StoreError
from services.ledger import build_supabase_ledger


def main() -> int:
    """Main entry point for the expiry sweep."""
    parser = argparse.ArgumentParser(
        description="Mark past-expiry concession blocks as expired",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the sweep
  python sweep_expired_blocks.py

  # Show per-block debug logging
  python sweep_expired_blocks.py --verbose
        """,
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        ledger = build_supabase_ledger()
        count = ledger.sweep()

        print("=" * 50)
        print("EXPIRY SWEEP COMPLETE")
        print("=" * 50)
        print(f"Blocks marked expired: {count}")
        print("=" * 50)
        return 0

    except StoreError as e:
        # Blocks may have been transitioned; re-running repairs any missed balances.
        print(f"\nSWEEP INCOMPLETE: {e}", file=sys.stderr)
        return 2

    except KeyboardInterrupt:
        print("\n\nExpiry sweep interrupted by user")
        return 130

    except Exception as e:
        print(f"\nFATAL ERROR: {e}", file=sys.stderr)
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
