"""
API dependencies.

The ledger is built once per process, on first request, so importing the API
does not require Supabase credentials.
"""

from functools import lru_cache

from services.ledger import ConcessionLedger, build_supabase_ledger


@lru_cache(maxsize=1)
def get_ledger() -> ConcessionLedger:
    return build_supabase_ledger()
