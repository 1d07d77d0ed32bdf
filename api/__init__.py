"""Admin API for the concession ledger."""

__version__ = "1.0.0"
