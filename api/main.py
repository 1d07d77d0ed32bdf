"""
Concession Ledger API.

Admin surface over the concession ledger, used by the check-in desk, the
purchase flow and the studio admin tools. The ledger itself is built lazily on
the first request (see api/dependencies.py), so the app imports without
Supabase credentials.

Environment variables (read from .env in the project root):
- ADMIN_ORIGINS: comma-separated origins allowed by CORS (default: all)
"""

import os
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from api.models import ErrorResponse
from api.routers import concession_blocks

load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")

# Error bodies the ledger endpoints share; documented once for the whole router.
LEDGER_ERROR_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Concession block or student not found"},
    409: {"model": ErrorResponse, "description": "Quantity or status invariant would be broken"},
    423: {"model": ErrorResponse, "description": "Concession block is locked"},
    503: {"model": ErrorResponse, "description": "Backend unavailable; safe to retry"},
}


def _allowed_origins() -> list:
    raw = os.getenv("ADMIN_ORIGINS", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()] or ["*"]


app = FastAPI(
    title="Concession Ledger API",
    description=(
        "Concession blocks for studio students: record purchases and gifts, use "
        "entries oldest-first at check-in, lock blocks for review and keep the "
        "cached balance in line with the blocks."
    ),
    version=__version__,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(
    concession_blocks.router,
    prefix="/api/v1",
    tags=["Concession Blocks"],
    responses=LEDGER_ERROR_RESPONSES,
)


@app.get("/health", tags=["Health"])
def health_check():
    """Liveness check. Does not touch Supabase."""
    return {
        "status": "healthy",
        "version": __version__,
        "service": "concession-ledger-api",
    }
