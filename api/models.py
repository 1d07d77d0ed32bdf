"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


# ============================================================================
# Concession Block Models
# ============================================================================

class ConcessionBlockResponse(BaseModel):
    """Single concession block in API response."""
    block_id: str
    customer_id: str
    customer_name: str
    package_id: str
    package_name: str
    original_quantity: int
    remaining_quantity: int
    purchase_date: datetime
    expiry_date: Optional[datetime] = None
    status: str  # "active", "expired" or "depleted"
    is_locked: bool
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None
    unlocked_at: Optional[datetime] = None
    unlocked_by: Optional[str] = None
    lock_notes: Optional[str] = None
    price: Decimal
    payment_method: Optional[str] = None
    transaction_ref: Optional[str] = None
    notes: str = ""
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "block_id": "jane-doe-purchased-2025-01-01-1735689600000",
                "customer_id": "student-123",
                "customer_name": "Jane Doe",
                "package_id": "10-class",
                "package_name": "10 Class Concession",
                "original_quantity": 10,
                "remaining_quantity": 7,
                "purchase_date": "2025-01-01T00:00:00Z",
                "expiry_date": "2025-07-01T00:00:00Z",
                "status": "active",
                "is_locked": False,
                "price": "150.00",
                "payment_method": "eftpos",
            }
        }


class ConcessionBlockListResponse(BaseModel):
    """Response for a customer's blocks."""
    items: List[ConcessionBlockResponse]
    total_count: int


class NextBlockResponse(BaseModel):
    """Next block allocation would use. `block` is null when nothing is available."""
    block: Optional[ConcessionBlockResponse] = None


class CreateBlockRequest(BaseModel):
    """Request to record a purchased concession block."""
    package_id: str = Field(..., min_length=1)
    package_name: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1, description="Number of entries in the block")
    price: Decimal = Field(..., ge=0)
    payment_method: Optional[str] = None
    expiry_date: Optional[datetime] = Field(None, description="Explicit expiry date (UTC)")
    expiry_months: Optional[int] = Field(
        None,
        ge=0,
        description="Validity in calendar months from the purchase date; ignored if expiry_date is set",
    )
    purchase_date: Optional[datetime] = Field(None, description="Defaults to now")
    transaction_ref: Optional[str] = None
    notes: str = ""
    actor: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "package_id": "10-class",
                "package_name": "10 Class Concession",
                "quantity": 10,
                "price": "150.00",
                "payment_method": "cash",
                "expiry_months": 6,
            }
        }


class GiftBlockRequest(BaseModel):
    """Request to gift free entries to a customer."""
    quantity: int = Field(..., ge=1)
    expiry_date: Optional[datetime] = None
    gift_date: Optional[datetime] = None
    notes: str = ""
    transaction_ref: Optional[str] = None
    actor: Optional[str] = None


class CreateBlockResponse(BaseModel):
    block_id: str


class LockRequest(BaseModel):
    """Lock/unlock request. `notes` replaces the lock notes only when given."""
    actor: Optional[str] = None
    notes: Optional[str] = None


class LockNotesRequest(BaseModel):
    notes: Optional[str] = None
    actor: Optional[str] = None


class ActorRequest(BaseModel):
    actor: Optional[str] = None


class CountResponse(BaseModel):
    """Number of blocks affected by a bulk operation."""
    count: int


# ============================================================================
# Balance Models
# ============================================================================

class BalanceResponse(BaseModel):
    customer_id: str
    concession_balance: int
    expired_concessions: int

    class Config:
        json_schema_extra = {
            "example": {
                "customer_id": "student-123",
                "concession_balance": 12,
                "expired_concessions": 2,
            }
        }


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Error body returned with 404, 409, 423 and 503 responses."""
    detail: str

    class Config:
        json_schema_extra = {
            "example": {
                "detail": "Concession block jane-doe-purchased-2025-01-01-1735689600000 is already depleted",
            }
        }
