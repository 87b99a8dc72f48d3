"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class TransactionStatus(str, Enum):
    """Transaction status enumeration."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class TransactionRole(str, Enum):
    """Which side of a transaction a profile listing refers to."""

    BUYER = "buyer"
    SELLER = "seller"


# ============================================================================
# Purchase Models
# ============================================================================


class PurchaseRequest(BaseModel):
    """POST /v1/purchases request body."""

    buyer_id: UUID
    image_id: UUID
    amount_minor: int = Field(..., gt=0, description="Amount paid in minor units (cents)")
    payment_ref: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Opaque reference of the verified external payment",
    )

    @field_validator("payment_ref")
    @classmethod
    def validate_payment_ref(cls, v: str) -> str:
        """Reject whitespace-only payment references."""
        if not v.strip():
            raise ValueError("payment_ref cannot be blank")
        return v.strip()


class TransactionResponse(BaseModel):
    """Single transaction in responses."""

    transaction_id: UUID
    buyer_id: UUID
    seller_id: UUID
    image_id: UUID
    amount_minor: int
    currency: str
    status: TransactionStatus
    payment_ref: str
    created_at: str  # ISO 8601 timestamp


class DownloadTokenResponse(BaseModel):
    """Download token issued for a completed transaction."""

    token_id: UUID
    transaction_id: UUID
    buyer_id: UUID
    image_id: UUID
    token: str
    expires_at: str  # ISO 8601 timestamp
    used: bool
    created_at: str  # ISO 8601 timestamp


class PurchaseResponse(BaseModel):
    """POST /v1/purchases response."""

    transaction: TransactionResponse
    download_token: DownloadTokenResponse
    replayed: bool = Field(
        default=False,
        description="True when the payment reference had already been settled",
    )


class TransactionListResponse(BaseModel):
    """GET /v1/profiles/{profile_id}/transactions response."""

    profile_id: UUID
    role: TransactionRole
    transactions: list[TransactionResponse]


class DownloadTokenListResponse(BaseModel):
    """GET /v1/profiles/{profile_id}/download-tokens response."""

    profile_id: UUID
    download_tokens: list[DownloadTokenResponse]


# ============================================================================
# Redemption Models
# ============================================================================


class RedeemRequest(BaseModel):
    """POST /v1/downloads/redeem request body."""

    token: str = Field(..., min_length=1, max_length=512)


class RedeemResponse(BaseModel):
    """POST /v1/downloads/redeem response - a short-lived signed reference, never bytes."""

    image_id: UUID
    transaction_id: UUID
    download_url: str
    asset_reference: str
    asset_reference_expires_at: str  # ISO 8601 timestamp


class TokenStatusResponse(BaseModel):
    """GET /v1/downloads/tokens/{token} response (read-only, display only)."""

    valid: bool
    used: bool
    expired: bool
    image_id: UUID
    expires_at: str  # ISO 8601 timestamp


# ============================================================================
# Upload Models
# ============================================================================


class UploadResponse(BaseModel):
    """POST /v1/uploads response."""

    image_id: UUID
    asset_url: str
    thumbnail_url: str
    attempts: int


class ImageResponse(BaseModel):
    """Single image in responses."""

    image_id: UUID
    owner_id: UUID
    title: str
    description: str
    category: str
    price_minor: int
    downloads: int
    thumbnail_url: str
    created_at: str  # ISO 8601 timestamp


class ImageListResponse(BaseModel):
    """GET /v1/profiles/{profile_id}/images response."""

    profile_id: UUID
    images: list[ImageResponse]


class ImagePriceUpdateRequest(BaseModel):
    """PATCH /v1/images/{image_id} request body."""

    price_minor: int = Field(..., gt=0, description="New price in minor units (cents)")


# ============================================================================
# Asset Reference Models
# ============================================================================


class VerifyAssetReferenceRequest(BaseModel):
    """POST /v1/downloads/verify request body (called by the delivery service)."""

    asset_reference: str = Field(..., min_length=1, max_length=4096)


class VerifyAssetReferenceResponse(BaseModel):
    """Decoded signed asset reference."""

    image_id: UUID
    transaction_id: UUID
    expires_at: str  # ISO 8601 timestamp


# ============================================================================
# Health Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: Literal["healthy", "unhealthy"]
    database: Literal["connected", "disconnected"]
    timestamp: str


# ============================================================================
# Error Models
# ============================================================================


class ErrorDetail(BaseModel):
    """Error envelope carried in the `detail` field of error responses."""

    code: str
    message: str
