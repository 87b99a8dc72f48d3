"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from marketplace.models.api import TransactionStatus


@dataclass(frozen=True)
class PurchaseIntent:
    """Domain model for a purchase before settlement - immutable intent."""

    buyer_id: UUID
    image_id: UUID
    amount_minor: int
    payment_ref: str

    def __post_init__(self) -> None:
        """Validate purchase constraints."""
        if self.amount_minor <= 0:
            raise ValueError(f"Purchase amount must be positive: {self.amount_minor}")
        if not self.payment_ref or not self.payment_ref.strip():
            raise ValueError("payment_ref cannot be empty")


@dataclass(frozen=True)
class ProfileData:
    """Immutable profile snapshot."""

    profile_id: UUID
    display_name: str
    bio: str
    balance_minor: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class ImageData:
    """Immutable image snapshot."""

    image_id: UUID
    owner_id: UUID
    title: str
    description: str
    category: str
    price_minor: int
    downloads: int
    asset_url: str
    thumbnail_url: str
    created_at: datetime


@dataclass(frozen=True)
class TransactionData:
    """Immutable transaction data after persistence."""

    transaction_id: UUID
    buyer_id: UUID
    seller_id: UUID
    image_id: UUID
    amount_minor: int
    currency: str
    status: TransactionStatus
    payment_ref: str
    created_at: datetime

    def matches(self, intent: PurchaseIntent) -> bool:
        """Whether this transaction settles exactly the given intent."""
        return (
            self.buyer_id == intent.buyer_id
            and self.image_id == intent.image_id
            and self.amount_minor == intent.amount_minor
        )


@dataclass(frozen=True)
class DownloadTokenData:
    """Immutable download token data after persistence."""

    token_id: UUID
    transaction_id: UUID
    buyer_id: UUID
    image_id: UUID
    token: str
    expires_at: datetime
    used: bool
    used_at: datetime | None
    created_at: datetime


@dataclass(frozen=True)
class PurchaseReceipt:
    """Result of a purchase: the settled transaction and its download token."""

    transaction: TransactionData
    download_token: DownloadTokenData
    replayed: bool


@dataclass(frozen=True)
class ImageReference:
    """What a successful redemption authorizes: a short-lived signed asset reference."""

    image_id: UUID
    transaction_id: UUID
    download_url: str
    asset_reference: str
    expires_at: datetime


@dataclass(frozen=True)
class TokenStatus:
    """Read-only view of a token for display. Never used to authorize delivery."""

    image_id: UUID
    used: bool
    expired: bool
    expires_at: datetime

    @property
    def valid(self) -> bool:
        """Token could be redeemed right now."""
        return not self.used and not self.expired


@dataclass(frozen=True)
class AssetMetadata:
    """Descriptive metadata submitted alongside an asset."""

    owner_id: UUID
    title: str
    price_minor: int
    description: str = ""
    category: str = "general"
    content_type: str = "application/octet-stream"

    def __post_init__(self) -> None:
        """Validate asset metadata."""
        if not self.title.strip():
            raise ValueError("title cannot be empty")
        if self.price_minor <= 0:
            raise ValueError(f"Price must be positive: {self.price_minor}")


@dataclass(frozen=True)
class UploadedAsset:
    """Storage locations of a successfully uploaded asset and its thumbnail."""

    asset_url: str
    thumbnail_url: str
    attempts: int


@dataclass(frozen=True)
class AssetFile:
    """An in-memory file submitted for upload."""

    filename: str
    content: bytes
    content_type: str = "application/octet-stream"

    def __post_init__(self) -> None:
        """Reject empty files."""
        if not self.content:
            raise ValueError(f"File {self.filename!r} is empty")


@dataclass(frozen=True)
class PublishedImage:
    """An image created from a successful upload."""

    image: ImageData
    attempts: int
