"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.

Column types are portable (PostgreSQL in production, SQLite for development
and tests), so identifiers use the generic Uuid type.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from marketplace.models.api import TransactionStatus


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive timestamps (SQLite returns them without tzinfo)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Profile(Base):
    """
    ORM model for profiles table.

    balance_minor is only ever changed by the settlement engine through an
    atomic increment (see ProfileStore.credit).
    """

    __tablename__ = "profiles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    bio: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # Balance (minor units of settings.currency)
    balance_minor: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance_minor >= 0", name="ck_profile_balance_non_negative"),
        Index("idx_profiles_display_name", "display_name"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Profile(id={self.id}, name={self.display_name}, balance={self.balance_minor})>"


class Image(Base):
    """
    ORM model for images table.

    Immutable once created except for price edits and the download counter.
    """

    __tablename__ = "images"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    owner_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False, index=True
    )

    # Metadata
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="general")

    # Asset locations (only ever set from a successful upload)
    asset_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    thumbnail_url: Mapped[str] = mapped_column(String(2048), nullable=False)

    # Pricing and counters
    price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    downloads: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("price_minor > 0", name="ck_image_price_positive"),
        CheckConstraint("downloads >= 0", name="ck_image_downloads_non_negative"),
        Index("idx_images_category", "category"),
        Index("idx_images_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Image(id={self.id}, owner_id={self.owner_id}, price={self.price_minor})>"


class Transaction(Base):
    """
    ORM model for transactions table.

    Immutable ledger of sales. One row per external payment reference.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    buyer_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False, index=True
    )
    seller_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False, index=True
    )
    image_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("images.id"), nullable=False)

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[TransactionStatus] = mapped_column(
        SQLEnum(
            TransactionStatus,
            name="transaction_status",
            native_enum=False,
            length=20,
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
        default=TransactionStatus.PENDING,
    )

    # External payment reference - idempotency key for settlement
    payment_ref: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("amount_minor > 0", name="ck_transaction_amount_positive"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed')", name="ck_transaction_status"
        ),
        Index("idx_transactions_created_at", "created_at"),
        Index("idx_transactions_image_id", "image_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Transaction(id={self.id}, buyer_id={self.buyer_id}, "
            f"image_id={self.image_id}, amount={self.amount_minor}, status={self.status})>"
        )


class DownloadToken(Base):
    """
    ORM model for download_tokens table.

    One token per completed transaction. `used` flips false -> true exactly once,
    through a conditional update (DownloadTokenStore.claim).
    """

    __tablename__ = "download_tokens"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    transaction_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False, unique=True
    )
    buyer_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("profiles.id"), nullable=False, index=True
    )
    image_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("images.id"), nullable=False)

    token: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_download_tokens_expires_at", "expires_at"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<DownloadToken(id={self.id}, transaction_id={self.transaction_id}, "
            f"used={self.used}, expires_at={self.expires_at})>"
        )
