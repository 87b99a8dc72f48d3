"""
Download Token Service - issues and redeems single-use download tokens.

Issuance is idempotent per transaction. Redemption is a single conditional
UPDATE in the store (claim); the token row is only read afterwards, to
classify a failed claim or to build the signed asset reference.
"""

import secrets
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode
from uuid import UUID

import jwt
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from marketplace.config import settings
from marketplace.db.models import DownloadToken, utc_now
from marketplace.exceptions import (
    AssetReferenceInvalidError,
    DataIntegrityError,
    MarketplaceError,
    ProfileNotFoundError,
    StorageUnavailableError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TransactionNotSettledError,
    WriteVerificationError,
)
from marketplace.models.api import TransactionStatus
from marketplace.models.domain import DownloadTokenData, ImageReference, TokenStatus
from marketplace.observability.metrics import metrics
from marketplace.observability.tracing import trace_operation
from marketplace.stores.download_tokens import DownloadTokenStore, token_to_domain
from marketplace.stores.profiles import ProfileStore
from marketplace.stores.transactions import TransactionStore

logger = get_logger(__name__)

ASSET_REFERENCE_ALGORITHM = "HS256"
ASSET_REFERENCE_PURPOSE = "asset_download"


def generate_token_value(num_bytes: int | None = None) -> str:
    """Generate a URL-safe token value from a CSPRNG."""
    return secrets.token_urlsafe(num_bytes or settings.download_token_bytes)


def build_download_url(image_id: UUID, asset_reference: str) -> str:
    """URL on the delivery collaborator that honours a signed asset reference."""
    base = settings.asset_delivery_base_url.rstrip("/")
    return f"{base}/{image_id}?{urlencode({'ref': asset_reference})}"


def sign_asset_reference(
    image_id: UUID,
    transaction_id: UUID,
    token_id: UUID,
    now: datetime,
) -> tuple[str, datetime]:
    """Sign a short-lived reference to an image's full-resolution asset."""
    expires_at = now + timedelta(seconds=settings.asset_link_ttl_seconds)
    payload = {
        "sub": str(image_id),
        "txn": str(transaction_id),
        "tok": str(token_id),
        "purpose": ASSET_REFERENCE_PURPOSE,
        "iat": now,
        "exp": expires_at,
    }
    signed = jwt.encode(payload, settings.asset_signing_secret, algorithm=ASSET_REFERENCE_ALGORITHM)
    return signed, expires_at


def verify_asset_reference(signed: str) -> ImageReference:
    """
    Decode a signed asset reference for the delivery collaborator.

    Raises:
        AssetReferenceInvalidError: Expired, tampered with or malformed
    """
    try:
        payload = jwt.decode(
            signed,
            settings.asset_signing_secret,
            algorithms=[ASSET_REFERENCE_ALGORITHM],
            options={"require": ["exp", "sub", "txn"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AssetReferenceInvalidError("reference expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AssetReferenceInvalidError(str(exc)) from exc

    if payload.get("purpose") != ASSET_REFERENCE_PURPOSE:
        raise AssetReferenceInvalidError("wrong purpose")

    try:
        image_id = UUID(payload["sub"])
        transaction_id = UUID(payload["txn"])
    except ValueError as exc:
        raise AssetReferenceInvalidError("malformed identifiers") from exc

    return ImageReference(
        image_id=image_id,
        transaction_id=transaction_id,
        download_url=build_download_url(image_id, signed),
        asset_reference=signed,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=UTC),
    )


class DownloadTokenService:
    """
    Token issuer and validator.

    Invariant: a token is claimed at most once, and only before its expiry.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize token service with database session."""
        self.session = session
        self.tokens = DownloadTokenStore(session)
        self.transactions = TransactionStore(session)
        self.profiles = ProfileStore(session)

    async def issue_token(self, transaction_id: UUID) -> DownloadTokenData:
        """
        Issue the download token for a completed transaction.

        Returns the existing token when one was already issued, so this is
        also the re-issue path after a failed post-settlement issuance.

        Raises:
            TransactionNotSettledError: Transaction missing or not completed
            StorageUnavailableError: Ledger store failure
        """
        try:
            return await self._issue(transaction_id)
        except MarketplaceError:
            await self.session.rollback()
            raise
        except DBAPIError as exc:
            await self.session.rollback()
            logger.error("download_token_issue_failed", transaction_id=str(transaction_id), error=str(exc))
            metrics.record_error(type(exc).__name__, "issue_token")
            raise StorageUnavailableError(str(exc)) from exc

    async def _issue(self, transaction_id: UUID) -> DownloadTokenData:
        transaction = await self.transactions.get(transaction_id)
        if transaction is None:
            raise TransactionNotSettledError(transaction_id)
        if transaction.status != TransactionStatus.COMPLETED:
            raise TransactionNotSettledError(transaction_id, status=transaction.status.value)

        existing = await self.tokens.find_by_transaction(transaction_id)
        if existing is not None:
            data = token_to_domain(existing)
            await self.session.commit()
            return data

        expires_at = utc_now() + timedelta(hours=settings.download_token_ttl_hours)

        try:
            token = await self.tokens.create(transaction, generate_token_value(), expires_at)
        except IntegrityError as exc:
            # Concurrent issuance for the same transaction won the unique constraint
            logger.warning("download_token_issue_race", transaction_id=str(transaction_id))
            await self.session.rollback()
            winner = await self.tokens.find_by_transaction(transaction_id)
            if winner is None:
                raise DataIntegrityError(f"Token insert failed without a winner: {exc}") from exc
            data = token_to_domain(winner)
            await self.session.commit()
            return data

        verified = await self.session.get(DownloadToken, token.id)
        if verified is None:
            raise WriteVerificationError(f"Download token {token.id} not found after insert")
        if verified.used:
            raise DataIntegrityError(f"Download token {token.id} created in used state")

        data = token_to_domain(verified)
        await self.session.commit()

        metrics.record_token_issued()
        logger.info(
            "download_token_issued",
            token_id=str(data.token_id),
            transaction_id=str(transaction_id),
            expires_at=data.expires_at.isoformat(),
        )
        return data

    async def redeem(self, token_value: str) -> ImageReference:
        """
        Redeem a token exactly once and authorize delivery of its image.

        Raises:
            TokenNotFoundError: Unknown token value
            TokenExpiredError: Token past expiry (regardless of used state)
            TokenAlreadyUsedError: Token already redeemed
            StorageUnavailableError: Ledger store failure
        """
        with trace_operation("download_token_redeem"):
            try:
                return await self._redeem(token_value)
            except MarketplaceError as exc:
                await self.session.rollback()
                metrics.record_redemption(_redemption_outcome(exc))
                raise
            except DBAPIError as exc:
                await self.session.rollback()
                logger.error("download_token_redeem_failed", error=str(exc))
                metrics.record_redemption("storage_error")
                raise StorageUnavailableError(str(exc)) from exc

    async def _redeem(self, token_value: str) -> ImageReference:
        now = utc_now()
        claimed = await self.tokens.claim(token_value, now)

        token = await self.tokens.find_by_value(token_value)
        if token is None:
            if claimed:
                raise WriteVerificationError("Claimed token not found after update")
            raise TokenNotFoundError()

        data = token_to_domain(token)

        if not claimed:
            if data.expires_at <= now:
                raise TokenExpiredError(data.token_id, data.expires_at.isoformat())
            raise TokenAlreadyUsedError(data.token_id)

        if not data.used:
            raise DataIntegrityError(f"Download token {data.token_id} not marked used after claim")

        await self.session.commit()

        asset_reference, reference_expires_at = sign_asset_reference(
            data.image_id, data.transaction_id, data.token_id, now
        )
        metrics.record_redemption("redeemed")
        logger.info(
            "download_token_redeemed",
            token_id=str(data.token_id),
            image_id=str(data.image_id),
            transaction_id=str(data.transaction_id),
        )
        return ImageReference(
            image_id=data.image_id,
            transaction_id=data.transaction_id,
            download_url=build_download_url(data.image_id, asset_reference),
            asset_reference=asset_reference,
            expires_at=reference_expires_at,
        )

    async def peek(self, token_value: str) -> TokenStatus:
        """
        Read-only token status for display.

        Never authorizes delivery; only redeem() does.
        """
        try:
            token = await self.tokens.find_by_value(token_value)
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailableError(str(exc)) from exc
        if token is None:
            raise TokenNotFoundError()

        data = token_to_domain(token)
        return TokenStatus(
            image_id=data.image_id,
            used=data.used,
            expired=data.expires_at <= utc_now(),
            expires_at=data.expires_at,
        )

    async def list_tokens(self, buyer_id: UUID) -> list[DownloadTokenData]:
        """List a buyer's download tokens, newest first."""
        try:
            if await self.profiles.get(buyer_id) is None:
                raise ProfileNotFoundError(buyer_id)
            tokens = await self.tokens.list_by_buyer(buyer_id)
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailableError(str(exc)) from exc
        return [token_to_domain(t) for t in tokens]


def _redemption_outcome(exc: MarketplaceError) -> str:
    """Metric label for a failed redemption."""
    if isinstance(exc, TokenNotFoundError):
        return "not_found"
    if isinstance(exc, TokenExpiredError):
        return "expired"
    if isinstance(exc, TokenAlreadyUsedError):
        return "already_used"
    return "error"
