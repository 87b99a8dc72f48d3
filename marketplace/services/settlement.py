"""
Settlement Service - records sales and credits creators exactly once.

NO DICTIONARIES - All operations use strongly typed domain models.
"""

import time
from uuid import UUID

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from marketplace.config import settings
from marketplace.db.models import Transaction
from marketplace.exceptions import (
    AmountMismatchError,
    DataIntegrityError,
    ImageNotFoundError,
    MarketplaceError,
    PaymentReferenceConflictError,
    ProfileNotFoundError,
    SelfPurchaseError,
    StorageUnavailableError,
    WriteVerificationError,
)
from marketplace.models.api import TransactionRole, TransactionStatus
from marketplace.models.domain import PurchaseIntent, PurchaseReceipt, TransactionData
from marketplace.observability.metrics import metrics
from marketplace.observability.tracing import trace_operation
from marketplace.services.download_tokens import DownloadTokenService
from marketplace.stores.images import ImageStore
from marketplace.stores.profiles import ProfileStore
from marketplace.stores.transactions import TransactionStore, transaction_to_domain

logger = get_logger(__name__)


class SettlementService:
    """
    Settlement engine with write verification.

    A settlement is one database transaction:
    1. Lock the image row, then the seller's profile row (SELECT FOR UPDATE)
    2. Validate amount, parties and self-purchase policy
    3. Insert the transaction, credit the seller, bump the download counter
    4. Read back and verify, then commit

    The external payment reference is the idempotency key.
    """

    def __init__(self, session: AsyncSession, tokens: DownloadTokenService | None = None) -> None:
        """Initialize settlement service with database session."""
        self.session = session
        self.profiles = ProfileStore(session)
        self.images = ImageStore(session)
        self.transactions = TransactionStore(session)
        self.tokens = tokens or DownloadTokenService(session)

    async def settle(self, intent: PurchaseIntent) -> TransactionData:
        """
        Settle a verified payment into a completed sale.

        Replaying the same payment_ref for the same purchase returns the
        original transaction without crediting again.

        Raises:
            ImageNotFoundError: Image doesn't exist
            ProfileNotFoundError: Buyer or seller profile doesn't exist
            AmountMismatchError: Amount differs from the image price
            SelfPurchaseError: Buyer owns the image (unless allowed)
            PaymentReferenceConflictError: payment_ref used for a different purchase
            StorageUnavailableError: Ledger store failure
        """
        transaction, _ = await self._settle_tracked(intent)
        return transaction

    async def purchase(self, intent: PurchaseIntent) -> PurchaseReceipt:
        """
        Settle a payment and issue the buyer's download token.

        Token issuance runs after the settlement commits. If it fails the sale
        stands; the token can be issued later for the same transaction.
        """
        transaction, replayed = await self._settle_tracked(intent)
        token = await self.tokens.issue_token(transaction.transaction_id)
        return PurchaseReceipt(transaction=transaction, download_token=token, replayed=replayed)

    async def list_transactions(
        self, profile_id: UUID, role: TransactionRole
    ) -> list[TransactionData]:
        """List a profile's purchases or sales, newest first."""
        try:
            if await self.profiles.get(profile_id) is None:
                raise ProfileNotFoundError(profile_id)

            if role == TransactionRole.SELLER:
                rows = await self.transactions.list_by_seller(profile_id)
            else:
                rows = await self.transactions.list_by_buyer(profile_id)
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailableError(str(exc)) from exc
        return [transaction_to_domain(row) for row in rows]

    async def _settle_tracked(self, intent: PurchaseIntent) -> tuple[TransactionData, bool]:
        start = time.perf_counter()
        with trace_operation(
            "settlement",
            buyer_id=intent.buyer_id,
            image_id=intent.image_id,
            amount_minor=intent.amount_minor,
        ):
            try:
                transaction, replayed = await self._settle(intent)
            except MarketplaceError as exc:
                await self.session.rollback()
                metrics.record_settlement(exc.code.lower(), intent.amount_minor, time.perf_counter() - start)
                logger.info(
                    "settlement_rejected",
                    code=exc.code,
                    buyer_id=str(intent.buyer_id),
                    image_id=str(intent.image_id),
                    reason=str(exc),
                )
                raise
            except DBAPIError as exc:
                await self.session.rollback()
                metrics.record_settlement("storage_error", intent.amount_minor, time.perf_counter() - start)
                metrics.record_error(type(exc).__name__, "settlement")
                logger.error(
                    "settlement_storage_error",
                    buyer_id=str(intent.buyer_id),
                    image_id=str(intent.image_id),
                    error=str(exc),
                )
                raise StorageUnavailableError(str(exc)) from exc

        outcome = "replayed" if replayed else "completed"
        metrics.record_settlement(outcome, transaction.amount_minor, time.perf_counter() - start)
        return transaction, replayed

    async def _settle(self, intent: PurchaseIntent) -> tuple[TransactionData, bool]:
        existing = await self.transactions.find_by_payment_ref(intent.payment_ref)
        if existing is not None:
            return await self._replay(existing, intent), True

        image = await self.images.get_for_update(intent.image_id)
        if image is None:
            raise ImageNotFoundError(intent.image_id)

        buyer = await self.profiles.get(intent.buyer_id)
        if buyer is None:
            raise ProfileNotFoundError(intent.buyer_id)

        if intent.amount_minor != image.price_minor:
            raise AmountMismatchError(image.id, image.price_minor, intent.amount_minor)

        if buyer.id == image.owner_id and not settings.allow_self_purchase:
            raise SelfPurchaseError(buyer.id, image.id)

        seller = await self.profiles.get_for_update(image.owner_id)
        if seller is None:
            raise ProfileNotFoundError(image.owner_id)

        balance_before = seller.balance_minor
        balance_after = balance_before + intent.amount_minor
        downloads_after = image.downloads + 1
        seller_id = seller.id
        image_id = image.id

        try:
            transaction = await self.transactions.create(
                buyer_id=buyer.id,
                seller_id=seller_id,
                image_id=image_id,
                amount_minor=intent.amount_minor,
                currency=settings.currency,
                payment_ref=intent.payment_ref,
                status=TransactionStatus.COMPLETED,
            )
        except IntegrityError as exc:
            # A concurrent settlement of the same payment_ref committed first
            logger.warning("settlement_payment_ref_race", payment_ref=intent.payment_ref)
            await self.session.rollback()
            winner = await self.transactions.find_by_payment_ref(intent.payment_ref)
            if winner is None:
                raise DataIntegrityError(f"Transaction insert failed without a winner: {exc}") from exc
            return await self._replay(winner, intent), True

        # Verify transaction was written
        verified = await self.session.get(Transaction, transaction.id)
        if verified is None:
            raise WriteVerificationError(f"Transaction {transaction.id} not found after insert")

        credited = await self.profiles.credit(seller_id, intent.amount_minor)
        if credited.balance_minor != balance_after:
            raise DataIntegrityError(
                f"Seller balance mismatch: expected {balance_after}, got {credited.balance_minor}"
            )

        downloads = await self.images.increment_downloads(image_id)
        if downloads != downloads_after:
            raise DataIntegrityError(
                f"Download counter mismatch: expected {downloads_after}, got {downloads}"
            )

        data = transaction_to_domain(verified)
        await self.session.commit()

        logger.info(
            "settlement_completed",
            transaction_id=str(data.transaction_id),
            buyer_id=str(data.buyer_id),
            seller_id=str(data.seller_id),
            image_id=str(data.image_id),
            amount_minor=data.amount_minor,
            seller_balance_minor=balance_after,
        )
        return data, False

    async def _replay(self, existing: Transaction, intent: PurchaseIntent) -> TransactionData:
        """Resolve a payment_ref that is already settled."""
        data = transaction_to_domain(existing)
        if data.status != TransactionStatus.COMPLETED or not data.matches(intent):
            raise PaymentReferenceConflictError(intent.payment_ref, data.transaction_id)

        # End the read-only transaction so the store lock is released
        await self.session.commit()
        logger.info(
            "settlement_replayed",
            transaction_id=str(data.transaction_id),
            payment_ref=intent.payment_ref,
        )
        return data
