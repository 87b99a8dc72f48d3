"""
Transaction Store - the immutable sales ledger.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db.models import Transaction, as_utc
from marketplace.models.api import TransactionStatus
from marketplace.models.domain import TransactionData


def transaction_to_domain(transaction: Transaction) -> TransactionData:
    """Convert ORM transaction to domain model."""
    return TransactionData(
        transaction_id=transaction.id,
        buyer_id=transaction.buyer_id,
        seller_id=transaction.seller_id,
        image_id=transaction.image_id,
        amount_minor=transaction.amount_minor,
        currency=transaction.currency,
        status=TransactionStatus(transaction.status),
        payment_ref=transaction.payment_ref,
        created_at=as_utc(transaction.created_at),
    )


class TransactionStore:
    """Transaction persistence operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(
        self,
        buyer_id: UUID,
        seller_id: UUID,
        image_id: UUID,
        amount_minor: int,
        currency: str,
        payment_ref: str,
        status: TransactionStatus,
    ) -> Transaction:
        """
        Insert a transaction and flush.

        A duplicate payment_ref raises IntegrityError from the flush; the
        caller decides how to resolve it.
        """
        transaction = Transaction(
            buyer_id=buyer_id,
            seller_id=seller_id,
            image_id=image_id,
            amount_minor=amount_minor,
            currency=currency,
            payment_ref=payment_ref,
            status=status,
        )
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def get(self, transaction_id: UUID) -> Transaction | None:
        """Get transaction by id."""
        return await self.session.get(Transaction, transaction_id)

    async def find_by_payment_ref(self, payment_ref: str) -> Transaction | None:
        """Find transaction by external payment reference."""
        stmt = select(Transaction).where(Transaction.payment_ref == payment_ref)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_by_buyer(self, buyer_id: UUID) -> list[Transaction]:
        """List a buyer's transactions, newest first."""
        stmt = (
            select(Transaction)
            .where(Transaction.buyer_id == buyer_id)
            .order_by(Transaction.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def list_by_seller(self, seller_id: UUID) -> list[Transaction]:
        """List a seller's transactions, newest first."""
        stmt = (
            select(Transaction)
            .where(Transaction.seller_id == seller_id)
            .order_by(Transaction.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
