"""
Download Token Store - persistence and the atomic claim for download tokens.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db.models import DownloadToken, Transaction, as_utc
from marketplace.models.domain import DownloadTokenData


def token_to_domain(token: DownloadToken) -> DownloadTokenData:
    """Convert ORM download token to domain model."""
    return DownloadTokenData(
        token_id=token.id,
        transaction_id=token.transaction_id,
        buyer_id=token.buyer_id,
        image_id=token.image_id,
        token=token.token,
        expires_at=as_utc(token.expires_at),
        used=token.used,
        used_at=as_utc(token.used_at) if token.used_at else None,
        created_at=as_utc(token.created_at),
    )


class DownloadTokenStore:
    """Download token persistence operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create(self, transaction: Transaction, token: str, expires_at: datetime) -> DownloadToken:
        """
        Insert an unused token for a transaction and flush.

        A second token for the same transaction raises IntegrityError from the
        flush (unique transaction_id).
        """
        download_token = DownloadToken(
            transaction_id=transaction.id,
            buyer_id=transaction.buyer_id,
            image_id=transaction.image_id,
            token=token,
            expires_at=expires_at,
            used=False,
        )
        self.session.add(download_token)
        await self.session.flush()
        return download_token

    async def find_by_value(self, token: str) -> DownloadToken | None:
        """Find token by its value (read-only, no claim)."""
        stmt = (
            select(DownloadToken)
            .where(DownloadToken.token == token)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_transaction(self, transaction_id: UUID) -> DownloadToken | None:
        """Find the token issued for a transaction."""
        stmt = select(DownloadToken).where(DownloadToken.transaction_id == transaction_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim(self, token: str, now: datetime) -> bool:
        """
        Atomically mark a token used if it exists, is unused and unexpired.

        Single conditional UPDATE; concurrent claims of the same token are
        ordered by the database and at most one of them updates a row.
        Returns True when this call won the claim.
        """
        stmt = (
            update(DownloadToken)
            .where(
                DownloadToken.token == token,
                DownloadToken.used.is_(False),
                DownloadToken.expires_at > now,
            )
            .values(used=True, used_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def list_by_buyer(self, buyer_id: UUID) -> list[DownloadToken]:
        """List a buyer's download tokens, newest first."""
        stmt = (
            select(DownloadToken)
            .where(DownloadToken.buyer_id == buyer_id)
            .order_by(DownloadToken.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
