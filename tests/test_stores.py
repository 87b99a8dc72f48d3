"""
Tests for the persistence stores on the SQLite ledger.
"""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError

from marketplace.db.models import utc_now
from marketplace.exceptions import ImageNotFoundError, ProfileNotFoundError
from marketplace.models.api import TransactionStatus
from marketplace.stores.download_tokens import DownloadTokenStore
from marketplace.stores.images import ImageStore
from marketplace.stores.profiles import ProfileStore, profile_to_domain
from marketplace.stores.transactions import TransactionStore
from tests.factories import purchase, seed_profile


class TestProfileStore:
    """Profile creation and crediting."""

    @pytest.mark.asyncio
    async def test_create_starts_at_zero(self, session):
        profile = await ProfileStore(session).create(display_name="Carol Davis", bio="Portraits")
        await session.commit()

        data = profile_to_domain(profile)
        assert data.balance_minor == 0
        assert data.display_name == "Carol Davis"
        assert data.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_credit_adds_to_balance(self, session_factory):
        profile_id = await seed_profile(session_factory)

        async with session_factory() as session:
            store = ProfileStore(session)
            await store.credit(profile_id, 1250)
            credited = await store.credit(profile_id, 349)
            await session.commit()

        assert credited.balance_minor == 1599

    @pytest.mark.asyncio
    async def test_credit_rejects_non_positive_amount(self, session):
        with pytest.raises(ValueError):
            await ProfileStore(session).credit(uuid4(), 0)

    @pytest.mark.asyncio
    async def test_credit_unknown_profile_raises(self, session):
        with pytest.raises(ProfileNotFoundError):
            await ProfileStore(session).credit(uuid4(), 100)

    @pytest.mark.asyncio
    async def test_update_changes_display_fields_only(self, session_factory):
        profile_id = await seed_profile(session_factory, "Bob")

        async with session_factory() as session:
            updated = await ProfileStore(session).update(profile_id, bio="Street photographer")
            await session.commit()

        assert updated.display_name == "Bob"
        assert updated.bio == "Street photographer"
        assert updated.balance_minor == 0


class TestImageStore:
    """Image download counter and price edits."""

    @pytest.mark.asyncio
    async def test_increment_downloads_returns_new_count(self, session_factory, marketplace):
        async with session_factory() as session:
            store = ImageStore(session)
            assert await store.increment_downloads(marketplace["image_id"]) == 1
            assert await store.increment_downloads(marketplace["image_id"]) == 2
            await session.commit()

    @pytest.mark.asyncio
    async def test_list_by_owner(self, session_factory, marketplace):
        async with session_factory() as session:
            owned = await ImageStore(session).list_by_owner(marketplace["seller_id"])
            none_owned = await ImageStore(session).list_by_owner(marketplace["buyer_id"])
            await session.commit()

        assert [image.id for image in owned] == [marketplace["image_id"]]
        assert none_owned == []

    @pytest.mark.asyncio
    async def test_update_price(self, session_factory, marketplace):
        async with session_factory() as session:
            image = await ImageStore(session).update_price(marketplace["image_id"], 1999)
            await session.commit()

        assert image.price_minor == 1999
        assert image.downloads == 0

    @pytest.mark.asyncio
    async def test_update_price_rejects_non_positive(self, session):
        with pytest.raises(ValueError):
            await ImageStore(session).update_price(uuid4(), 0)

    @pytest.mark.asyncio
    async def test_update_price_unknown_image_raises(self, session):
        with pytest.raises(ImageNotFoundError):
            await ImageStore(session).update_price(uuid4(), 500)


class TestTransactionStore:
    """Payment reference uniqueness."""

    @pytest.mark.asyncio
    async def test_duplicate_payment_ref_violates_constraint(self, session_factory, marketplace):
        async with session_factory() as session:
            store = TransactionStore(session)
            await store.create(
                buyer_id=marketplace["buyer_id"],
                seller_id=marketplace["seller_id"],
                image_id=marketplace["image_id"],
                amount_minor=1599,
                currency="USD",
                payment_ref="pay_unique",
                status=TransactionStatus.COMPLETED,
            )
            await session.commit()

        async with session_factory() as session:
            with pytest.raises(IntegrityError):
                await TransactionStore(session).create(
                    buyer_id=marketplace["buyer_id"],
                    seller_id=marketplace["seller_id"],
                    image_id=marketplace["image_id"],
                    amount_minor=1599,
                    currency="USD",
                    payment_ref="pay_unique",
                    status=TransactionStatus.COMPLETED,
                )
            await session.rollback()

    @pytest.mark.asyncio
    async def test_find_by_payment_ref(self, session_factory, marketplace):
        receipt = await purchase(
            session_factory, marketplace["buyer_id"], marketplace["image_id"], payment_ref="pay_x"
        )

        async with session_factory() as session:
            found = await TransactionStore(session).find_by_payment_ref("pay_x")
            missing = await TransactionStore(session).find_by_payment_ref("pay_y")
            await session.commit()

        assert found is not None
        assert found.id == receipt.transaction.transaction_id
        assert missing is None


class TestDownloadTokenClaim:
    """The conditional UPDATE that consumes a token."""

    @pytest.mark.asyncio
    async def test_claim_succeeds_once(self, session_factory, marketplace):
        receipt = await purchase(session_factory, marketplace["buyer_id"], marketplace["image_id"])
        value = receipt.download_token.token

        async with session_factory() as session:
            first = await DownloadTokenStore(session).claim(value, utc_now())
            await session.commit()
        async with session_factory() as session:
            second = await DownloadTokenStore(session).claim(value, utc_now())
            await session.commit()

        assert first is True
        assert second is False

    @pytest.mark.asyncio
    async def test_claim_refuses_expired_token(self, session_factory, marketplace):
        receipt = await purchase(session_factory, marketplace["buyer_id"], marketplace["image_id"])
        after_expiry = receipt.download_token.expires_at + timedelta(seconds=1)

        async with session_factory() as session:
            claimed = await DownloadTokenStore(session).claim(
                receipt.download_token.token, after_expiry
            )
            await session.commit()

        assert claimed is False

    @pytest.mark.asyncio
    async def test_claim_unknown_value(self, session):
        assert await DownloadTokenStore(session).claim("no-such-token", utc_now()) is False
        await session.rollback()
