"""
Tests for domain models.

Covers construction-time validation and derived properties.
"""

from dataclasses import FrozenInstanceError
from datetime import UTC, datetime
from uuid import uuid4

import pytest

from marketplace.models.api import TransactionStatus
from marketplace.models.domain import (
    AssetFile,
    AssetMetadata,
    PurchaseIntent,
    TokenStatus,
    TransactionData,
)


class TestPurchaseIntent:
    """Tests for PurchaseIntent validation."""

    def test_valid_intent(self):
        intent = PurchaseIntent(
            buyer_id=uuid4(), image_id=uuid4(), amount_minor=1599, payment_ref="pay_1"
        )
        assert intent.amount_minor == 1599

    @pytest.mark.parametrize("amount", [0, -1, -1599])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(ValueError, match="positive"):
            PurchaseIntent(
                buyer_id=uuid4(), image_id=uuid4(), amount_minor=amount, payment_ref="pay_1"
            )

    @pytest.mark.parametrize("payment_ref", ["", "   "])
    def test_blank_payment_ref_rejected(self, payment_ref):
        with pytest.raises(ValueError, match="payment_ref"):
            PurchaseIntent(
                buyer_id=uuid4(), image_id=uuid4(), amount_minor=100, payment_ref=payment_ref
            )

    def test_immutable(self):
        intent = PurchaseIntent(
            buyer_id=uuid4(), image_id=uuid4(), amount_minor=100, payment_ref="pay_1"
        )
        with pytest.raises(FrozenInstanceError):
            intent.amount_minor = 1  # type: ignore[misc]


class TestTransactionDataMatches:
    """Replay matching."""

    def _transaction(self, buyer_id, image_id, amount_minor=1599):
        return TransactionData(
            transaction_id=uuid4(),
            buyer_id=buyer_id,
            seller_id=uuid4(),
            image_id=image_id,
            amount_minor=amount_minor,
            currency="USD",
            status=TransactionStatus.COMPLETED,
            payment_ref="pay_1",
            created_at=datetime.now(UTC),
        )

    def test_same_purchase_matches(self):
        buyer_id, image_id = uuid4(), uuid4()
        transaction = self._transaction(buyer_id, image_id)
        assert transaction.matches(PurchaseIntent(buyer_id, image_id, 1599, "pay_1"))

    def test_different_image_does_not_match(self):
        buyer_id = uuid4()
        transaction = self._transaction(buyer_id, uuid4())
        assert not transaction.matches(PurchaseIntent(buyer_id, uuid4(), 1599, "pay_1"))

    def test_different_amount_does_not_match(self):
        buyer_id, image_id = uuid4(), uuid4()
        transaction = self._transaction(buyer_id, image_id)
        assert not transaction.matches(PurchaseIntent(buyer_id, image_id, 1600, "pay_1"))


class TestTokenStatus:
    """Derived validity."""

    @pytest.mark.parametrize(
        "used,expired,valid",
        [(False, False, True), (True, False, False), (False, True, False), (True, True, False)],
    )
    def test_valid_only_when_unused_and_unexpired(self, used, expired, valid):
        status = TokenStatus(
            image_id=uuid4(), used=used, expired=expired, expires_at=datetime.now(UTC)
        )
        assert status.valid is valid


class TestAssetModels:
    """Upload inputs."""

    def test_metadata_defaults(self):
        metadata = AssetMetadata(owner_id=uuid4(), title="Forest Path", price_minor=1875)
        assert metadata.category == "general"
        assert metadata.description == ""

    def test_metadata_requires_title(self):
        with pytest.raises(ValueError, match="title"):
            AssetMetadata(owner_id=uuid4(), title="  ", price_minor=1875)

    def test_metadata_requires_positive_price(self):
        with pytest.raises(ValueError):
            AssetMetadata(owner_id=uuid4(), title="Forest Path", price_minor=0)

    def test_empty_file_rejected(self):
        with pytest.raises(ValueError, match="empty"):
            AssetFile(filename="empty.jpg", content=b"")
