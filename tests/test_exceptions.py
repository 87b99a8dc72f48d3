"""
Tests for exception classes.

Covers the error taxonomy, typed attributes and messages.
"""

from uuid import uuid4

import pytest

from marketplace.exceptions import (
    AmountMismatchError,
    AssetReferenceInvalidError,
    ConflictError,
    ImageNotFoundError,
    InvalidRequestError,
    MarketplaceError,
    NotFoundError,
    PaymentReferenceConflictError,
    ProfileNotFoundError,
    SelfPurchaseError,
    StorageUnavailableError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TransactionNotFoundError,
    TransactionNotSettledError,
    TransientError,
    UploadFailedError,
    UploadRejectedError,
)


class TestTaxonomy:
    """Every error belongs to exactly one category."""

    @pytest.mark.parametrize(
        "exc,category",
        [
            (AmountMismatchError(uuid4(), 1599, 1500), InvalidRequestError),
            (SelfPurchaseError(uuid4(), uuid4()), InvalidRequestError),
            (UploadRejectedError("bad format"), InvalidRequestError),
            (ImageNotFoundError(uuid4()), NotFoundError),
            (ProfileNotFoundError(uuid4()), NotFoundError),
            (TransactionNotFoundError(uuid4()), NotFoundError),
            (TransactionNotSettledError(uuid4()), NotFoundError),
            (TokenNotFoundError(), NotFoundError),
            (TokenAlreadyUsedError(uuid4()), ConflictError),
            (TokenExpiredError(uuid4(), "2026-10-18T00:00:00+00:00"), ConflictError),
            (PaymentReferenceConflictError("pay_1", uuid4()), ConflictError),
            (StorageUnavailableError("db down"), TransientError),
            (UploadFailedError(4, None), TransientError),
        ],
    )
    def test_category(self, exc, category):
        """Exception is in its category and is a MarketplaceError."""
        assert isinstance(exc, category)
        assert isinstance(exc, MarketplaceError)

    def test_codes_are_unique(self):
        """Leaf error codes are distinct."""
        codes = [
            AmountMismatchError.code,
            SelfPurchaseError.code,
            UploadRejectedError.code,
            ImageNotFoundError.code,
            ProfileNotFoundError.code,
            TransactionNotSettledError.code,
            TokenNotFoundError.code,
            TokenAlreadyUsedError.code,
            TokenExpiredError.code,
            PaymentReferenceConflictError.code,
            StorageUnavailableError.code,
            UploadFailedError.code,
            AssetReferenceInvalidError.code,
        ]
        assert len(codes) == len(set(codes))


class TestAmountMismatchError:
    """Tests for AmountMismatchError."""

    def test_attributes(self):
        """Exception carries price and received amount."""
        image_id = uuid4()
        exc = AmountMismatchError(image_id, expected_minor=1599, received_minor=1500)
        assert exc.image_id == image_id
        assert exc.expected_minor == 1599
        assert exc.received_minor == 1500

    def test_message_format(self):
        exc = AmountMismatchError(uuid4(), 1599, 1500)
        assert "1599" in str(exc)
        assert "1500" in str(exc)


class TestTransactionNotSettledError:
    """Tests for TransactionNotSettledError."""

    def test_missing_transaction(self):
        """No status means the transaction does not exist."""
        exc = TransactionNotSettledError(uuid4())
        assert exc.status is None
        assert "does not exist" in str(exc)

    def test_unsettled_transaction(self):
        exc = TransactionNotSettledError(uuid4(), status="pending")
        assert exc.status == "pending"
        assert "pending" in str(exc)


class TestTokenNotFoundError:
    """Tests for TokenNotFoundError."""

    def test_message_has_no_token_value(self):
        """The credential is never echoed back."""
        assert str(TokenNotFoundError()) == "Download token not found"


class TestPaymentReferenceConflictError:
    """Tests for PaymentReferenceConflictError."""

    def test_attributes(self):
        existing_id = uuid4()
        exc = PaymentReferenceConflictError("pay_abc", existing_id)
        assert exc.payment_ref == "pay_abc"
        assert exc.existing_id == existing_id
        assert str(existing_id) in str(exc)


class TestUploadFailedError:
    """Tests for UploadFailedError."""

    def test_attributes(self):
        """Exception carries attempt count and last error."""
        last = StorageUnavailableError("HTTP 503")
        exc = UploadFailedError(attempts=4, last_error=last)
        assert exc.attempts == 4
        assert exc.last_error is last
        assert "4 attempt" in str(exc)

    def test_rejected_keeps_status_code(self):
        exc = UploadRejectedError("unsupported", status_code=415)
        assert exc.status_code == 415
        assert exc.message == "unsupported"
