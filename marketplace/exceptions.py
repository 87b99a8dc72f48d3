"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.

Every error belongs to one category of the taxonomy (validation, not found,
conflict, transient infrastructure). Validation and conflict errors are terminal;
only the upload pipeline retries transient errors internally.
"""

from uuid import UUID


class MarketplaceError(Exception):
    """Base exception for all marketplace errors."""

    code: str = "MARKETPLACE_ERROR"


# ============================================================================
# Taxonomy
# ============================================================================


class InvalidRequestError(MarketplaceError):
    """Input rejected; retrying the same request cannot succeed."""

    code = "VALIDATION_ERROR"


class NotFoundError(MarketplaceError):
    """Referenced entity does not exist (or is not in a usable state)."""

    code = "NOT_FOUND"


class ConflictError(MarketplaceError):
    """Request conflicts with the current state of an entity."""

    code = "CONFLICT"


class TransientError(MarketplaceError):
    """Infrastructure failure that may succeed later."""

    code = "TRANSIENT_ERROR"


# ============================================================================
# Validation
# ============================================================================


class AmountMismatchError(InvalidRequestError):
    """Raised when the paid amount differs from the image's current price."""

    code = "AMOUNT_MISMATCH"

    def __init__(self, image_id: UUID, expected_minor: int, received_minor: int) -> None:
        self.image_id = image_id
        self.expected_minor = expected_minor
        self.received_minor = received_minor
        super().__init__(
            f"Amount mismatch for image {image_id}: "
            f"price {expected_minor}, received {received_minor}"
        )


class SelfPurchaseError(InvalidRequestError):
    """Raised when a creator attempts to buy their own image."""

    code = "SELF_PURCHASE"

    def __init__(self, profile_id: UUID, image_id: UUID) -> None:
        self.profile_id = profile_id
        self.image_id = image_id
        super().__init__(f"Profile {profile_id} cannot purchase its own image {image_id}")


class UploadRejectedError(InvalidRequestError):
    """Raised when the storage collaborator rejects an upload (non-transient)."""

    code = "UPLOAD_REJECTED"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(f"Upload rejected: {message}")


# ============================================================================
# Not Found
# ============================================================================


class ImageNotFoundError(NotFoundError):
    """Raised when an image doesn't exist."""

    code = "IMAGE_NOT_FOUND"

    def __init__(self, image_id: UUID) -> None:
        self.image_id = image_id
        super().__init__(f"Image not found: {image_id}")


class ProfileNotFoundError(NotFoundError):
    """Raised when a profile doesn't exist."""

    code = "PROFILE_NOT_FOUND"

    def __init__(self, profile_id: UUID) -> None:
        self.profile_id = profile_id
        super().__init__(f"Profile not found: {profile_id}")


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction doesn't exist."""

    code = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: UUID) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class TransactionNotSettledError(NotFoundError):
    """Raised when a token is requested for a transaction that is missing or not completed."""

    code = "TRANSACTION_NOT_SETTLED"

    def __init__(self, transaction_id: UUID, status: str | None = None) -> None:
        self.transaction_id = transaction_id
        self.status = status
        if status is None:
            super().__init__(f"Transaction {transaction_id} does not exist")
        else:
            super().__init__(f"Transaction {transaction_id} is not settled (status: {status})")


class TokenNotFoundError(NotFoundError):
    """Raised when a download token value is unknown."""

    code = "TOKEN_NOT_FOUND"

    def __init__(self) -> None:
        # The token value is a credential; it is never echoed back.
        super().__init__("Download token not found")


# ============================================================================
# Conflict
# ============================================================================


class TokenAlreadyUsedError(ConflictError):
    """Raised when a download token has already been redeemed."""

    code = "TOKEN_ALREADY_USED"

    def __init__(self, token_id: UUID) -> None:
        self.token_id = token_id
        super().__init__(f"Download token {token_id} has already been used")


class TokenExpiredError(ConflictError):
    """Raised when a download token is past its expiry (regardless of used state)."""

    code = "TOKEN_EXPIRED"

    def __init__(self, token_id: UUID, expired_at: str) -> None:
        self.token_id = token_id
        self.expired_at = expired_at
        super().__init__(f"Download token {token_id} expired at {expired_at}")


class PaymentReferenceConflictError(ConflictError):
    """Raised when a payment reference is reused for a different purchase."""

    code = "PAYMENT_REFERENCE_CONFLICT"

    def __init__(self, payment_ref: str, existing_id: UUID) -> None:
        self.payment_ref = payment_ref
        self.existing_id = existing_id
        super().__init__(
            f"Payment reference {payment_ref} already settled as transaction {existing_id}"
        )


# ============================================================================
# Transient Infrastructure
# ============================================================================


class StorageUnavailableError(TransientError):
    """Raised when the ledger store cannot be reached or fails unexpectedly."""

    code = "STORAGE_UNAVAILABLE"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Storage unavailable: {message}")


class UploadFailedError(TransientError):
    """Raised when an upload could not be completed after all permitted attempts."""

    code = "UPLOAD_FAILED"

    def __init__(self, attempts: int, last_error: Exception | None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Upload failed after {attempts} attempt(s): {last_error}")


# ============================================================================
# Integrity / Security
# ============================================================================


class WriteVerificationError(MarketplaceError):
    """Raised when database write verification fails."""

    code = "WRITE_VERIFICATION_FAILED"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(MarketplaceError):
    """Raised when data integrity constraint violated."""

    code = "DATA_INTEGRITY_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class AuthenticationError(MarketplaceError):
    """Raised when authentication fails (invalid service key)."""

    code = "AUTHENTICATION_FAILED"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AssetReferenceInvalidError(MarketplaceError):
    """Raised when a signed asset reference is expired, tampered with or malformed."""

    code = "ASSET_REFERENCE_INVALID"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Invalid asset reference: {message}")
