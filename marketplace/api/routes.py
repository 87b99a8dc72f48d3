"""
API Routes - FastAPI endpoints for purchases, downloads and uploads.

NO DICTIONARIES - All requests/responses use Pydantic models.

Every business endpoint requires the service key (X-API-Key) when one is
configured. Errors use the envelope {"detail": {"code": ..., "message": ...}}.
"""

from datetime import UTC, datetime
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.api.dependencies import get_upload_pipeline, require_service_key
from marketplace.config import settings
from marketplace.db.session import check_database, get_db
from marketplace.exceptions import (
    AmountMismatchError,
    AssetReferenceInvalidError,
    DataIntegrityError,
    ImageNotFoundError,
    MarketplaceError,
    PaymentReferenceConflictError,
    ProfileNotFoundError,
    SelfPurchaseError,
    StorageUnavailableError,
    TokenAlreadyUsedError,
    TokenExpiredError,
    TokenNotFoundError,
    TransactionNotSettledError,
    UploadFailedError,
    UploadRejectedError,
    WriteVerificationError,
)
from marketplace.models.api import (
    DownloadTokenListResponse,
    DownloadTokenResponse,
    ErrorDetail,
    HealthResponse,
    ImageListResponse,
    ImagePriceUpdateRequest,
    ImageResponse,
    PurchaseRequest,
    PurchaseResponse,
    RedeemRequest,
    RedeemResponse,
    TokenStatusResponse,
    TransactionListResponse,
    TransactionResponse,
    TransactionRole,
    UploadResponse,
    VerifyAssetReferenceRequest,
    VerifyAssetReferenceResponse,
)
from marketplace.models.domain import (
    AssetFile,
    AssetMetadata,
    DownloadTokenData,
    ImageData,
    PurchaseIntent,
    TransactionData,
)
from marketplace.services.catalog import CatalogService
from marketplace.services.download_tokens import DownloadTokenService, verify_asset_reference
from marketplace.services.settlement import SettlementService
from marketplace.services.upload import UploadPipeline

router = APIRouter()


def _error(
    status_code: int, exc: MarketplaceError, headers: dict[str, str] | None = None
) -> HTTPException:
    """Build an HTTPException carrying the error envelope."""
    return HTTPException(
        status_code=status_code,
        detail=ErrorDetail(code=exc.code, message=str(exc)).model_dump(),
        headers=headers,
    )


def _transaction_response(data: TransactionData) -> TransactionResponse:
    return TransactionResponse(
        transaction_id=data.transaction_id,
        buyer_id=data.buyer_id,
        seller_id=data.seller_id,
        image_id=data.image_id,
        amount_minor=data.amount_minor,
        currency=data.currency,
        status=data.status,
        payment_ref=data.payment_ref,
        created_at=data.created_at.isoformat(),
    )


def _token_response(data: DownloadTokenData) -> DownloadTokenResponse:
    return DownloadTokenResponse(
        token_id=data.token_id,
        transaction_id=data.transaction_id,
        buyer_id=data.buyer_id,
        image_id=data.image_id,
        token=data.token,
        expires_at=data.expires_at.isoformat(),
        used=data.used,
        created_at=data.created_at.isoformat(),
    )


def _image_response(data: ImageData) -> ImageResponse:
    return ImageResponse(
        image_id=data.image_id,
        owner_id=data.owner_id,
        title=data.title,
        description=data.description,
        category=data.category,
        price_minor=data.price_minor,
        downloads=data.downloads,
        thumbnail_url=data.thumbnail_url,
        created_at=data.created_at.isoformat(),
    )


# ============================================================================
# Purchases
# ============================================================================


@router.post(
    "/v1/purchases",
    response_model=PurchaseResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_service_key)],
)
async def create_purchase(
    request: PurchaseRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> PurchaseResponse:
    """
    Settle a verified payment and issue the buyer's download token.

    Replaying a settled payment_ref returns the original purchase with 200.
    """
    service = SettlementService(db)
    intent = PurchaseIntent(
        buyer_id=request.buyer_id,
        image_id=request.image_id,
        amount_minor=request.amount_minor,
        payment_ref=request.payment_ref,
    )

    try:
        receipt = await service.purchase(intent)
    except (AmountMismatchError, SelfPurchaseError) as exc:
        raise _error(status.HTTP_400_BAD_REQUEST, exc) from exc
    except (ImageNotFoundError, ProfileNotFoundError) as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except PaymentReferenceConflictError as exc:
        raise _error(
            status.HTTP_409_CONFLICT,
            exc,
            headers={"X-Existing-Transaction-ID": str(exc.existing_id)},
        ) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc
    except (WriteVerificationError, DataIntegrityError, TransactionNotSettledError) as exc:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc) from exc

    if receipt.replayed:
        response.status_code = status.HTTP_200_OK

    return PurchaseResponse(
        transaction=_transaction_response(receipt.transaction),
        download_token=_token_response(receipt.download_token),
        replayed=receipt.replayed,
    )


@router.get(
    "/v1/transactions/{transaction_id}/download-token",
    response_model=DownloadTokenResponse,
    dependencies=[Depends(require_service_key)],
)
async def get_download_token(
    transaction_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DownloadTokenResponse:
    """Get the download token for a settled transaction, issuing it if missing."""
    service = DownloadTokenService(db)

    try:
        token = await service.issue_token(transaction_id)
    except TransactionNotSettledError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc) from exc

    return _token_response(token)


# ============================================================================
# Downloads
# ============================================================================


@router.post(
    "/v1/downloads/redeem",
    response_model=RedeemResponse,
    dependencies=[Depends(require_service_key)],
)
async def redeem_download_token(
    request: RedeemRequest,
    db: AsyncSession = Depends(get_db),
) -> RedeemResponse:
    """
    Redeem a download token exactly once.

    Returns a short-lived signed asset reference for the delivery service.
    """
    service = DownloadTokenService(db)

    try:
        reference = await service.redeem(request.token)
    except TokenNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except TokenExpiredError as exc:
        raise _error(status.HTTP_410_GONE, exc) from exc
    except TokenAlreadyUsedError as exc:
        raise _error(status.HTTP_409_CONFLICT, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc
    except (WriteVerificationError, DataIntegrityError) as exc:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc) from exc

    return RedeemResponse(
        image_id=reference.image_id,
        transaction_id=reference.transaction_id,
        download_url=reference.download_url,
        asset_reference=reference.asset_reference,
        asset_reference_expires_at=reference.expires_at.isoformat(),
    )


@router.get(
    "/v1/downloads/tokens/{token}",
    response_model=TokenStatusResponse,
    dependencies=[Depends(require_service_key)],
)
async def get_token_status(
    token: str,
    db: AsyncSession = Depends(get_db),
) -> TokenStatusResponse:
    """Read-only token status for display. Does not consume the token."""
    service = DownloadTokenService(db)

    try:
        token_status = await service.peek(token)
    except TokenNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    return TokenStatusResponse(
        valid=token_status.valid,
        used=token_status.used,
        expired=token_status.expired,
        image_id=token_status.image_id,
        expires_at=token_status.expires_at.isoformat(),
    )


@router.post(
    "/v1/downloads/verify",
    response_model=VerifyAssetReferenceResponse,
    dependencies=[Depends(require_service_key)],
)
async def verify_download_reference(
    request: VerifyAssetReferenceRequest,
) -> VerifyAssetReferenceResponse:
    """Verify a signed asset reference on behalf of the delivery service."""
    try:
        reference = verify_asset_reference(request.asset_reference)
    except AssetReferenceInvalidError as exc:
        raise _error(status.HTTP_403_FORBIDDEN, exc) from exc

    return VerifyAssetReferenceResponse(
        image_id=reference.image_id,
        transaction_id=reference.transaction_id,
        expires_at=reference.expires_at.isoformat(),
    )


# ============================================================================
# Uploads and Pricing
# ============================================================================


async def _read_upload(upload: UploadFile, field: str) -> AssetFile:
    """Read an uploaded file into memory, enforcing the size limit."""
    content = await upload.read(settings.upload_max_bytes + 1)
    if len(content) > settings.upload_max_bytes:
        raise HTTPException(
            status_code=413,
            detail=ErrorDetail(
                code="PAYLOAD_TOO_LARGE",
                message=f"{field} exceeds {settings.upload_max_bytes} bytes",
            ).model_dump(),
        )
    try:
        return AssetFile(
            filename=upload.filename or field,
            content=content,
            content_type=upload.content_type or "application/octet-stream",
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail=ErrorDetail(code="VALIDATION_ERROR", message=str(exc)).model_dump(),
        ) from exc


@router.post(
    "/v1/uploads",
    response_model=UploadResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_service_key)],
)
async def upload_image(
    file: UploadFile = File(..., description="Full-resolution asset"),
    thumbnail: UploadFile = File(..., description="Preview thumbnail"),
    owner_id: UUID = Form(...),
    title: str = Form(..., min_length=1, max_length=255),
    price_minor: int = Form(..., gt=0),
    description: str = Form(""),
    category: str = Form("general", max_length=100),
    db: AsyncSession = Depends(get_db),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
) -> UploadResponse:
    """
    Upload an asset with its thumbnail, then publish it as a priced image.

    No image is created unless the upload succeeds.
    """
    asset = await _read_upload(file, "file")
    preview = await _read_upload(thumbnail, "thumbnail")

    try:
        metadata = AssetMetadata(
            owner_id=owner_id,
            title=title,
            price_minor=price_minor,
            description=description,
            category=category,
            content_type=asset.content_type,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=422,
            detail=ErrorDetail(code="VALIDATION_ERROR", message=str(exc)).model_dump(),
        ) from exc

    service = CatalogService(db, pipeline)

    try:
        published = await service.publish_image(asset, preview, metadata)
    except ProfileNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except UploadRejectedError as exc:
        raise _error(422, exc) from exc
    except UploadFailedError as exc:
        raise _error(status.HTTP_502_BAD_GATEWAY, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc
    except WriteVerificationError as exc:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc) from exc

    return UploadResponse(
        image_id=published.image.image_id,
        asset_url=published.image.asset_url,
        thumbnail_url=published.image.thumbnail_url,
        attempts=published.attempts,
    )


@router.patch(
    "/v1/images/{image_id}",
    response_model=ImageResponse,
    dependencies=[Depends(require_service_key)],
)
async def update_image_price(
    image_id: UUID,
    request: ImagePriceUpdateRequest,
    db: AsyncSession = Depends(get_db),
) -> ImageResponse:
    """
    Change an image's price.

    Purchases already settled keep the amount they paid; later purchases
    must pay the new price.
    """
    service = CatalogService(db)

    try:
        image = await service.update_price(image_id, request.price_minor)
    except ImageNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc
    except WriteVerificationError as exc:
        raise _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc) from exc

    return _image_response(image)


# ============================================================================
# Listings
# ============================================================================


@router.get(
    "/v1/profiles/{profile_id}/transactions",
    response_model=TransactionListResponse,
    dependencies=[Depends(require_service_key)],
)
async def list_profile_transactions(
    profile_id: UUID,
    role: TransactionRole = Query(TransactionRole.BUYER),
    db: AsyncSession = Depends(get_db),
) -> TransactionListResponse:
    """List a profile's purchases (role=buyer) or sales (role=seller)."""
    service = SettlementService(db)

    try:
        transactions = await service.list_transactions(profile_id, role)
    except ProfileNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    return TransactionListResponse(
        profile_id=profile_id,
        role=role,
        transactions=[_transaction_response(t) for t in transactions],
    )


@router.get(
    "/v1/profiles/{profile_id}/download-tokens",
    response_model=DownloadTokenListResponse,
    dependencies=[Depends(require_service_key)],
)
async def list_profile_download_tokens(
    profile_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> DownloadTokenListResponse:
    """List a buyer's download tokens."""
    service = DownloadTokenService(db)

    try:
        tokens = await service.list_tokens(profile_id)
    except ProfileNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    return DownloadTokenListResponse(
        profile_id=profile_id,
        download_tokens=[_token_response(t) for t in tokens],
    )


@router.get(
    "/v1/profiles/{profile_id}/images",
    response_model=ImageListResponse,
    dependencies=[Depends(require_service_key)],
)
async def list_profile_images(
    profile_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> ImageListResponse:
    """List a creator's published images."""
    service = CatalogService(db)

    try:
        images = await service.list_images(profile_id)
    except ProfileNotFoundError as exc:
        raise _error(status.HTTP_404_NOT_FOUND, exc) from exc
    except StorageUnavailableError as exc:
        raise _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc) from exc

    return ImageListResponse(
        profile_id=profile_id,
        images=[_image_response(image) for image in images],
    )


# ============================================================================
# Health
# ============================================================================


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    timestamp = datetime.now(UTC).isoformat()

    if not await check_database():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=HealthResponse(
                status="unhealthy", database="disconnected", timestamp=timestamp
            ).model_dump(),
        )

    return HealthResponse(status="healthy", database="connected", timestamp=timestamp)
