"""
FastAPI Dependencies - Authentication and service wiring.

NO DICTIONARIES - All dependencies return typed objects.
"""

import secrets

from fastapi import Depends, Header, HTTPException, status
from structlog import get_logger

from marketplace.config import settings
from marketplace.exceptions import AuthenticationError
from marketplace.models.api import ErrorDetail
from marketplace.services.upload import HttpAssetStorage, UploadPipeline

logger = get_logger(__name__)

# Process-wide storage client (HTTP connection pool), closed at shutdown
_asset_storage: HttpAssetStorage | None = None


# ============================================================================
# Service Key Authentication (surrounding application -> core)
# ============================================================================


def verify_service_key(x_api_key: str | None) -> None:
    """
    Check a presented service key against the configured one.

    No-op when no service key is configured (development).

    Raises:
        AuthenticationError: Key missing or wrong
    """
    expected = settings.service_api_key
    if expected is None:
        return
    if not x_api_key:
        raise AuthenticationError("X-API-Key header required")
    if not secrets.compare_digest(x_api_key.encode(), expected.encode()):
        raise AuthenticationError("invalid service key")


async def require_service_key(
    x_api_key: str | None = Header(None, description="Service API key"),
) -> None:
    """
    FastAPI dependency guarding every business endpoint.

    Usage:
        @router.post("/v1/purchases", dependencies=[Depends(require_service_key)])
    """
    try:
        verify_service_key(x_api_key)
    except AuthenticationError as exc:
        logger.warning("service_key_rejected", reason=exc.message)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=ErrorDetail(code=exc.code, message=exc.message).model_dump(),
            headers={"WWW-Authenticate": "ApiKey"},
        ) from exc


# ============================================================================
# Upload Pipeline
# ============================================================================


def get_asset_storage() -> HttpAssetStorage:
    """Get or create the process-wide storage client."""
    global _asset_storage
    if _asset_storage is None:
        _asset_storage = HttpAssetStorage()
    return _asset_storage


async def close_asset_storage() -> None:
    """Close the storage client (for graceful shutdown)."""
    global _asset_storage
    if _asset_storage is not None:
        await _asset_storage.close()
        _asset_storage = None


def get_upload_pipeline(
    storage: HttpAssetStorage = Depends(get_asset_storage),
) -> UploadPipeline:
    """FastAPI dependency for the upload pipeline."""
    return UploadPipeline(storage)
