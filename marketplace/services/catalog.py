"""
Catalog Service - publishes images from successful uploads and edits prices.

An Image row is only ever created after the upload pipeline returns storage
locations, so no image references a failed upload.
"""

from uuid import UUID

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from marketplace.exceptions import (
    ImageNotFoundError,
    ProfileNotFoundError,
    StorageUnavailableError,
    WriteVerificationError,
)
from marketplace.models.domain import AssetFile, AssetMetadata, ImageData, PublishedImage
from marketplace.services.upload import UploadPipeline
from marketplace.stores.images import ImageStore, image_to_domain
from marketplace.stores.profiles import ProfileStore

logger = get_logger(__name__)


class CatalogService:
    """Image publishing and lookup."""

    def __init__(self, session: AsyncSession, pipeline: UploadPipeline | None = None) -> None:
        self.session = session
        self.pipeline = pipeline
        self.profiles = ProfileStore(session)
        self.images = ImageStore(session)

    async def publish_image(
        self,
        asset: AssetFile,
        thumbnail: AssetFile,
        metadata: AssetMetadata,
        timeout: float | None = None,
    ) -> PublishedImage:
        """
        Upload an asset and create its Image record.

        Raises:
            ProfileNotFoundError: Owner doesn't exist (checked before uploading)
            UploadRejectedError: Storage rejected the asset
            UploadFailedError: Upload attempts or time budget exhausted
            StorageUnavailableError: Ledger store failure
        """
        if self.pipeline is None:
            raise RuntimeError("CatalogService was created without an upload pipeline")

        try:
            owner = await self.profiles.get(metadata.owner_id)
            # No transaction stays open across the upload
            await self.session.commit()
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailableError(str(exc)) from exc

        if owner is None:
            raise ProfileNotFoundError(metadata.owner_id)

        uploaded = await self.pipeline.upload(asset, thumbnail, metadata, timeout=timeout)

        try:
            image = await self.images.create(metadata, uploaded)
            data = image_to_domain(image)
            await self.session.commit()
        except DBAPIError as exc:
            await self.session.rollback()
            logger.error(
                "image_publish_failed",
                owner_id=str(metadata.owner_id),
                asset_url=uploaded.asset_url,
                error=str(exc),
            )
            raise StorageUnavailableError(str(exc)) from exc

        logger.info(
            "image_published",
            image_id=str(data.image_id),
            owner_id=str(data.owner_id),
            price_minor=data.price_minor,
            attempts=uploaded.attempts,
        )
        return PublishedImage(image=data, attempts=uploaded.attempts)

    async def update_price(self, image_id: UUID, price_minor: int) -> ImageData:
        """
        Change an image's price.

        Purchases settle against the price current when they lock the image;
        a buyer paying an old price gets AmountMismatchError.

        Raises:
            ImageNotFoundError: Image doesn't exist
            ValueError: Price is not positive
            StorageUnavailableError: Ledger store failure
        """
        try:
            image = await self.images.update_price(image_id, price_minor)
            data = image_to_domain(image)
            await self.session.commit()
        except (ImageNotFoundError, WriteVerificationError):
            await self.session.rollback()
            raise
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailableError(str(exc)) from exc

        logger.info("image_price_updated", image_id=str(image_id), price_minor=price_minor)
        return data

    async def list_images(self, owner_id: UUID) -> list[ImageData]:
        """List a creator's images, newest first."""
        try:
            if await self.profiles.get(owner_id) is None:
                raise ProfileNotFoundError(owner_id)
            images = await self.images.list_by_owner(owner_id)
        except DBAPIError as exc:
            await self.session.rollback()
            raise StorageUnavailableError(str(exc)) from exc
        return [image_to_domain(image) for image in images]
