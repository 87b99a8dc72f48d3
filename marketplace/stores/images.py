"""
Image Store - persistence for priced images.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db.models import Image, as_utc
from marketplace.exceptions import ImageNotFoundError, WriteVerificationError
from marketplace.models.domain import AssetMetadata, ImageData, UploadedAsset


def image_to_domain(image: Image) -> ImageData:
    """Convert ORM image to domain model."""
    return ImageData(
        image_id=image.id,
        owner_id=image.owner_id,
        title=image.title,
        description=image.description,
        category=image.category,
        price_minor=image.price_minor,
        downloads=image.downloads,
        asset_url=image.asset_url,
        thumbnail_url=image.thumbnail_url,
        created_at=as_utc(image.created_at),
    )


class ImageStore:
    """Image persistence operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, image_id: UUID) -> Image | None:
        """Get image by id."""
        return await self.session.get(Image, image_id)

    async def get_for_update(self, image_id: UUID) -> Image | None:
        """Get image by id holding a row lock (SELECT FOR UPDATE)."""
        stmt = select(Image).where(Image.id == image_id).with_for_update()
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def increment_downloads(self, image_id: UUID) -> int:
        """Atomically increment the download counter; returns the new value."""
        stmt = (
            update(Image)
            .where(Image.id == image_id)
            .values(downloads=Image.downloads + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise ImageNotFoundError(image_id)

        downloads = await self.session.scalar(select(Image.downloads).where(Image.id == image_id))
        if downloads is None:
            raise WriteVerificationError(f"Image {image_id} disappeared after update")
        return downloads

    async def update_price(self, image_id: UUID, price_minor: int) -> Image:
        """
        Change an image's price under the row lock settlement takes.

        A purchase settling concurrently sees either the old or the new price,
        never a mix. Flushes; caller commits.
        """
        if price_minor <= 0:
            raise ValueError(f"Price must be positive: {price_minor}")

        image = await self.get_for_update(image_id)
        if image is None:
            raise ImageNotFoundError(image_id)

        image.price_minor = price_minor
        await self.session.flush()

        verified = await self.session.scalar(select(Image.price_minor).where(Image.id == image_id))
        if verified != price_minor:
            raise WriteVerificationError(
                f"Image {image_id} price is {verified} after update, expected {price_minor}"
            )
        return image

    async def create(self, metadata: AssetMetadata, asset: UploadedAsset) -> Image:
        """Create an image record from a successfully uploaded asset (flushes, caller commits)."""
        image = Image(
            owner_id=metadata.owner_id,
            title=metadata.title,
            description=metadata.description,
            category=metadata.category,
            price_minor=metadata.price_minor,
            downloads=0,
            asset_url=asset.asset_url,
            thumbnail_url=asset.thumbnail_url,
        )
        self.session.add(image)
        await self.session.flush()

        verified = await self.session.get(Image, image.id)
        if verified is None:
            raise WriteVerificationError(f"Image {image.id} not found after insert")
        return verified

    async def list_by_owner(self, owner_id: UUID) -> list[Image]:
        """List images owned by a profile, newest first."""
        stmt = select(Image).where(Image.owner_id == owner_id).order_by(Image.created_at.desc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
