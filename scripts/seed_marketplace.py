#!/usr/bin/env python3
"""
Seed Marketplace Script

Creates demo creator profiles and priced images for local development.
Balances start at zero; they only ever change through settlement.

Usage:
    DATABASE_URL=sqlite+aiosqlite:///./marketplace.db \\
    ASSET_SIGNING_SECRET=... python scripts/seed_marketplace.py --create-schema
"""

import argparse
import asyncio
import os
import sys
from dataclasses import dataclass

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from marketplace.db.models import Base
from marketplace.db.session import close_database, get_engine, get_session, init_database
from marketplace.models.domain import AssetMetadata, UploadedAsset
from marketplace.stores.images import ImageStore
from marketplace.stores.profiles import ProfileStore

logger = structlog.get_logger()

PLACEHOLDER = "https://placehold.co"


@dataclass(frozen=True)
class SeedImage:
    creator: str
    title: str
    description: str
    category: str
    price_minor: int
    colour: str


SEED_PROFILES = {
    "Sidhartha": "Creative photographer capturing moments",
    "Alice Johnson": "Nature photographer capturing the beauty of the world",
    "Bob Smith": "Street photographer and urban explorer",
    "Carol Davis": "Portrait photographer specializing in artistic shots",
}

SEED_IMAGES = [
    SeedImage("Sidhartha", "Sunset Over Mountains", "A breathtaking sunset view from the Rocky Mountains", "Nature", 1599, "FF6B35"),
    SeedImage("Sidhartha", "Creative Abstract", "Modern abstract art with vibrant colors", "Abstract", 2250, "4ECDC4"),
    SeedImage("Sidhartha", "City Architecture", "Stunning modern architecture in downtown", "Architecture", 1899, "45B7D1"),
    SeedImage("Alice Johnson", "Urban Street Scene", "Vibrant city life captured in downtown", "Street", 1250, "96CEB4"),
    SeedImage("Bob Smith", "Portrait Study", "Artistic portrait with dramatic lighting", "Portrait", 2500, "FECA57"),
    SeedImage("Carol Davis", "Forest Path", "A serene path through an ancient forest", "Nature", 1875, "FF9FF3"),
]


def _placeholder(size: str, colour: str, title: str) -> str:
    return f"{PLACEHOLDER}/{size}/{colour}/FFFFFF?text={title.replace(' ', '+')}"


async def seed(create_schema: bool) -> None:
    """Insert demo profiles and images."""
    await init_database()

    try:
        if create_schema:
            async with get_engine().begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("schema_created")

        async with get_session() as session:
            profiles = ProfileStore(session)
            images = ImageStore(session)

            owners = {}
            for name, bio in SEED_PROFILES.items():
                profile = await profiles.create(display_name=name, bio=bio)
                owners[name] = profile.id
                logger.info("profile_seeded", profile_id=str(profile.id), display_name=name)

            for item in SEED_IMAGES:
                metadata = AssetMetadata(
                    owner_id=owners[item.creator],
                    title=item.title,
                    price_minor=item.price_minor,
                    description=item.description,
                    category=item.category,
                )
                asset = UploadedAsset(
                    asset_url=_placeholder("1200x800", item.colour, item.title),
                    thumbnail_url=_placeholder("400x300", item.colour, item.title),
                    attempts=0,
                )
                image = await images.create(metadata, asset)
                logger.info(
                    "image_seeded",
                    image_id=str(image.id),
                    title=item.title,
                    price_minor=item.price_minor,
                )

            await session.commit()
    finally:
        await close_database()


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo marketplace data")
    parser.add_argument(
        "--create-schema",
        action="store_true",
        help="Create tables from the ORM metadata first (development databases only)",
    )
    args = parser.parse_args()
    asyncio.run(seed(args.create_schema))


if __name__ == "__main__":
    main()
