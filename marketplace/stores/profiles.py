"""
Profile Store - persistence for creator/buyer profiles.

Balance changes go exclusively through credit(), a single atomic increment
executed inside the caller's database transaction.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.db.models import Profile, as_utc, utc_now
from marketplace.exceptions import ProfileNotFoundError, WriteVerificationError
from marketplace.models.domain import ProfileData


def profile_to_domain(profile: Profile) -> ProfileData:
    """Convert ORM profile to domain model."""
    return ProfileData(
        profile_id=profile.id,
        display_name=profile.display_name,
        bio=profile.bio,
        balance_minor=profile.balance_minor,
        created_at=as_utc(profile.created_at),
        updated_at=as_utc(profile.updated_at),
    )


class ProfileStore:
    """Profile persistence operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, profile_id: UUID) -> Profile | None:
        """Get profile by id."""
        return await self.session.get(Profile, profile_id)

    async def get_for_update(self, profile_id: UUID) -> Profile | None:
        """Get profile by id holding a row lock, refreshing any cached instance."""
        stmt = (
            select(Profile)
            .where(Profile.id == profile_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(self, display_name: str, bio: str = "") -> Profile:
        """Create a profile with a zero balance (flushes, caller commits)."""
        profile = Profile(display_name=display_name, bio=bio, balance_minor=0)
        self.session.add(profile)
        await self.session.flush()

        verified = await self.session.get(Profile, profile.id)
        if verified is None:
            raise WriteVerificationError(f"Profile {profile.id} not found after insert")
        return verified

    async def update(
        self,
        profile_id: UUID,
        display_name: str | None = None,
        bio: str | None = None,
    ) -> Profile:
        """
        Update descriptive profile fields.

        The balance is deliberately not updatable here.
        """
        profile = await self.get(profile_id)
        if profile is None:
            raise ProfileNotFoundError(profile_id)

        if display_name is not None:
            profile.display_name = display_name
        if bio is not None:
            profile.bio = bio

        await self.session.flush()
        return profile

    async def credit(self, profile_id: UUID, amount_minor: int) -> Profile:
        """
        Atomically add amount_minor to the profile balance.

        Executes `balance_minor = balance_minor + :amount` in the database, so
        concurrent credits serialize on the row instead of losing updates.
        Returns the refreshed profile.
        """
        if amount_minor <= 0:
            raise ValueError(f"Credit amount must be positive: {amount_minor}")

        stmt = (
            update(Profile)
            .where(Profile.id == profile_id)
            .values(balance_minor=Profile.balance_minor + amount_minor, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount != 1:  # type: ignore[attr-defined]
            raise ProfileNotFoundError(profile_id)

        refreshed = await self.session.execute(
            select(Profile).where(Profile.id == profile_id).execution_options(populate_existing=True)
        )
        profile = refreshed.scalar_one_or_none()
        if profile is None:
            raise WriteVerificationError(f"Profile {profile_id} disappeared after credit")
        return profile
