"""Collaborators the engine reads from: a user's current inputs and the onboarded population."""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.clock import Clock, local_day, system_clock
from healthtargets.core.config import settings
from healthtargets.core.database import storage_errors
from healthtargets.core.errors import NotFoundError, ValidationError
from healthtargets.models.user import User, UserProfile
from healthtargets.services.science import ScienceInputs, calculate_age

# Profile fields that must be filled in before targets can be computed
REQUIRED_PROFILE_FIELDS = ("gender", "activity_level", "primary_goal")


class ScienceInputsProvider(Protocol):
    async def get_inputs(self, user_id: int) -> ScienceInputs: ...


class UserPopulation(Protocol):
    async def user_ids(self) -> list[int]: ...


class IncompleteProfileError(ValidationError):
    pass


class ProfileInputsProvider:
    def __init__(self, session: AsyncSession, clock: Clock = system_clock):
        self.session = session
        self.clock = clock

    async def get_profile(self, user_id: int) -> UserProfile | None:
        with storage_errors("load profile"):
            result = await self.session.execute(
                select(UserProfile).where(UserProfile.user_id == user_id)
            )
            return result.scalar_one_or_none()

    async def get_inputs(self, user_id: int) -> ScienceInputs:
        profile = await self.get_profile(user_id)
        if profile is None:
            raise NotFoundError("Profile not found")
        return inputs_from_profile(profile, today=local_day(self.clock(), settings.reference_timezone))


def inputs_from_profile(profile: UserProfile, today=None) -> ScienceInputs:
    missing = [name for name in REQUIRED_PROFILE_FIELDS if getattr(profile, name) is None]
    if missing:
        raise IncompleteProfileError(
            "Profile incomplete. Please complete onboarding.",
            errors=[f"{name}: is required" for name in missing],
        )
    return ScienceInputs(
        weight=profile.weight,
        height=profile.height,
        age=calculate_age(profile.date_of_birth, today=today),
        gender=profile.gender,
        activity_level=profile.activity_level,
        primary_goal=profile.primary_goal,
        target_weight=profile.target_weight,
    )


class OnboardedUsers:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def user_ids(self) -> list[int]:
        with storage_errors("list onboarded users"):
            result = await self.session.execute(
                select(User.id)
                .where(User.onboarding_completed.is_(True), User.is_active.is_(True))
                .order_by(User.id)
            )
            return list(result.scalars().all())
