import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.auth import get_current_user
from healthtargets.core.clock import Clock, get_clock, local_day
from healthtargets.core.config import settings
from healthtargets.core.database import get_db_session
from healthtargets.models.user import User, UserProfile
from healthtargets.schemas.user import UserProfileCreate, UserProfileRead, UserProfileUpdate
from healthtargets.services.inputs import REQUIRED_PROFILE_FIELDS, inputs_from_profile
from healthtargets.services.metrics import MetricsComputer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/profile", tags=["profile"])

# Fields that, when changed, require targets to be recalculated
_TARGET_FIELDS = {
    "weight", "height", "primary_goal", "gender", "activity_level", "date_of_birth", "target_weight",
}


def _is_complete(profile: UserProfile) -> bool:
    return all(getattr(profile, name) is not None for name in REQUIRED_PROFILE_FIELDS)


async def _recompute_metrics(profile: UserProfile, db: AsyncSession, clock: Clock) -> None:
    """Store a fresh metrics version for the current profile state.

    A new version supersedes any earlier acknowledgment, so the user has to
    confirm the new targets before a plan can be built from them. Skips
    silently while the profile is still incomplete.
    """
    if not _is_complete(profile):
        return

    inputs = inputs_from_profile(profile, today=local_day(clock(), settings.reference_timezone))
    record = await MetricsComputer(db, clock).compute_and_store(
        profile.user_id, inputs, force_recompute=True
    )
    logger.info("Profile change for user %s produced metrics v%s", profile.user_id, record.version)


async def _get_profile_or_404(user_id: int, db: AsyncSession) -> UserProfile:
    result = await db.execute(
        select(UserProfile).where(UserProfile.user_id == user_id)
    )
    profile = result.scalar_one_or_none()
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Profile not found",
        )
    return profile


@router.post("", response_model=UserProfileRead, status_code=status.HTTP_201_CREATED)
async def create_profile(
    data: UserProfileCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
):
    result = await db.execute(
        select(UserProfile).where(UserProfile.user_id == current_user.id)
    )
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Profile already exists",
        )

    profile = UserProfile(user_id=current_user.id, **data.model_dump())
    db.add(profile)
    await db.flush()
    await db.refresh(profile)

    if _is_complete(profile):
        current_user.onboarding_completed = True
    await _recompute_metrics(profile, db, clock)

    return profile


@router.get("", response_model=UserProfileRead)
async def get_profile(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await _get_profile_or_404(current_user.id, db)


@router.put("", response_model=UserProfileRead)
async def update_profile(
    data: UserProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    clock: Clock = Depends(get_clock),
):
    profile = await _get_profile_or_404(current_user.id, db)

    update_data = data.model_dump(exclude_unset=True)
    changed = {
        field for field, value in update_data.items() if getattr(profile, field) != value
    }
    for field, value in update_data.items():
        setattr(profile, field, value)

    await db.flush()
    await db.refresh(profile)

    if _is_complete(profile):
        current_user.onboarding_completed = True
    if changed & _TARGET_FIELDS:
        await _recompute_metrics(profile, db, clock)

    return profile
