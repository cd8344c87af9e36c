import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from healthtargets.services.inputs import OnboardedUsers

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class UserOutcome(Generic[T]):
    user_id: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def onboarded_user_ids(session_factory: async_sessionmaker[AsyncSession]) -> list[int]:
    async with session_factory() as session:
        return await OnboardedUsers(session).user_ids()


async def sweep_users(
    user_ids: list[int],
    handler: Callable[[int], Awaitable[T]],
    max_concurrency: int,
    job_name: str,
) -> list[UserOutcome[T]]:
    """Run ``handler`` for every user, at most ``max_concurrency`` at a time.

    A failing user is logged and recorded in its outcome; it never stops the
    others.
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrency))

    async def _one(user_id: int) -> UserOutcome[T]:
        async with semaphore:
            try:
                return UserOutcome(user_id, value=await handler(user_id))
            except Exception as exc:
                logger.exception("%s failed for user %s", job_name, user_id)
                return UserOutcome(user_id, error=exc)

    return list(await asyncio.gather(*(_one(user_id) for user_id in user_ids)))
