"""Compute-and-store entry point for daily targets.

At most one record per user is "current for today": the highest version whose
``computed_on`` is today in the reference timezone. Concurrent writers are
arbitrated by the ``(user_id, version)`` unique constraint; there is no
application-level locking.
"""

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.clock import Clock, local_day, system_clock
from healthtargets.core.config import settings
from healthtargets.core.database import insert_ignoring_conflicts, storage_errors
from healthtargets.core.errors import TransientStorageError
from healthtargets.models.metrics import MetricsRecord
from healthtargets.services.science import ComputedTargets, ScienceInputs, compute_targets

logger = logging.getLogger(__name__)


def targets_of(record: MetricsRecord) -> ComputedTargets:
    return ComputedTargets(
        bmr=record.bmr,
        tdee=record.tdee,
        calorie_target=record.calorie_target,
        protein_target=record.protein_target,
        water_target=record.water_target,
        weekly_rate=record.weekly_rate,
        estimated_weeks=record.estimated_weeks,
        projected_date=record.projected_date,
        bmi=record.bmi,
    )


class MetricsComputer:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        timezone_name: str | None = None,
    ):
        self.session = session
        self.clock = clock
        self.timezone_name = timezone_name or settings.reference_timezone

    def today(self) -> date:
        return local_day(self.clock(), self.timezone_name)

    async def current_for_today(self, user_id: int) -> MetricsRecord | None:
        with storage_errors("load today's metrics"):
            result = await self.session.execute(
                select(MetricsRecord)
                .where(MetricsRecord.user_id == user_id, MetricsRecord.computed_on == self.today())
                .order_by(MetricsRecord.version.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def latest(self, user_id: int) -> MetricsRecord | None:
        """Highest-version record regardless of day."""
        with storage_errors("load latest metrics"):
            result = await self.session.execute(
                select(MetricsRecord)
                .where(MetricsRecord.user_id == user_id)
                .order_by(MetricsRecord.version.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def by_version(self, user_id: int, version: int) -> MetricsRecord | None:
        with storage_errors("load metrics by version"):
            result = await self.session.execute(
                select(MetricsRecord).where(
                    MetricsRecord.user_id == user_id, MetricsRecord.version == version
                )
            )
            return result.scalar_one_or_none()

    async def last_version(self, user_id: int) -> int:
        with storage_errors("read the latest metrics version"):
            result = await self.session.execute(
                select(func.max(MetricsRecord.version)).where(MetricsRecord.user_id == user_id)
            )
            return result.scalar_one_or_none() or 0

    async def compute_and_store(
        self,
        user_id: int,
        inputs: ScienceInputs,
        force_recompute: bool = False,
    ) -> MetricsRecord:
        if force_recompute:
            version = await self.last_version(user_id) + 1
        else:
            # One read decides both reuse and the next version, so racing
            # non-forced writers target the same (user_id, version) key.
            latest = await self.latest(user_id)
            if latest is not None and latest.computed_on == self.today():
                logger.debug("Reusing metrics v%s for user %s", latest.version, user_id)
                return latest
            version = (latest.version if latest is not None else 0) + 1

        now = self.clock()
        targets = compute_targets(inputs, now)

        stmt = (
            insert_ignoring_conflicts(self.session, MetricsRecord, "user_id", "version")
            .values(
                user_id=user_id,
                version=version,
                computed_at=now,
                computed_on=local_day(now, self.timezone_name),
                bmi=targets.bmi,
                bmr=targets.bmr,
                tdee=targets.tdee,
                calorie_target=targets.calorie_target,
                protein_target=targets.protein_target,
                water_target=targets.water_target,
                weekly_rate=targets.weekly_rate,
                estimated_weeks=targets.estimated_weeks,
                projected_date=targets.projected_date,
                created_at=now,
            )
            .returning(MetricsRecord.id)
        )
        with storage_errors("store metrics"):
            inserted_id = (await self.session.execute(stmt)).scalar_one_or_none()

        if inserted_id is None:
            # Another writer claimed this version first; theirs is the current record.
            winner = await self.by_version(user_id, version)
            logger.info(
                "Metrics v%s for user %s was written concurrently, returning the stored record",
                version,
                user_id,
            )
            if winner is None:
                raise TransientStorageError(
                    f"Metrics v{version} for user {user_id} vanished after a write conflict"
                )
            return winner

        with storage_errors("reload stored metrics"):
            record = await self.session.get(MetricsRecord, inserted_id)
        logger.info(
            "Stored metrics v%s for user %s (calories=%s, protein=%s, forced=%s)",
            version,
            user_id,
            targets.calorie_target,
            targets.protein_target,
            force_recompute,
        )
        return record
