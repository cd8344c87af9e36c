"""Gate between acknowledged metrics and the weekly plan.

State is derived from storage on every call, never cached:

    no_metrics -> metrics_unacknowledged -> metrics_acknowledged -> plan_current

A new metrics version drops the user back to ``metrics_unacknowledged`` because
acknowledgments and plans are keyed to the version they were made against.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.clock import Clock, as_utc, system_clock
from healthtargets.core.config import settings
from healthtargets.core.database import insert_ignoring_conflicts, storage_errors
from healthtargets.core.errors import PreconditionFailedError
from healthtargets.models.metrics import MetricsRecord
from healthtargets.models.plan import PlanSnapshot
from healthtargets.services.acknowledgment import AcknowledgmentGate
from healthtargets.services.metrics import MetricsComputer, targets_of
from healthtargets.services.science import ComputedTargets

logger = logging.getLogger(__name__)


class PlanState(str, enum.Enum):
    NO_METRICS = "no_metrics"
    METRICS_UNACKNOWLEDGED = "metrics_unacknowledged"
    METRICS_ACKNOWLEDGED = "metrics_acknowledged"
    PLAN_CURRENT = "plan_current"


@dataclass
class GateStatus:
    state: PlanState
    metrics: MetricsRecord | None = None
    snapshot: PlanSnapshot | None = None


@dataclass
class PlanGeneration:
    snapshot: PlanSnapshot
    targets: ComputedTargets
    recomputed: bool
    previous_targets: ComputedTargets | None = None


def week_bounds(day: date) -> tuple[date, date]:
    """Monday through Sunday containing ``day``."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def snapshot_targets(snapshot: PlanSnapshot) -> ComputedTargets:
    return ComputedTargets(
        bmr=snapshot.bmr,
        tdee=snapshot.tdee,
        calorie_target=snapshot.calorie_target,
        protein_target=snapshot.protein_target,
        water_target=snapshot.water_target,
        weekly_rate=snapshot.weekly_rate,
        estimated_weeks=snapshot.estimated_weeks,
        projected_date=snapshot.projected_date,
    )


class PlanGenerationGate:
    def __init__(
        self,
        session: AsyncSession,
        clock: Clock = system_clock,
        freshness_days: int | None = None,
        metrics: MetricsComputer | None = None,
        acknowledgments: AcknowledgmentGate | None = None,
    ):
        self.session = session
        self.clock = clock
        self.freshness = timedelta(days=freshness_days or settings.plan_freshness_days)
        self.metrics = metrics or MetricsComputer(session, clock)
        self.acknowledgments = acknowledgments or AcknowledgmentGate(session, clock, self.metrics)

    async def _snapshot_for_week(self, user_id: int, week_start: date) -> PlanSnapshot | None:
        with storage_errors("load plan snapshot"):
            result = await self.session.execute(
                select(PlanSnapshot).where(
                    PlanSnapshot.user_id == user_id, PlanSnapshot.week_start == week_start
                )
            )
            return result.scalar_one_or_none()

    async def _latest_snapshot(self, user_id: int) -> PlanSnapshot | None:
        with storage_errors("load plan snapshot"):
            result = await self.session.execute(
                select(PlanSnapshot)
                .where(PlanSnapshot.user_id == user_id)
                .order_by(PlanSnapshot.week_start.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def status(self, user_id: int) -> GateStatus:
        current = await self.metrics.current_for_today(user_id)
        if current is None:
            return GateStatus(PlanState.NO_METRICS)

        if await self.acknowledgments.acknowledgment_for(current) is None:
            return GateStatus(PlanState.METRICS_UNACKNOWLEDGED, current)

        week_start, _ = week_bounds(self.metrics.today())
        snapshot = await self._snapshot_for_week(user_id, week_start)
        if snapshot is not None and snapshot.metrics_version == current.version:
            return GateStatus(PlanState.PLAN_CURRENT, current, snapshot)
        return GateStatus(PlanState.METRICS_ACKNOWLEDGED, current, snapshot)

    async def state(self, user_id: int) -> PlanState:
        return (await self.status(user_id)).state

    def _is_fresh(self, snapshot: PlanSnapshot) -> bool:
        return self.clock() - as_utc(snapshot.updated_at) < self.freshness

    async def generate(self, user_id: int, force_recompute: bool = False) -> PlanGeneration:
        gate = await self.status(user_id)
        if gate.state in (PlanState.NO_METRICS, PlanState.METRICS_UNACKNOWLEDGED):
            logger.info("Plan generation refused for user %s in state %s", user_id, gate.state.value)
            raise PreconditionFailedError(
                "Today's metrics must be acknowledged before a plan can be generated"
            )

        current = gate.metrics
        if (
            gate.state is PlanState.PLAN_CURRENT
            and not force_recompute
            and self._is_fresh(gate.snapshot)
        ):
            logger.debug("Returning cached plan for user %s (metrics v%s)", user_id, current.version)
            return PlanGeneration(
                snapshot=gate.snapshot,
                targets=snapshot_targets(gate.snapshot),
                recomputed=False,
            )

        previous = gate.snapshot or await self._latest_snapshot(user_id)
        previous_targets = snapshot_targets(previous) if previous is not None else None
        snapshot = await self._write_snapshot(user_id, current, previous_targets)
        logger.info(
            "Generated plan for user %s from metrics v%s (calories=%s, protein=%s)",
            user_id,
            current.version,
            current.calorie_target,
            current.protein_target,
        )
        return PlanGeneration(
            snapshot=snapshot,
            targets=targets_of(current),
            recomputed=True,
            previous_targets=previous_targets,
        )

    async def _write_snapshot(
        self,
        user_id: int,
        current: MetricsRecord,
        previous: ComputedTargets | None,
    ) -> PlanSnapshot:
        now = self.clock()
        week_start, week_end = week_bounds(self.metrics.today())
        values = dict(
            name=f"Weekly Plan - week of {week_start:%b} {week_start.day}, {week_start.year}",
            week_end=week_end,
            metrics_version=current.version,
            bmr=current.bmr,
            tdee=current.tdee,
            calorie_target=current.calorie_target,
            protein_target=current.protein_target,
            water_target=current.water_target,
            weekly_rate=current.weekly_rate,
            estimated_weeks=current.estimated_weeks,
            projected_date=current.projected_date,
            recomputed=previous is not None,
            previous_bmr=previous.bmr if previous else None,
            previous_tdee=previous.tdee if previous else None,
            previous_calorie_target=previous.calorie_target if previous else None,
            previous_protein_target=previous.protein_target if previous else None,
            previous_water_target=previous.water_target if previous else None,
            updated_at=now,
        )

        snapshot = await self._snapshot_for_week(user_id, week_start)
        if snapshot is None:
            stmt = (
                insert_ignoring_conflicts(self.session, PlanSnapshot, "user_id", "week_start")
                .values(user_id=user_id, week_start=week_start, created_at=now, **values)
                .returning(PlanSnapshot.id)
            )
            with storage_errors("store plan snapshot"):
                inserted_id = (await self.session.execute(stmt)).scalar_one_or_none()
            if inserted_id is not None:
                with storage_errors("reload plan snapshot"):
                    return await self.session.get(PlanSnapshot, inserted_id)
            snapshot = await self._snapshot_for_week(user_id, week_start)

        for key, value in values.items():
            setattr(snapshot, key, value)
        with storage_errors("refresh plan snapshot"):
            await self.session.flush()
        return snapshot
