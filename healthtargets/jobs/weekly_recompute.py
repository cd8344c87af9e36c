"""
Weekly recompute of every onboarded user's targets.

`python -m healthtargets.jobs.weekly_recompute [--max-concurrency N]`

Scheduling (cron, Cloud Scheduler, ...) is external. Each run force-recomputes
metrics per user and reports only changes above the significance thresholds.
"""

import argparse
import asyncio
import json
import logging
import time
from dataclasses import asdict, dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from healthtargets.core.clock import Clock, system_clock
from healthtargets.core.config import settings
from healthtargets.core.database import get_session_factory
from healthtargets.core.logging import configure_logging
from healthtargets.jobs.sweep import onboarded_user_ids, sweep_users
from healthtargets.services.inputs import ProfileInputsProvider
from healthtargets.services.metrics import MetricsComputer, targets_of
from healthtargets.services.science import ComputedTargets

logger = logging.getLogger(__name__)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


@dataclass
class UserRecomputeUpdate:
    user_id: int
    previous_calories: int
    new_calories: int
    previous_protein: float
    new_protein: float
    reason: str

    def to_dict(self) -> dict:
        return {_camel(k): v for k, v in asdict(self).items()}


@dataclass
class RecomputeSummary:
    total_users: int = 0
    success_count: int = 0
    error_count: int = 0
    updates: list[UserRecomputeUpdate] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "totalUsers": self.total_users,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "updates": [u.to_dict() for u in self.updates],
        }


def significant_change(
    previous: ComputedTargets,
    new: ComputedTargets,
    calorie_threshold: float,
    protein_threshold: float,
) -> str | None:
    """Human-readable reason when either target moved past its threshold, else None."""
    calorie_delta = new.calorie_target - previous.calorie_target
    protein_delta = round(new.protein_target - previous.protein_target, 1)

    reasons = []
    if abs(calorie_delta) > calorie_threshold:
        reasons.append(
            f"calories changed by {calorie_delta:+d} kcal "
            f"({previous.calorie_target} -> {new.calorie_target})"
        )
    if abs(protein_delta) > protein_threshold:
        reasons.append(
            f"protein changed by {protein_delta:+g} g "
            f"({previous.protein_target:g} -> {new.protein_target:g})"
        )
    return ", ".join(reasons) or None


class WeeklyRecomputeBatchJob:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock = system_clock,
        max_concurrency: int | None = None,
        calorie_threshold: float | None = None,
        protein_threshold: float | None = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.clock = clock
        self.max_concurrency = max_concurrency or settings.recompute_max_concurrency
        self.calorie_threshold = (
            settings.calorie_change_threshold if calorie_threshold is None else calorie_threshold
        )
        self.protein_threshold = (
            settings.protein_change_threshold if protein_threshold is None else protein_threshold
        )

    async def recompute_user(self, user_id: int) -> UserRecomputeUpdate | None:
        async with self.session_factory() as session:
            inputs = await ProfileInputsProvider(session, self.clock).get_inputs(user_id)
            computer = MetricsComputer(session, self.clock)
            prior = await computer.latest(user_id)
            record = await computer.compute_and_store(user_id, inputs, force_recompute=True)
            await session.commit()
            if prior is None or prior.version == record.version:
                return None
            previous, new = targets_of(prior), targets_of(record)

        reason = significant_change(previous, new, self.calorie_threshold, self.protein_threshold)
        if reason is None:
            logger.debug("No significant target change for user %s", user_id)
            return None
        return UserRecomputeUpdate(
            user_id=user_id,
            previous_calories=previous.calorie_target,
            new_calories=new.calorie_target,
            previous_protein=previous.protein_target,
            new_protein=new.protein_target,
            reason=reason,
        )

    async def run(self) -> RecomputeSummary:
        started = time.perf_counter()
        logger.info("Starting weekly recompute job")

        user_ids = await onboarded_user_ids(self.session_factory)
        outcomes = await sweep_users(
            user_ids, self.recompute_user, self.max_concurrency, "Weekly recompute"
        )

        summary = RecomputeSummary(total_users=len(user_ids))
        for outcome in outcomes:
            if not outcome.ok:
                summary.error_count += 1
                continue
            summary.success_count += 1
            if outcome.value is not None:
                summary.updates.append(outcome.value)
                logger.info("User %s targets updated: %s", outcome.user_id, outcome.value.reason)

        logger.info(
            "Weekly recompute job completed: users=%s success=%s errors=%s updated=%s in %.0fms",
            summary.total_users,
            summary.success_count,
            summary.error_count,
            len(summary.updates),
            (time.perf_counter() - started) * 1000,
        )
        return summary


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    ap.add_argument("--max-concurrency", type=int, default=None)
    args = ap.parse_args(argv)

    configure_logging(settings.log_level)
    summary = asyncio.run(WeeklyRecomputeBatchJob(max_concurrency=args.max_concurrency).run())
    print(json.dumps(summary.to_dict(), indent=2))


if __name__ == "__main__":
    main()
