"""
Daily pre-computation of today's metrics for every onboarded user.

`python -m healthtargets.jobs.daily_metrics [--max-concurrency N]`

Meant to run shortly after midnight in the reference timezone. Uses the
non-forced path, so users who already have today's metrics keep them.
"""

import argparse
import asyncio
import json
import logging
import time
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from healthtargets.core.clock import Clock, system_clock
from healthtargets.core.config import settings
from healthtargets.core.database import get_session_factory
from healthtargets.core.logging import configure_logging
from healthtargets.jobs.sweep import onboarded_user_ids, sweep_users
from healthtargets.services.inputs import IncompleteProfileError, ProfileInputsProvider
from healthtargets.services.metrics import MetricsComputer

logger = logging.getLogger(__name__)


@dataclass
class DailyMetricsSummary:
    total_users: int = 0
    success_count: int = 0
    error_count: int = 0
    skipped_count: int = 0

    def to_dict(self) -> dict:
        return {
            "totalUsers": self.total_users,
            "successCount": self.success_count,
            "errorCount": self.error_count,
            "skippedCount": self.skipped_count,
        }


class DailyMetricsJob:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        clock: Clock = system_clock,
        max_concurrency: int | None = None,
    ):
        self.session_factory = session_factory or get_session_factory()
        self.clock = clock
        self.max_concurrency = max_concurrency or settings.recompute_max_concurrency

    async def compute_user(self, user_id: int) -> bool:
        """Returns False when the user's profile is too incomplete to compute."""
        async with self.session_factory() as session:
            try:
                inputs = await ProfileInputsProvider(session, self.clock).get_inputs(user_id)
            except IncompleteProfileError:
                logger.debug("Skipping user %s with incomplete health data", user_id)
                return False
            await MetricsComputer(session, self.clock).compute_and_store(user_id, inputs)
            await session.commit()
        return True

    async def run(self) -> DailyMetricsSummary:
        started = time.perf_counter()
        logger.info("Starting daily metrics job")

        user_ids = await onboarded_user_ids(self.session_factory)
        outcomes = await sweep_users(user_ids, self.compute_user, self.max_concurrency, "Daily metrics")

        summary = DailyMetricsSummary(total_users=len(user_ids))
        for outcome in outcomes:
            if not outcome.ok:
                summary.error_count += 1
            elif outcome.value:
                summary.success_count += 1
            else:
                summary.skipped_count += 1

        logger.info(
            "Daily metrics job completed: users=%s success=%s errors=%s skipped=%s in %.0fms",
            summary.total_users,
            summary.success_count,
            summary.error_count,
            summary.skipped_count,
            (time.perf_counter() - started) * 1000,
        )
        return summary


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    ap.add_argument("--max-concurrency", type=int, default=None)
    args = ap.parse_args(argv)

    configure_logging(settings.log_level)
    summary = asyncio.run(DailyMetricsJob(max_concurrency=args.max_concurrency).run())
    print(json.dumps(summary.to_dict(), indent=2))


if __name__ == "__main__":
    main()
