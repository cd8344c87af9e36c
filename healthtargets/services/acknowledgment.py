"""Acknowledgment of one exact metrics computation.

A request names ``(version, metrics_computed_at)``. It matches a stored record
when the version is equal and both timestamps fall in the same whole second,
truncating the fractional part. Clients round-trip timestamps through
serializers that drop or reformat milliseconds, so sub-second differences are
tolerated; a different integer second is a different computation.

Rounding instead of truncating turns a stored ``.5``-``.999`` fraction into the
next second and rejects valid acknowledgments, so only truncation is used here.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.clock import Clock, floor_epoch_seconds, system_clock
from healthtargets.core.database import insert_ignoring_conflicts, storage_errors
from healthtargets.core.errors import NotFoundError, TransientStorageError
from healthtargets.models.metrics import AcknowledgmentRecord, MetricsRecord
from healthtargets.services.metrics import MetricsComputer

logger = logging.getLogger(__name__)


def truncate_to_second(value: datetime) -> datetime:
    return datetime.fromtimestamp(floor_epoch_seconds(value), tz=timezone.utc)


class AcknowledgmentGate:
    def __init__(self, session: AsyncSession, clock: Clock = system_clock, metrics: MetricsComputer | None = None):
        self.session = session
        self.clock = clock
        self.metrics = metrics or MetricsComputer(session, clock)

    async def _find(self, user_id: int, version: int, computed_second: datetime) -> AcknowledgmentRecord | None:
        with storage_errors("load acknowledgment"):
            result = await self.session.execute(
                select(AcknowledgmentRecord).where(
                    AcknowledgmentRecord.user_id == user_id,
                    AcknowledgmentRecord.version == version,
                    AcknowledgmentRecord.metrics_computed_at == computed_second,
                )
            )
            return result.scalar_one_or_none()

    async def acknowledgment_for(self, record: MetricsRecord) -> AcknowledgmentRecord | None:
        return await self._find(record.user_id, record.version, truncate_to_second(record.computed_at))

    async def acknowledge(self, user_id: int, version: int, metrics_computed_at: datetime) -> AcknowledgmentRecord:
        record = await self.metrics.by_version(user_id, version)
        if record is None or floor_epoch_seconds(record.computed_at) != floor_epoch_seconds(metrics_computed_at):
            latest = await self.metrics.latest(user_id)
            logger.warning(
                "Acknowledgment rejected for user %s: no metrics v%s computed at %s (latest is v%s)",
                user_id,
                version,
                metrics_computed_at.isoformat(),
                latest.version if latest else None,
            )
            raise NotFoundError("Metrics not found for the specified timestamp and version")

        computed_second = truncate_to_second(record.computed_at)
        existing = await self._find(user_id, version, computed_second)
        if existing is not None:
            logger.info("Metrics v%s already acknowledged by user %s", version, user_id)
            return existing

        stmt = (
            insert_ignoring_conflicts(
                self.session, AcknowledgmentRecord, "user_id", "version", "metrics_computed_at"
            )
            .values(
                user_id=user_id,
                version=version,
                metrics_computed_at=computed_second,
                acknowledged_at=self.clock(),
            )
            .returning(AcknowledgmentRecord.id)
        )
        with storage_errors("store acknowledgment"):
            inserted_id = (await self.session.execute(stmt)).scalar_one_or_none()

        if inserted_id is None:
            # A concurrent request for the same key got there first.
            existing = await self._find(user_id, version, computed_second)
            if existing is None:
                raise TransientStorageError(
                    f"Acknowledgment for user {user_id} v{version} vanished after a write conflict"
                )
            return existing

        with storage_errors("reload acknowledgment"):
            acknowledgment = await self.session.get(AcknowledgmentRecord, inserted_id)
        logger.info("User %s acknowledged metrics v%s", user_id, version)
        return acknowledgment

    async def is_acknowledged(self, user_id: int) -> bool:
        current = await self.metrics.current_for_today(user_id)
        if current is None:
            return False
        return await self.acknowledgment_for(current) is not None
