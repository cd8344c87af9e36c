import pytest
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.errors import NotFoundError, TransientStorageError
from healthtargets.models.metrics import AcknowledgmentRecord, MetricsRecord
from healthtargets.models.user import User
from healthtargets.services.acknowledgment import AcknowledgmentGate, truncate_to_second
from healthtargets.services.inputs import ProfileInputsProvider
from healthtargets.services.metrics import MetricsComputer

from conftest import NOW


async def _store_metrics(session: AsyncSession, user: User, clock, force: bool = False) -> MetricsRecord:
    inputs = await ProfileInputsProvider(session, clock).get_inputs(user.id)
    return await MetricsComputer(session, clock).compute_and_store(user.id, inputs, force_recompute=force)


async def _ack_rows(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(AcknowledgmentRecord).where(AcknowledgmentRecord.user_id == user_id)
    )
    return result.scalar_one()


class TestTruncateToSecond:
    def test_drops_fraction_without_rounding(self):
        assert truncate_to_second(NOW) == datetime(2026, 10, 19, 8, 30, 15, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert truncate_to_second(datetime(2026, 10, 19, 8, 30, 15, 999999)) == datetime(
            2026, 10, 19, 8, 30, 15, tzinfo=timezone.utc
        )


class TestAcknowledge:
    async def test_exact_timestamp(self, db_session: AsyncSession, test_user: User, clock):
        record = await _store_metrics(db_session, test_user, clock)
        gate = AcknowledgmentGate(db_session, clock)

        ack = await gate.acknowledge(test_user.id, record.version, NOW)

        assert ack.version == 1
        assert ack.user_id == test_user.id
        assert await gate.is_acknowledged(test_user.id)

    @pytest.mark.parametrize(
        "submitted",
        [
            NOW.replace(microsecond=0),
            NOW.replace(microsecond=999999),
            NOW.replace(microsecond=1000),
            NOW.astimezone(timezone(timedelta(hours=2))),
        ],
    )
    async def test_same_second_is_accepted(self, db_session: AsyncSession, test_user: User, clock, submitted):
        record = await _store_metrics(db_session, test_user, clock)
        ack = await AcknowledgmentGate(db_session, clock).acknowledge(test_user.id, record.version, submitted)
        assert ack.version == record.version

    @pytest.mark.parametrize(
        "submitted",
        [
            # .678 would round up to :16; only truncation keeps it at :15
            NOW.replace(second=16, microsecond=0),
            NOW.replace(second=14, microsecond=999999),
            NOW + timedelta(minutes=1),
        ],
    )
    async def test_different_second_is_rejected(self, db_session: AsyncSession, test_user: User, clock, submitted):
        record = await _store_metrics(db_session, test_user, clock)
        with pytest.raises(NotFoundError):
            await AcknowledgmentGate(db_session, clock).acknowledge(test_user.id, record.version, submitted)
        assert await _ack_rows(db_session, test_user.id) == 0

    async def test_unknown_version_is_rejected(self, db_session: AsyncSession, test_user: User, clock):
        await _store_metrics(db_session, test_user, clock)
        with pytest.raises(NotFoundError, match="timestamp and version"):
            await AcknowledgmentGate(db_session, clock).acknowledge(test_user.id, 2, NOW)

    async def test_no_metrics_is_rejected(self, db_session: AsyncSession, test_user: User, clock):
        with pytest.raises(NotFoundError):
            await AcknowledgmentGate(db_session, clock).acknowledge(test_user.id, 1, NOW)

    async def test_idempotent(self, db_session: AsyncSession, test_user: User, clock):
        record = await _store_metrics(db_session, test_user, clock)
        gate = AcknowledgmentGate(db_session, clock)

        first = await gate.acknowledge(test_user.id, record.version, NOW)
        clock.advance(minutes=10)
        second = await gate.acknowledge(test_user.id, record.version, NOW.replace(microsecond=0))

        assert second.id == first.id
        assert second.acknowledged_at == first.acknowledged_at
        assert await _ack_rows(db_session, test_user.id) == 1

    async def test_lost_race_returns_stored_acknowledgment(
        self, db_session: AsyncSession, test_user: User, clock, monkeypatch
    ):
        record = await _store_metrics(db_session, test_user, clock)
        gate = AcknowledgmentGate(db_session, clock)
        first = await gate.acknowledge(test_user.id, record.version, NOW)

        # Force the insert path so the unique key decides the outcome
        real_find = gate._find
        calls = []

        async def _miss_once(*args):
            calls.append(args)
            if len(calls) == 1:
                return None
            return await real_find(*args)

        monkeypatch.setattr(gate, "_find", _miss_once)
        second = await gate.acknowledge(test_user.id, record.version, NOW)

        assert second.id == first.id
        assert await _ack_rows(db_session, test_user.id) == 1

    async def test_vanished_acknowledgment_is_transient(
        self, db_session: AsyncSession, test_user: User, clock, monkeypatch
    ):
        record = await _store_metrics(db_session, test_user, clock)
        gate = AcknowledgmentGate(db_session, clock)
        await gate.acknowledge(test_user.id, record.version, NOW)

        async def _never_found(*args):
            return None

        monkeypatch.setattr(gate, "_find", _never_found)
        with pytest.raises(TransientStorageError):
            await gate.acknowledge(test_user.id, record.version, NOW)


class TestNewVersionInvalidates:
    async def test_forced_recompute_requires_new_acknowledgment(
        self, db_session: AsyncSession, test_user: User, clock
    ):
        record = await _store_metrics(db_session, test_user, clock)
        gate = AcknowledgmentGate(db_session, clock)
        await gate.acknowledge(test_user.id, record.version, NOW)

        clock.advance(minutes=1)
        newer = await _store_metrics(db_session, test_user, clock, force=True)

        assert newer.version == 2
        assert not await gate.is_acknowledged(test_user.id)
        assert await gate.acknowledgment_for(record) is not None
        assert await gate.acknowledgment_for(newer) is None

    async def test_old_version_can_still_be_acknowledged_but_does_not_count(
        self, db_session: AsyncSession, test_user: User, clock
    ):
        first = await _store_metrics(db_session, test_user, clock)
        clock.advance(minutes=1)
        await _store_metrics(db_session, test_user, clock, force=True)

        gate = AcknowledgmentGate(db_session, clock)
        await gate.acknowledge(test_user.id, first.version, NOW)
        assert not await gate.is_acknowledged(test_user.id)

    async def test_no_metrics_means_not_acknowledged(self, db_session: AsyncSession, test_user: User, clock):
        assert not await AcknowledgmentGate(db_session, clock).is_acknowledged(test_user.id)
