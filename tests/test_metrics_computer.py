import pytest
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from healthtargets.core.errors import TransientStorageError, ValidationError
from healthtargets.models.metrics import MetricsRecord
from healthtargets.models.user import User
from healthtargets.services.inputs import ProfileInputsProvider
from healthtargets.services.metrics import MetricsComputer
from healthtargets.services.science import ScienceInputs

from conftest import PROFILE_FIELDS, compute_metrics, create_user


async def _count(session: AsyncSession, user_id: int) -> int:
    result = await session.execute(
        select(func.count()).select_from(MetricsRecord).where(MetricsRecord.user_id == user_id)
    )
    return result.scalar_one()


async def _inputs(session: AsyncSession, user: User, clock) -> ScienceInputs:
    return await ProfileInputsProvider(session, clock).get_inputs(user.id)


class TestComputeAndStore:
    async def test_first_computation_is_version_one(self, db_session: AsyncSession, test_user: User, clock):
        computer = MetricsComputer(db_session, clock)
        record = await computer.compute_and_store(test_user.id, await _inputs(db_session, test_user, clock))

        assert record.version == 1
        assert record.computed_on == date(2026, 10, 19)
        assert record.calorie_target == 2211
        assert record.protein_target == 181.5
        assert record.water_target == 2900
        assert record.estimated_weeks == 15

    async def test_repeat_call_returns_same_record(self, db_session: AsyncSession, test_user: User, clock):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)

        first = await computer.compute_and_store(test_user.id, inputs)
        clock.advance(hours=3)
        second = await computer.compute_and_store(test_user.id, inputs)

        assert second.id == first.id
        assert second.version == 1
        assert await _count(db_session, test_user.id) == 1

    async def test_force_recompute_increments_version(self, db_session: AsyncSession, test_user: User, clock):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)

        first = await computer.compute_and_store(test_user.id, inputs)
        clock.advance(minutes=5)
        second = await computer.compute_and_store(test_user.id, inputs, force_recompute=True)

        assert second.version == first.version + 1
        assert (await computer.current_for_today(test_user.id)).id == second.id
        assert await _count(db_session, test_user.id) == 2

    async def test_next_day_creates_new_version(self, db_session: AsyncSession, test_user: User, clock):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)

        await computer.compute_and_store(test_user.id, inputs)
        clock.advance(days=1)
        assert await computer.current_for_today(test_user.id) is None

        record = await computer.compute_and_store(test_user.id, inputs)
        assert record.version == 2
        assert record.computed_on == date(2026, 10, 20)

    async def test_invalid_inputs_store_nothing(self, db_session: AsyncSession, test_user: User, clock):
        computer = MetricsComputer(db_session, clock)
        inputs = ScienceInputs(
            weight=10, height=175, age=35, gender="male",
            activity_level="sedentary", primary_goal="maintain",
        )
        with pytest.raises(ValidationError):
            await computer.compute_and_store(test_user.id, inputs)
        assert await _count(db_session, test_user.id) == 0

    async def test_lost_race_returns_winner(self, db_session: AsyncSession, test_user: User, clock, monkeypatch):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)
        winner = await computer.compute_and_store(test_user.id, inputs)

        # Simulate a writer that read the version counter before the winner committed
        async def _stale_last_version(user_id: int) -> int:
            return 0

        monkeypatch.setattr(computer, "last_version", _stale_last_version)
        clock.advance(seconds=1)
        result = await computer.compute_and_store(test_user.id, inputs, force_recompute=True)

        assert result.id == winner.id
        assert result.version == 1
        assert await _count(db_session, test_user.id) == 1

    async def test_lost_race_on_reuse_path_returns_winner(
        self, db_session: AsyncSession, test_user: User, clock, monkeypatch
    ):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)
        winner = await computer.compute_and_store(test_user.id, inputs)

        # A writer whose read happened before the winner committed sees no history
        async def _nothing_yet(user_id: int):
            return None

        monkeypatch.setattr(computer, "latest", _nothing_yet)
        result = await computer.compute_and_store(test_user.id, inputs)

        assert result.id == winner.id
        assert result.version == 1
        assert await _count(db_session, test_user.id) == 1

    async def test_writer_committing_between_reads_is_reused(
        self, db_session: AsyncSession, test_user: User, clock
    ):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)
        assert await computer.current_for_today(test_user.id) is None

        other = await compute_metrics(test_user.id, clock)
        result = await computer.compute_and_store(test_user.id, inputs)

        assert result.id == other.id
        assert result.version == 1
        assert await _count(db_session, test_user.id) == 1

    async def test_vanished_winner_is_transient(
        self, db_session: AsyncSession, test_user: User, clock, monkeypatch
    ):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)
        await computer.compute_and_store(test_user.id, inputs)

        async def _stale_last_version(user_id: int) -> int:
            return 0

        async def _gone(user_id: int, version: int):
            return None

        monkeypatch.setattr(computer, "last_version", _stale_last_version)
        monkeypatch.setattr(computer, "by_version", _gone)
        with pytest.raises(TransientStorageError):
            await computer.compute_and_store(test_user.id, inputs, force_recompute=True)

    async def test_versions_are_per_user(self, db_session: AsyncSession, test_user: User, clock):
        other = await create_user("other@example.com", profile=PROFILE_FIELDS)
        computer = MetricsComputer(db_session, clock)

        mine = await computer.compute_and_store(test_user.id, await _inputs(db_session, test_user, clock))
        theirs = await computer.compute_and_store(other.id, await _inputs(db_session, other, clock))

        assert mine.version == 1
        assert theirs.version == 1


class TestReadPaths:
    async def test_latest_and_by_version(self, db_session: AsyncSession, test_user: User, clock):
        computer = MetricsComputer(db_session, clock)
        inputs = await _inputs(db_session, test_user, clock)

        await computer.compute_and_store(test_user.id, inputs)
        clock.advance(days=2)
        await computer.compute_and_store(test_user.id, inputs)

        assert (await computer.latest(test_user.id)).version == 2
        assert (await computer.by_version(test_user.id, 1)).computed_on == date(2026, 10, 19)
        assert await computer.by_version(test_user.id, 3) is None
        assert await computer.last_version(test_user.id) == 2

    async def test_no_records(self, db_session: AsyncSession, test_user: User, clock):
        computer = MetricsComputer(db_session, clock)
        assert await computer.current_for_today(test_user.id) is None
        assert await computer.latest(test_user.id) is None
        assert await computer.last_version(test_user.id) == 0

    async def test_reference_timezone_sets_the_day(self, db_session: AsyncSession, test_user: User, clock):
        # 23:30 UTC on the 19th is already the 20th in Tokyo
        clock.advance(hours=15)
        computer = MetricsComputer(db_session, clock, timezone_name="Asia/Tokyo")
        record = await computer.compute_and_store(test_user.id, await _inputs(db_session, test_user, clock))
        assert record.computed_on == date(2026, 10, 20)
