"""Tests for ProgressionService."""
import asyncio

import pytest

from src.domains.progression.commands import AdjustReps, SetCurrentDay, UnlockWeek
from src.domains.progression.engine import apply_command
from src.domains.progression.exceptions import AssignmentNotFound, CommandNotAllowed, StaleVersion
from src.domains.progression.models import ModifiedBy
from src.domains.progression.schemas import AssignmentCreate, WeekStatus
from src.domains.progression.service import ProgressionService
from src.domains.progression.store import ProgressionStateStore
from src.domains.progression.sync import PollingTransport


@pytest.fixture
def channel():
    return PollingTransport(interval=0.05)


@pytest.fixture
def service(db_session, channel):
    return ProgressionService(db_session, channel)


class TestCreateAssignment:
    """Tests for assigning programs."""

    @pytest.mark.asyncio
    async def test_create_assignment(self, service, strength_program):
        created = await service.create_assignment(
            "client-1",
            AssignmentCreate(client_name="Alice", program=strength_program, duration_weeks=8),
        )

        assert created.version == 0
        assert created.duration == 8
        assert len(created.weeks) == 8
        assert created.weeks[0].is_unlocked
        assert created.share_token
        assert created.program == strength_program
        assert created.program is not strength_program

    @pytest.mark.asyncio
    async def test_create_replaces_active_assignment(self, service, db_session, strength_program, push_up_program):
        first = await service.create_assignment(
            "client-1",
            AssignmentCreate(client_name="Alice", program=strength_program),
        )
        second = await service.create_assignment(
            "client-1",
            AssignmentCreate(client_name="Alice", program=push_up_program, duration_weeks=2),
        )

        active = await service.get_assignment("client-1")
        previous = await ProgressionStateStore(db_session).load_by_id(first.id)
        assert active.id == second.id
        assert previous.is_active is False
        assert previous.version == 1
        assert await service.get_shared_assignment(first.share_token) is None

    @pytest.mark.asyncio
    async def test_create_publishes(self, service, channel, strength_program):
        created = await service.create_assignment(
            "client-1",
            AssignmentCreate(client_name="Alice", program=strength_program),
        )

        stored, version = await channel.read("client-1")
        assert stored.id == created.id
        assert version == 0


class TestApplyCommand:
    """Tests for committing commands."""

    @pytest.fixture
    async def created(self, service, strength_program):
        return await service.create_assignment(
            "client-1",
            AssignmentCreate(client_name="Alice", program=strength_program),
        )

    @pytest.mark.asyncio
    async def test_coach_command(self, service, created):
        updated = await service.apply_command(
            AdjustReps(day_index=0, exercise_id="we-bench", set_id="bench-1", delta=2),
            ModifiedBy.COACH,
            client_id="client-1",
        )

        assert updated.version == 1
        assert updated.last_modified_by == ModifiedBy.COACH
        assert updated.program.days[0].exercises[0].sets[0].reps == 10

    @pytest.mark.asyncio
    async def test_client_command_through_share_token(self, service, created):
        updated = await service.apply_command(
            SetCurrentDay(day_index=1),
            ModifiedBy.CLIENT,
            share_token=created.share_token,
        )

        assert updated.current_day == 1
        assert updated.last_modified_by == ModifiedBy.CLIENT

    @pytest.mark.asyncio
    async def test_client_cannot_send_coach_commands(self, service, created):
        with pytest.raises(CommandNotAllowed):
            await service.apply_command(
                UnlockWeek(week_number=2),
                ModifiedBy.CLIENT,
                share_token=created.share_token,
            )

        current = await service.get_assignment("client-1")
        assert current.version == 0
        assert current.week(2).status == WeekStatus.LOCKED

    @pytest.mark.asyncio
    async def test_noop_is_not_committed(self, service, created):
        result = await service.apply_command(
            UnlockWeek(week_number=1),
            ModifiedBy.COACH,
            client_id="client-1",
        )

        assert result.version == 0

    @pytest.mark.asyncio
    async def test_missing_assignment(self, service):
        with pytest.raises(AssignmentNotFound):
            await service.apply_command(
                UnlockWeek(week_number=2),
                ModifiedBy.COACH,
                client_id="nobody",
            )

    @pytest.mark.asyncio
    async def test_pinned_base_version_conflict(self, service, created):
        await service.apply_command(UnlockWeek(week_number=2), ModifiedBy.COACH, client_id="client-1")

        with pytest.raises(StaleVersion) as exc_info:
            await service.apply_command(
                SetCurrentDay(day_index=1),
                ModifiedBy.CLIENT,
                share_token=created.share_token,
                base_version=0,
            )

        assert exc_info.value.current_version == 1

    @pytest.mark.asyncio
    async def test_lost_race_is_reapplied(self, service, db_session, created):
        other_store = ProgressionStateStore(db_session)
        original_load = service.store.load
        calls = 0

        async def racing_load(client_id):
            nonlocal calls
            loaded = await original_load(client_id)
            calls += 1
            if calls == 1:
                # A client commit lands between our load and our commit
                await other_store.commit(
                    apply_command(loaded, SetCurrentDay(day_index=1)),
                    ModifiedBy.CLIENT,
                )
            return loaded

        service.store.load = racing_load

        updated = await service.apply_command(
            AdjustReps(day_index=0, exercise_id="we-bench", set_id="bench-1", delta=1),
            ModifiedBy.COACH,
            client_id="client-1",
        )

        assert calls == 2
        assert updated.version == 2
        assert updated.current_day == 1
        assert updated.program.days[0].exercises[0].sets[0].reps == 9


class TestProgressViews:
    """Tests for volume and change notifications."""

    @pytest.mark.asyncio
    async def test_volume_views(self, service, sample_catalog, push_up_program):
        await service.create_assignment(
            "alice",
            AssignmentCreate(client_name="Alice", program=push_up_program, duration_weeks=2),
        )

        current = await service.get_current_week_volume("alice")
        series = await service.get_volume_series("alice")

        assert current.per_muscle_group == {"Chest": 10}
        assert [v.total_volume for v in series] == [10, 0]

    @pytest.mark.asyncio
    async def test_volume_without_assignment(self, service, sample_catalog):
        current = await service.get_current_week_volume("nobody")

        assert current.total_volume == 0
        assert await service.get_volume_series("nobody") == []

    @pytest.mark.asyncio
    async def test_summary_and_week_days(self, service, strength_program):
        created = await service.create_assignment(
            "client-1",
            AssignmentCreate(client_name="Alice", program=strength_program, duration_weeks=4),
        )

        summary = await service.get_summary("client-1")
        week = service.get_week_days(created, 3)

        assert summary.total_weeks == 4
        assert summary.current_week == 1
        assert week.days[0].exercises[0].sets[0].reps == 12
        assert service.get_week_days(created, 9) is None
        assert await service.get_summary("nobody") is None

    @pytest.mark.asyncio
    async def test_on_assignment_changed(self, service, push_up_program):
        await service.create_assignment(
            "alice",
            AssignmentCreate(client_name="Alice", program=push_up_program, duration_weeks=2),
        )
        versions = []

        subscription = await service.on_assignment_changed("alice", lambda a: versions.append(a.version))
        await service.apply_command(UnlockWeek(week_number=2), ModifiedBy.COACH, client_id="alice")

        for _ in range(200):
            if versions == [0, 1] or versions == [1]:
                break
            await asyncio.sleep(0.01)
        await subscription.unsubscribe()

        assert versions[-1] == 1
