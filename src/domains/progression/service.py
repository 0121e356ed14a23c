"""Progression service: assignment lifecycle, commands and progress views."""
from datetime import date

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.settings import settings
from src.domains.progression.commands import CLIENT_COMMANDS
from src.domains.progression.engine import (
    apply_command,
    effective_days,
    initialize_weeks,
    progression_summary,
)
from src.domains.progression.exceptions import (
    AssignmentNotFound,
    CommandNotAllowed,
    StaleVersion,
    TransportUnavailable,
)
from src.domains.progression.models import ModifiedBy
from src.domains.progression.schemas import (
    AssignmentCreate,
    ClientWorkoutAssignment,
    ProgressionSummary,
    WeekDaysResponse,
    WeekVolume,
    utcnow,
)
from src.domains.progression.store import ProgressionStateStore
from src.domains.progression.sync import (
    Subscription,
    SyncTransport,
    UpdateCallback,
    get_sync_channel,
)
from src.domains.progression.volume import CatalogSnapshot, VolumeAggregator

logger = structlog.get_logger(__name__)


class ProgressionService:
    """Service for assignment progression and volume."""

    def __init__(self, db: AsyncSession, channel: SyncTransport | None = None):
        self.db = db
        self.store = ProgressionStateStore(db)
        self.channel = channel or get_sync_channel()

    # Loading

    async def get_assignment(self, client_id: str) -> ClientWorkoutAssignment | None:
        """Get the client's active assignment."""
        return await self.store.load(client_id)

    async def get_shared_assignment(self, share_token: str) -> ClientWorkoutAssignment | None:
        """Get the assignment behind a share link.

        Links of deactivated assignments no longer resolve.
        """
        assignment = await self.store.load_by_share_token(share_token)
        if assignment is None or not assignment.is_active:
            return None
        return assignment

    # Lifecycle

    async def create_assignment(
        self,
        client_id: str,
        data: AssignmentCreate,
    ) -> ClientWorkoutAssignment:
        """Assign a template program to a client.

        The template is deep-copied so later coach edits to either side stay
        independent. The client's previous active assignment is deactivated
        once the new one is stored.
        """
        now = utcnow()
        previous = await self.store.load(client_id)

        assignment = ClientWorkoutAssignment(
            client_id=client_id,
            client_name=data.client_name,
            program=data.program.model_copy(deep=True),
            start_date=data.start_date or date.today(),
            duration=data.duration_weeks,
            current_week=1,
            current_day=0,
            weeks=initialize_weeks(data.duration_weeks, now),
            progression_rules=[dict(rule) for rule in data.progression_rules],
            last_modified_by=ModifiedBy.COACH,
            last_modified_at=now,
        )
        created = await self.store.create(assignment)

        if previous is not None and previous.id != created.id:
            await self._deactivate(previous)

        await self._publish(created)
        return created

    async def _deactivate(self, assignment: ClientWorkoutAssignment) -> None:
        current = assignment
        for attempt in range(settings.COMMIT_MAX_RETRIES + 1):
            if not current.is_active:
                return
            try:
                committed = await self.store.commit(
                    current.model_copy(update={"is_active": False}),
                    ModifiedBy.COACH,
                )
            except StaleVersion:
                if attempt == settings.COMMIT_MAX_RETRIES:
                    raise
                current = await self.store.load_by_id(assignment.id)
                if current is None:
                    return
                continue

            logger.info(
                "assignment_deactivated",
                assignment_id=str(committed.id),
                client_id=committed.client_id,
                version=committed.version,
            )
            await self._publish(committed)
            return

    # Commands

    async def apply_command(
        self,
        command,
        role: ModifiedBy,
        client_id: str | None = None,
        share_token: str | None = None,
        base_version: int | None = None,
    ) -> ClientWorkoutAssignment:
        """Apply a command to the latest state and commit it.

        The assignment is addressed by ``client_id`` (coach) or ``share_token``
        (client). When the commit loses a race the command is reapplied on the
        reloaded state, unless the caller pinned ``base_version``.

        Raises:
            CommandNotAllowed: a client sent a coach-only command
            AssignmentNotFound: nothing to apply the command to
            StaleVersion: ``base_version`` is outdated, or retries ran out
        """
        if role == ModifiedBy.CLIENT and not isinstance(command, CLIENT_COMMANDS):
            logger.warning(
                "assignment_command_forbidden",
                command=command.type,
                role=role.value,
            )
            raise CommandNotAllowed(command.type, role.value)

        attempt = 0
        while True:
            if share_token is not None:
                assignment = await self.get_shared_assignment(share_token)
            else:
                assignment = await self.store.load(client_id)
            if assignment is None:
                raise AssignmentNotFound("Assignment not found")

            if base_version is not None and assignment.version != base_version:
                raise StaleVersion(assignment.id, base_version, assignment.version)

            updated = apply_command(assignment, command)
            if updated is assignment:
                logger.info(
                    "assignment_command_noop",
                    assignment_id=str(assignment.id),
                    command=command.type,
                    role=role.value,
                )
                return assignment

            try:
                committed = await self.store.commit(updated, role)
            except StaleVersion:
                attempt += 1
                if base_version is not None or attempt > settings.COMMIT_MAX_RETRIES:
                    raise
                logger.info(
                    "assignment_command_retry",
                    assignment_id=str(assignment.id),
                    command=command.type,
                    attempt=attempt,
                )
                continue

            await self._publish(committed)
            return committed

    async def _publish(self, assignment: ClientWorkoutAssignment) -> None:
        try:
            await self.channel.publish(assignment)
        except TransportUnavailable as e:
            # Committed state is authoritative; readers catch up on their next read
            logger.warning(
                "assignment_publish_failed",
                assignment_id=str(assignment.id),
                version=assignment.version,
                error=str(e),
            )

    # Progress views

    async def _aggregator(self) -> VolumeAggregator:
        return VolumeAggregator(await CatalogSnapshot.load(self.db))

    async def get_current_week_volume(self, client_id: str) -> WeekVolume:
        assignment = await self.store.load(client_id)
        aggregator = await self._aggregator()
        return aggregator.current_week(assignment)

    async def get_volume_series(
        self,
        client_id: str,
        max_weeks: int | None = None,
    ) -> list[WeekVolume]:
        assignment = await self.store.load(client_id)
        aggregator = await self._aggregator()
        return aggregator.series(assignment, max_weeks)

    async def on_assignment_changed(
        self,
        client_id: str,
        callback: UpdateCallback,
    ) -> Subscription:
        """Call ``callback`` whenever a newer version of the assignment lands."""
        return await self.channel.subscribe(client_id, callback)

    async def get_summary(self, client_id: str) -> ProgressionSummary | None:
        assignment = await self.store.load(client_id)
        if assignment is None:
            return None
        return progression_summary(assignment.weeks)

    def get_week_days(
        self,
        assignment: ClientWorkoutAssignment,
        week_number: int,
    ) -> WeekDaysResponse | None:
        """Effective days of one week (override or generated progression)."""
        week = assignment.week(week_number)
        if week is None:
            return None
        return WeekDaysResponse(
            week_number=week_number,
            status=week.status,
            days=effective_days(assignment, week_number),
        )
