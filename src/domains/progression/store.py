"""Persistence of workout assignments with optimistic versioning."""
import secrets
import uuid
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.progression.exceptions import AssignmentNotFound, StaleVersion
from src.domains.progression.models import ModifiedBy, WorkoutAssignment
from src.domains.progression.schemas import ClientWorkoutAssignment, utcnow

logger = structlog.get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_domain(row: WorkoutAssignment) -> ClientWorkoutAssignment:
    return ClientWorkoutAssignment.model_validate(
        {
            "id": row.id,
            "client_id": row.client_id,
            "client_name": row.client_name,
            "program": row.program_json or None,
            "start_date": row.start_date,
            "duration": row.duration_weeks,
            "current_week": row.current_week,
            "current_day": row.current_day,
            "weeks": row.weeks_json or [],
            "progression_rules": row.progression_rules or [],
            "is_active": row.is_active,
            "share_token": row.share_token,
            "last_modified_by": row.last_modified_by,
            "last_modified_at": _as_utc(row.last_modified_at),
            "version": row.version,
        }
    )


def _document_fields(assignment: ClientWorkoutAssignment) -> dict[str, Any]:
    """Columns that make up the replaceable assignment document."""
    return {
        "client_name": assignment.client_name,
        "program_json": assignment.program.model_dump(mode="json") if assignment.program else {},
        "weeks_json": [w.model_dump(mode="json") for w in assignment.weeks],
        "progression_rules": assignment.progression_rules,
        "start_date": assignment.start_date,
        "duration_weeks": assignment.duration,
        "current_week": assignment.current_week,
        "current_day": assignment.current_day,
        "is_active": assignment.is_active,
    }


class AssignmentRepository:
    """Row-level access to the ``workout_assignments`` table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _first(self, *conditions) -> WorkoutAssignment | None:
        result = await self.db.execute(
            select(WorkoutAssignment)
            .where(*conditions)
            .order_by(WorkoutAssignment.last_modified_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def fetch_active(self, client_id: str) -> WorkoutAssignment | None:
        """Get the client's active assignment."""
        return await self._first(
            WorkoutAssignment.client_id == client_id,
            WorkoutAssignment.is_active == True,  # noqa: E712
        )

    async def fetch_by_id(self, assignment_id: uuid.UUID) -> WorkoutAssignment | None:
        return await self._first(WorkoutAssignment.id == assignment_id)

    async def fetch_by_share_token(self, share_token: str) -> WorkoutAssignment | None:
        return await self._first(WorkoutAssignment.share_token == share_token)

    async def insert(self, assignment: ClientWorkoutAssignment) -> uuid.UUID:
        """Insert a new assignment row and return its id."""
        row = WorkoutAssignment(
            id=assignment.id,
            client_id=assignment.client_id,
            share_token=assignment.share_token,
            last_modified_by=assignment.last_modified_by,
            last_modified_at=assignment.last_modified_at,
            version=assignment.version,
            **_document_fields(assignment),
        )
        self.db.add(row)
        await self.db.commit()
        return row.id

    async def update(
        self,
        assignment_id: uuid.UUID,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> bool:
        """Update columns of one row.

        With ``expected_version`` the update only applies if the stored
        version still matches. Returns whether a row was written.
        """
        stmt = update(WorkoutAssignment).where(WorkoutAssignment.id == assignment_id)
        if expected_version is not None:
            stmt = stmt.where(WorkoutAssignment.version == expected_version)
        stmt = stmt.values(**fields).execution_options(synchronize_session=False)

        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            return False
        await self.db.commit()
        return True

    async def current_version(self, assignment_id: uuid.UUID) -> int | None:
        result = await self.db.execute(
            select(WorkoutAssignment.version).where(WorkoutAssignment.id == assignment_id)
        )
        return result.scalar_one_or_none()


class ProgressionStateStore:
    """Loads and commits whole assignment documents.

    ``commit`` is a compare-and-set on the version the caller loaded; it never
    waits on other writers. Losing a race raises ``StaleVersion``.
    """

    def __init__(self, db: AsyncSession):
        self.repository = AssignmentRepository(db)

    async def load(self, client_id: str) -> ClientWorkoutAssignment | None:
        """Latest state of the client's active assignment."""
        row = await self.repository.fetch_active(client_id)
        return _to_domain(row) if row else None

    async def load_by_id(self, assignment_id: uuid.UUID) -> ClientWorkoutAssignment | None:
        row = await self.repository.fetch_by_id(assignment_id)
        return _to_domain(row) if row else None

    async def load_by_share_token(self, share_token: str) -> ClientWorkoutAssignment | None:
        row = await self.repository.fetch_by_share_token(share_token)
        return _to_domain(row) if row else None

    async def create(self, assignment: ClientWorkoutAssignment) -> ClientWorkoutAssignment:
        """Persist a brand-new assignment as version 0, minting a share token if needed."""
        created = assignment.model_copy(
            update={
                "version": 0,
                "share_token": assignment.share_token or secrets.token_urlsafe(16),
            },
            deep=True,
        )
        await self.repository.insert(created)
        logger.info(
            "assignment_created",
            assignment_id=str(created.id),
            client_id=created.client_id,
            duration=created.duration,
        )
        return created

    async def commit(
        self,
        assignment: ClientWorkoutAssignment,
        role: ModifiedBy,
    ) -> ClientWorkoutAssignment:
        """Stamp and persist an assignment based on ``assignment.version``.

        Returns:
            The stamped copy, with ``version`` one above the base version

        Raises:
            StaleVersion: another commit already moved past the base version
            AssignmentNotFound: the assignment row does not exist
        """
        base_version = assignment.version
        stamped = assignment.model_copy(
            update={
                "last_modified_by": role,
                "last_modified_at": utcnow(),
                "version": base_version + 1,
            },
            deep=True,
        )

        fields = _document_fields(stamped)
        fields.update(
            last_modified_by=stamped.last_modified_by,
            last_modified_at=stamped.last_modified_at,
            version=stamped.version,
        )
        written = await self.repository.update(assignment.id, fields, expected_version=base_version)
        if not written:
            current = await self.repository.current_version(assignment.id)
            if current is None:
                raise AssignmentNotFound(f"Assignment {assignment.id} not found")
            logger.info(
                "assignment_commit_stale",
                assignment_id=str(assignment.id),
                base_version=base_version,
                current_version=current,
                role=role.value,
            )
            raise StaleVersion(assignment.id, base_version, current)

        logger.info(
            "assignment_committed",
            assignment_id=str(stamped.id),
            client_id=stamped.client_id,
            version=stamped.version,
            role=role.value,
        )
        return stamped
