"""Training volume derived from an assignment.

Volume is never stored: it is recomputed from the program, the week ledger
and the exercise catalog every time it is asked for.
"""
from typing import Iterable, Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.domains.progression.engine import effective_days
from src.domains.progression.exceptions import CatalogLookupError
from src.domains.progression.models import CatalogExercise
from src.domains.progression.schemas import ClientWorkoutAssignment, WeekStatus, WeekVolume

logger = structlog.get_logger(__name__)


class ExerciseCatalog(Protocol):
    """Read-only muscle group lookup by exercise name."""

    def muscle_group_for(self, exercise_name: str) -> str | None:
        ...


class CatalogSnapshot:
    """In-memory copy of the exercise catalog.

    Names are matched exactly first, then case-insensitively, then by the
    first catalog name (alphabetically) that contains the requested name.
    """

    def __init__(self, entries: Iterable[tuple[str, str | None]]):
        self._exact: dict[str, str] = {}
        self._folded: dict[str, str] = {}
        self._names: list[tuple[str, str]] = []

        for name, muscle_group in sorted(entries, key=lambda e: e[0]):
            if not name or not muscle_group or not muscle_group.strip():
                continue
            self._exact.setdefault(name, muscle_group)
            self._folded.setdefault(name.casefold(), muscle_group)
            self._names.append((name.casefold(), muscle_group))

    def __len__(self) -> int:
        return len(self._names)

    def muscle_group_for(self, exercise_name: str) -> str | None:
        if not exercise_name:
            return None
        if exercise_name in self._exact:
            return self._exact[exercise_name]

        folded = exercise_name.casefold()
        if folded in self._folded:
            return self._folded[folded]

        for name, muscle_group in self._names:
            if folded in name:
                return muscle_group
        return None

    @classmethod
    async def load(cls, db: AsyncSession) -> "CatalogSnapshot":
        """Read the catalog table."""
        result = await db.execute(
            select(CatalogExercise.name, CatalogExercise.muscle_group)
        )
        return cls(result.all())


class VolumeAggregator:
    """Computes per-week total and per-muscle-group volume.

    Per-set volume is ``reps * max(weight, 1)`` so bodyweight sets still count
    their reps. Locked weeks report zero everywhere.
    """

    def __init__(self, catalog: ExerciseCatalog):
        self.catalog = catalog

    def _resolve(self, exercise_name: str) -> str | None:
        try:
            muscle_group = self.catalog.muscle_group_for(exercise_name)
        except CatalogLookupError as e:
            logger.warning("catalog_lookup_failed", exercise=exercise_name, error=str(e))
            return None
        if not muscle_group or not muscle_group.strip():
            return None
        return muscle_group

    def aggregate_week(
        self,
        assignment: ClientWorkoutAssignment | None,
        week_number: int,
    ) -> WeekVolume:
        """Volume of one week."""
        if assignment is None or assignment.program is None:
            result = WeekVolume(week=week_number)
            logger.debug("volume_aggregated", week=week_number, reason="no_program", total_volume=0.0)
            return result

        buckets: dict[str, float] = {}
        skipped = 0
        for day in effective_days(assignment, week_number):
            for workout_exercise in day.exercises:
                # The embedded muscle_group may be stale; the catalog decides.
                muscle_group = self._resolve(workout_exercise.exercise.name)
                if muscle_group is None:
                    skipped += 1
                    continue

                exercise_volume = sum(
                    s.reps * max(s.weight, 1) for s in workout_exercise.sets
                )
                buckets[muscle_group] = buckets.get(muscle_group, 0.0) + exercise_volume

        # Completed weeks keep their volume so charts show history
        week = assignment.week(week_number)
        is_locked = week is None or week.status == WeekStatus.LOCKED
        if is_locked:
            buckets = {group: 0.0 for group in buckets}

        per_muscle_group = {group: float(buckets[group]) for group in sorted(buckets)}
        result = WeekVolume(
            week=week_number,
            total_volume=float(sum(per_muscle_group.values())),
            per_muscle_group=per_muscle_group,
        )

        logger.debug(
            "volume_aggregated",
            assignment_id=str(assignment.id),
            version=assignment.version,
            week=week_number,
            locked=is_locked,
            skipped_exercises=skipped,
            total_volume=result.total_volume,
            per_muscle_group=result.per_muscle_group,
        )
        return result

    def current_week(self, assignment: ClientWorkoutAssignment | None) -> WeekVolume:
        """Volume of the assignment's current week."""
        week_number = assignment.current_week if assignment is not None else 1
        return self.aggregate_week(assignment, week_number)

    def series(
        self,
        assignment: ClientWorkoutAssignment | None,
        max_weeks: int | None = None,
    ) -> list[WeekVolume]:
        """Chart series: one independent row per week, 1..max_weeks."""
        if max_weeks is None:
            max_weeks = assignment.duration if assignment is not None else 0
        return [self.aggregate_week(assignment, week) for week in range(1, max_weeks + 1)]
