"""Progression domain types and request/response schemas."""
import enum
import uuid
from datetime import date, datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, computed_field

from src.domains.progression.models import ModifiedBy


def new_id() -> str:
    """Generate an id for sets, exercises and days inside a program document."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Program document

class Exercise(BaseModel):
    """Catalog exercise as embedded in a program (display copy)."""

    id: str = Field(default_factory=new_id)
    name: str
    muscle_group: str = ""
    equipment: str | None = None
    difficulty: str | None = None
    video_url: str | None = None


class WorkoutSet(BaseModel):
    """A single prescribed set."""

    id: str = Field(default_factory=new_id)
    reps: int = Field(default=8, ge=0)
    weight: float = Field(default=0.0, ge=0)
    completed: bool = False


class WorkoutExercise(BaseModel):
    """An exercise slot inside a workout day."""

    id: str = Field(default_factory=new_id)
    exercise: Exercise
    sets: list[WorkoutSet] = Field(default_factory=list)
    rest: str = "90s"
    notes: str | None = None
    order: int = 0


class WorkoutDay(BaseModel):
    """One day of the weekly template."""

    id: str = Field(default_factory=new_id)
    name: str
    exercises: list[WorkoutExercise] = Field(default_factory=list)


class WorkoutProgram(BaseModel):
    """The weekly template a coach edits in place."""

    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    days: list[WorkoutDay] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# Week ledger

class WeekStatus(str, enum.Enum):
    """State of a week in the ledger.

    At most one week is UNLOCKED at a time. COMPLETED weeks are not unlocked.
    """

    LOCKED = "locked"
    UNLOCKED = "unlocked"
    COMPLETED = "completed"


class SetPerformance(BaseModel):
    """What the client actually did on one set of one week.

    Planned values are the week's prescription at the time of recording.
    """

    set_id: str
    day_index: int
    exercise_id: str
    planned_reps: int
    planned_weight: float
    actual_reps: int = Field(ge=0)
    actual_weight: float = Field(ge=0)
    completed: bool = False
    completed_at: datetime | None = None


class Week(BaseModel):
    """One entry of an assignment's week ledger."""

    week_number: int = Field(ge=1)
    status: WeekStatus = WeekStatus.LOCKED
    progression_notes: str | None = None
    # Week-specific override of the template; used verbatim when present
    days: list[WorkoutDay] | None = None
    # Client-recorded performance, keyed by set id
    performance: dict[str, SetPerformance] = Field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @computed_field
    @property
    def is_unlocked(self) -> bool:
        return self.status == WeekStatus.UNLOCKED

    @computed_field
    @property
    def is_completed(self) -> bool:
        return self.status == WeekStatus.COMPLETED


class ClientWorkoutAssignment(BaseModel):
    """A client's assignment: private program copy, week ledger and version."""

    id: uuid.UUID = Field(default_factory=uuid.uuid4)
    client_id: str
    client_name: str = ""
    program: WorkoutProgram | None = None
    start_date: date = Field(default_factory=date.today)
    duration: int = Field(ge=1)
    current_week: int = 1
    current_day: int = 0
    weeks: list[Week] = Field(default_factory=list)
    progression_rules: list[dict[str, Any]] = Field(default_factory=list)
    is_active: bool = True
    share_token: str = ""
    last_modified_by: ModifiedBy = ModifiedBy.COACH
    last_modified_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    def week(self, week_number: int) -> Week | None:
        """Find a week by number."""
        for week in self.weeks:
            if week.week_number == week_number:
                return week
        return None


# Volume

class WeekVolume(BaseModel):
    """Training volume of one week, in total and per muscle group."""

    week: int
    total_volume: float = 0.0
    per_muscle_group: dict[str, float] = Field(default_factory=dict)


class ProgressionSummary(BaseModel):
    """Week completion overview for the coach dashboard."""

    completed_weeks: int
    total_weeks: int
    current_week: int
    progress_percentage: int
    is_finished: bool
    weeks_remaining: int


# Requests / responses

class AssignmentCreate(BaseModel):
    """Assign a template program to a client."""

    client_name: str = Field(min_length=1, max_length=255)
    program: WorkoutProgram
    duration_weeks: int = Field(default=12, ge=1, le=52)
    start_date: date | None = None
    progression_rules: list[dict[str, Any]] = Field(default_factory=list)


class AssignmentResponse(ClientWorkoutAssignment):
    """Assignment with its client-facing share link."""

    share_url: str | None = None


class WeekDaysResponse(BaseModel):
    """Effective exercise list of one week."""

    week_number: int
    status: WeekStatus
    days: list[WorkoutDay]
