"""Mutation commands accepted by the progression engine.

Each command is a pydantic model tagged by ``type`` so that commands can be
posted as JSON and validated into the ``Command`` union.
"""
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from src.domains.progression.schemas import Exercise, WorkoutDay


class AdjustReps(BaseModel):
    """Change a set's reps by ``delta`` (floored at 1)."""

    type: Literal["adjust_reps"] = "adjust_reps"
    day_index: int
    exercise_id: str
    set_id: str
    delta: int


class AdjustWeight(BaseModel):
    """Change a set's weight by ``delta`` (floored at 0)."""

    type: Literal["adjust_weight"] = "adjust_weight"
    day_index: int
    exercise_id: str
    set_id: str
    delta: float


class AddSet(BaseModel):
    type: Literal["add_set"] = "add_set"
    day_index: int
    exercise_id: str


class RemoveSet(BaseModel):
    type: Literal["remove_set"] = "remove_set"
    day_index: int
    exercise_id: str
    set_id: str


class ReplaceExercise(BaseModel):
    """Swap the exercise of a slot, keeping its sets, rest and notes."""

    type: Literal["replace_exercise"] = "replace_exercise"
    day_index: int
    exercise_id: str
    exercise: Exercise


class UnlockWeek(BaseModel):
    type: Literal["unlock_week"] = "unlock_week"
    week_number: int


class CompleteWeek(BaseModel):
    """Mark the unlocked week as done and open the next one."""

    type: Literal["complete_week"] = "complete_week"
    week_number: int


class OverrideWeek(BaseModel):
    """Store (or clear, with ``days=None``) a week-specific day list."""

    type: Literal["override_week"] = "override_week"
    week_number: int
    days: list[WorkoutDay] | None = None


class RecordSetPerformance(BaseModel):
    """Client-side record of what was actually performed on a set.

    Stored on the week (the current week when ``week_number`` is omitted);
    the prescription itself is not touched.
    """

    type: Literal["record_set"] = "record_set"
    week_number: int | None = None
    day_index: int
    exercise_id: str
    set_id: str
    reps: int | None = Field(None, ge=0)
    weight: float | None = Field(None, ge=0)
    completed: bool | None = None


class SetCurrentDay(BaseModel):
    type: Literal["set_current_day"] = "set_current_day"
    day_index: int


class UpdateWeekNotes(BaseModel):
    type: Literal["update_week_notes"] = "update_week_notes"
    week_number: int
    notes: str | None = None


Command = Annotated[
    Union[
        AdjustReps,
        AdjustWeight,
        AddSet,
        RemoveSet,
        ReplaceExercise,
        UnlockWeek,
        CompleteWeek,
        OverrideWeek,
        RecordSetPerformance,
        SetCurrentDay,
        UpdateWeekNotes,
    ],
    Field(discriminator="type"),
]


# Commands a client may send through a share link. Everything else edits the
# prescription or the week ledger and belongs to the coach.
CLIENT_COMMANDS = (RecordSetPerformance, CompleteWeek, SetCurrentDay)


class CommandRequest(BaseModel):
    """A command posted by a coach or client session.

    ``base_version`` is the version the session last saw. When given and no
    longer current, the command is rejected with a conflict instead of being
    reapplied on the newer state.
    """

    command: Command
    base_version: int | None = None
