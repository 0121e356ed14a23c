"""Mutation engine for workout assignments.

Every command is applied by a pure function ``(assignment, command) ->
assignment``. Commands that target a day, exercise, set or week that does not
exist return the input assignment unchanged; they never raise. Persisting the
result (and bumping the version) is the caller's job, see
``ProgressionStateStore.commit``.

Weekly progression is a fixed linear policy: each week after the first adds
``REPS_PER_WEEK`` reps and ``WEIGHT_PER_WEEK`` kg to every set of the
template. It is not configurable per exercise.
"""
from datetime import datetime
from typing import Callable

from src.domains.progression.commands import (
    AddSet,
    AdjustReps,
    AdjustWeight,
    CompleteWeek,
    OverrideWeek,
    RecordSetPerformance,
    RemoveSet,
    ReplaceExercise,
    SetCurrentDay,
    UnlockWeek,
    UpdateWeekNotes,
)
from src.domains.progression.schemas import (
    ClientWorkoutAssignment,
    ProgressionSummary,
    SetPerformance,
    Week,
    WeekStatus,
    WorkoutDay,
    WorkoutExercise,
    WorkoutProgram,
    WorkoutSet,
    new_id,
    utcnow,
)

REPS_PER_WEEK = 2
WEIGHT_PER_WEEK = 2.5

# Used by AddSet when the exercise has no set to copy from
DEFAULT_NEW_SET_REPS = 8
DEFAULT_NEW_SET_WEIGHT = 50.0


# Week ledger

def initialize_weeks(duration: int, now: datetime | None = None) -> list[Week]:
    """Build the ledger of a new assignment: week 1 unlocked, the rest locked."""
    now = now or utcnow()
    return [
        Week(
            week_number=number,
            status=WeekStatus.UNLOCKED if number == 1 else WeekStatus.LOCKED,
            started_at=now if number == 1 else None,
        )
        for number in range(1, duration + 1)
    ]


def _open_week(weeks: list[Week], week_number: int, now: datetime) -> None:
    """Unlock one week and lock every other unlocked week, in place.

    This is the only place a week becomes UNLOCKED after creation, which keeps
    the single-unlocked-window invariant. Completed weeks are left alone.
    """
    for week in weeks:
        if week.week_number == week_number:
            if week.status != WeekStatus.UNLOCKED:
                week.status = WeekStatus.UNLOCKED
                week.started_at = now
                week.completed_at = None
        elif week.status == WeekStatus.UNLOCKED:
            week.status = WeekStatus.LOCKED


def current_week_of(weeks: list[Week]) -> int:
    """The week a client is working on.

    First unlocked week; otherwise the week after the last completed one
    (capped at the ledger length); otherwise week 1.
    """
    for week in sorted(weeks, key=lambda w: w.week_number):
        if week.status == WeekStatus.UNLOCKED:
            return week.week_number

    completed = [w.week_number for w in weeks if w.status == WeekStatus.COMPLETED]
    if completed:
        return min(max(completed) + 1, len(weeks))
    return 1


def progression_summary(weeks: list[Week]) -> ProgressionSummary:
    """Completion overview of a week ledger."""
    total = len(weeks)
    completed = sum(1 for w in weeks if w.status == WeekStatus.COMPLETED)
    percentage = round(completed / total * 100) if total else 0

    return ProgressionSummary(
        completed_weeks=completed,
        total_weeks=total,
        current_week=current_week_of(weeks),
        progress_percentage=percentage,
        is_finished=total > 0 and completed == total,
        weeks_remaining=total - completed,
    )


# Weekly progression

def generate_week_progression(
    program: WorkoutProgram | None,
    week_number: int,
    override: list[WorkoutDay] | None = None,
) -> list[WorkoutDay]:
    """Effective day list of a week.

    An override is returned as-is. Otherwise week 1 is the template and week N
    adds (N-1) * REPS_PER_WEEK reps and (N-1) * WEIGHT_PER_WEEK kg to every
    set. Bodyweight sets (weight 0) stay at 0.
    """
    if override is not None:
        return [day.model_copy(deep=True) for day in override]
    if program is None:
        return []

    days = [day.model_copy(deep=True) for day in program.days]
    if week_number <= 1:
        return days

    step = week_number - 1
    for day in days:
        for workout_exercise in day.exercises:
            for workout_set in workout_exercise.sets:
                workout_set.reps += step * REPS_PER_WEEK
                if workout_set.weight > 0:
                    workout_set.weight += step * WEIGHT_PER_WEEK
    return days


def effective_days(assignment: ClientWorkoutAssignment, week_number: int) -> list[WorkoutDay]:
    """Days of a week of an assignment, honouring a week-specific override."""
    week = assignment.week(week_number)
    override = week.days if week is not None else None
    return generate_week_progression(assignment.program, week_number, override)


# Command handlers

def _find_exercise(
    program: WorkoutProgram | None,
    day_index: int,
    exercise_id: str,
) -> WorkoutExercise | None:
    if program is None or not 0 <= day_index < len(program.days):
        return None
    for workout_exercise in program.days[day_index].exercises:
        if workout_exercise.id == exercise_id:
            return workout_exercise
    return None


def _find_set(
    program: WorkoutProgram | None,
    day_index: int,
    exercise_id: str,
    set_id: str,
) -> WorkoutSet | None:
    workout_exercise = _find_exercise(program, day_index, exercise_id)
    if workout_exercise is None:
        return None
    for workout_set in workout_exercise.sets:
        if workout_set.id == set_id:
            return workout_set
    return None


def _adjust_reps(assignment: ClientWorkoutAssignment, command: AdjustReps, now: datetime) -> ClientWorkoutAssignment:
    current = _find_set(assignment.program, command.day_index, command.exercise_id, command.set_id)
    if current is None:
        return assignment
    new_reps = max(1, current.reps + command.delta)
    if new_reps == current.reps:
        return assignment

    updated = assignment.model_copy(deep=True)
    _find_set(updated.program, command.day_index, command.exercise_id, command.set_id).reps = new_reps
    updated.program.updated_at = now
    return updated


def _adjust_weight(assignment: ClientWorkoutAssignment, command: AdjustWeight, now: datetime) -> ClientWorkoutAssignment:
    current = _find_set(assignment.program, command.day_index, command.exercise_id, command.set_id)
    if current is None:
        return assignment
    new_weight = max(0.0, current.weight + command.delta)
    if new_weight == current.weight:
        return assignment

    updated = assignment.model_copy(deep=True)
    _find_set(updated.program, command.day_index, command.exercise_id, command.set_id).weight = new_weight
    updated.program.updated_at = now
    return updated


def _add_set(assignment: ClientWorkoutAssignment, command: AddSet, now: datetime) -> ClientWorkoutAssignment:
    updated = assignment.model_copy(deep=True)
    workout_exercise = _find_exercise(updated.program, command.day_index, command.exercise_id)
    if workout_exercise is None:
        return assignment

    if workout_exercise.sets:
        last = workout_exercise.sets[-1]
        new_set = WorkoutSet(id=new_id(), reps=last.reps, weight=last.weight)
    else:
        new_set = WorkoutSet(id=new_id(), reps=DEFAULT_NEW_SET_REPS, weight=DEFAULT_NEW_SET_WEIGHT)

    workout_exercise.sets.append(new_set)
    updated.program.updated_at = now
    return updated


def _remove_set(assignment: ClientWorkoutAssignment, command: RemoveSet, now: datetime) -> ClientWorkoutAssignment:
    updated = assignment.model_copy(deep=True)
    workout_exercise = _find_exercise(updated.program, command.day_index, command.exercise_id)
    if workout_exercise is None:
        return assignment

    remaining = [s for s in workout_exercise.sets if s.id != command.set_id]
    if len(remaining) == len(workout_exercise.sets):
        return assignment

    # The last set may be removed too; exercises are allowed to end up empty.
    workout_exercise.sets = remaining
    updated.program.updated_at = now
    return updated


def _replace_exercise(assignment: ClientWorkoutAssignment, command: ReplaceExercise, now: datetime) -> ClientWorkoutAssignment:
    updated = assignment.model_copy(deep=True)
    workout_exercise = _find_exercise(updated.program, command.day_index, command.exercise_id)
    if workout_exercise is None:
        return assignment

    workout_exercise.exercise = command.exercise.model_copy(deep=True)
    updated.program.updated_at = now
    return updated


def _unlock_week(assignment: ClientWorkoutAssignment, command: UnlockWeek, now: datetime) -> ClientWorkoutAssignment:
    if assignment.week(command.week_number) is None:
        return assignment

    updated = assignment.model_copy(deep=True)
    _open_week(updated.weeks, command.week_number, now)
    updated.current_week = command.week_number
    if updated == assignment:
        return assignment
    return updated


def _complete_week(assignment: ClientWorkoutAssignment, command: CompleteWeek, now: datetime) -> ClientWorkoutAssignment:
    week = assignment.week(command.week_number)
    if week is None or week.status != WeekStatus.UNLOCKED:
        return assignment

    updated = assignment.model_copy(deep=True)
    target = updated.week(command.week_number)
    target.status = WeekStatus.COMPLETED
    target.completed_at = now

    next_number = command.week_number + 1
    if updated.week(next_number) is not None:
        _open_week(updated.weeks, next_number, now)
        updated.current_week = next_number
    else:
        updated.current_week = command.week_number
    return updated


def _override_week(assignment: ClientWorkoutAssignment, command: OverrideWeek, now: datetime) -> ClientWorkoutAssignment:
    if assignment.week(command.week_number) is None:
        return assignment

    updated = assignment.model_copy(deep=True)
    week = updated.week(command.week_number)
    week.days = [day.model_copy(deep=True) for day in command.days] if command.days is not None else None
    if updated == assignment:
        return assignment
    return updated


def _record_set(assignment: ClientWorkoutAssignment, command: RecordSetPerformance, now: datetime) -> ClientWorkoutAssignment:
    week_number = command.week_number or assignment.current_week
    week = assignment.week(week_number)
    if week is None or week.status == WeekStatus.LOCKED:
        return assignment

    days = effective_days(assignment, week_number)
    if not 0 <= command.day_index < len(days):
        return assignment
    planned = None
    for workout_exercise in days[command.day_index].exercises:
        if workout_exercise.id == command.exercise_id:
            planned = next((s for s in workout_exercise.sets if s.id == command.set_id), None)
            break
    if planned is None:
        return assignment

    previous = week.performance.get(command.set_id)
    completed = command.completed if command.completed is not None else (previous.completed if previous else False)
    if not completed:
        completed_at = None
    elif previous is not None and previous.completed:
        completed_at = previous.completed_at
    else:
        completed_at = now

    record = SetPerformance(
        set_id=command.set_id,
        day_index=command.day_index,
        exercise_id=command.exercise_id,
        planned_reps=planned.reps,
        planned_weight=planned.weight,
        actual_reps=command.reps if command.reps is not None else (previous.actual_reps if previous else planned.reps),
        actual_weight=command.weight if command.weight is not None else (previous.actual_weight if previous else planned.weight),
        completed=completed,
        completed_at=completed_at,
    )
    if record == previous:
        return assignment

    updated = assignment.model_copy(deep=True)
    updated.week(week_number).performance[command.set_id] = record
    return updated


def _set_current_day(assignment: ClientWorkoutAssignment, command: SetCurrentDay, now: datetime) -> ClientWorkoutAssignment:
    # No bounds check against the day template
    if assignment.current_day == command.day_index:
        return assignment
    return assignment.model_copy(update={"current_day": command.day_index}, deep=True)


def _update_week_notes(assignment: ClientWorkoutAssignment, command: UpdateWeekNotes, now: datetime) -> ClientWorkoutAssignment:
    week = assignment.week(command.week_number)
    if week is None or week.progression_notes == command.notes:
        return assignment

    updated = assignment.model_copy(deep=True)
    updated.week(command.week_number).progression_notes = command.notes
    return updated


_HANDLERS: dict[type, Callable] = {
    AdjustReps: _adjust_reps,
    AdjustWeight: _adjust_weight,
    AddSet: _add_set,
    RemoveSet: _remove_set,
    ReplaceExercise: _replace_exercise,
    UnlockWeek: _unlock_week,
    CompleteWeek: _complete_week,
    OverrideWeek: _override_week,
    RecordSetPerformance: _record_set,
    SetCurrentDay: _set_current_day,
    UpdateWeekNotes: _update_week_notes,
}


def apply_command(
    assignment: ClientWorkoutAssignment,
    command,
    now: datetime | None = None,
) -> ClientWorkoutAssignment:
    """Apply one command and return the resulting assignment.

    The input is never modified. When the command does not apply, the same
    object is returned.
    """
    handler = _HANDLERS.get(type(command))
    if handler is None:
        raise TypeError(f"Unsupported command: {type(command).__name__}")
    return handler(assignment, command, now or utcnow())


def apply_commands(
    assignment: ClientWorkoutAssignment,
    commands: list,
    now: datetime | None = None,
) -> ClientWorkoutAssignment:
    """Apply commands in order."""
    for command in commands:
        assignment = apply_command(assignment, command, now)
    return assignment
