"""Persistence models for workout assignments and the exercise catalog."""
import enum
from datetime import date, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.config.database import Base
from src.core.models import TimestampMixin, UUIDMixin


class ModifiedBy(str, enum.Enum):
    """Which side of the share link wrote an assignment."""

    COACH = "coach"
    CLIENT = "client"


class CatalogExercise(Base, UUIDMixin, TimestampMixin):
    """Exercise catalog entry.

    The catalog is maintained by the exercise CRUD screens; this service only
    reads it to classify exercises into muscle groups.
    """

    __tablename__ = "exercises"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    muscle_group: Mapped[str | None] = mapped_column(String(50), nullable=True)
    equipment: Mapped[str | None] = mapped_column(String(100), nullable=True)
    difficulty: Mapped[str | None] = mapped_column(String(20), nullable=True)
    video_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    instructions: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<CatalogExercise {self.name}>"


class WorkoutAssignment(Base, UUIDMixin, TimestampMixin):
    """A client's live copy of a workout program plus its week ledger.

    The program and the weeks are stored as JSON documents and are always
    replaced together, guarded by ``version``.
    """

    __tablename__ = "workout_assignments"

    client_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    client_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    program_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    weeks_json: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    progression_rules: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    duration_weeks: Mapped[int] = mapped_column(Integer, nullable=False)
    current_week: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    current_day: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    share_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    last_modified_by: Mapped[ModifiedBy] = mapped_column(
        Enum(ModifiedBy, name="modified_by_enum", values_callable=lambda x: [e.value for e in x]),
        default=ModifiedBy.COACH,
        nullable=False,
    )
    last_modified_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<WorkoutAssignment {self.client_id} v{self.version}>"
