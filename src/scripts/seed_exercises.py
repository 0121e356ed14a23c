"""
Seed script for populating the exercise catalog.

The catalog is what volume charts use to attribute sets to muscle groups.

Run with:
    python -m src.scripts.seed_exercises
    python -m src.scripts.seed_exercises --clear  # Replace existing exercises
"""

import asyncio

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.database import session_scope
from src.domains.progression.models import CatalogExercise

logger = structlog.get_logger(__name__)


EXERCISES = [
    # Chest
    {"name": "Bench Press", "muscle_group": "Chest", "equipment": "Barbell", "difficulty": "Intermediate"},
    {"name": "Incline Dumbbell Press", "muscle_group": "Chest", "equipment": "Dumbbell", "difficulty": "Intermediate"},
    {"name": "Push Ups", "muscle_group": "Chest", "equipment": "Bodyweight", "difficulty": "Beginner"},
    {"name": "Cable Fly", "muscle_group": "Chest", "equipment": "Cable", "difficulty": "Beginner"},
    # Back
    {"name": "Deadlift", "muscle_group": "Back", "equipment": "Barbell", "difficulty": "Advanced"},
    {"name": "Pull Ups", "muscle_group": "Back", "equipment": "Bodyweight", "difficulty": "Intermediate"},
    {"name": "Barbell Row", "muscle_group": "Back", "equipment": "Barbell", "difficulty": "Intermediate"},
    {"name": "Lat Pulldown", "muscle_group": "Back", "equipment": "Cable", "difficulty": "Beginner"},
    # Legs
    {"name": "Squat", "muscle_group": "Legs", "equipment": "Barbell", "difficulty": "Intermediate"},
    {"name": "Leg Press", "muscle_group": "Legs", "equipment": "Machine", "difficulty": "Beginner"},
    {"name": "Romanian Deadlift", "muscle_group": "Legs", "equipment": "Barbell", "difficulty": "Intermediate"},
    {"name": "Walking Lunges", "muscle_group": "Legs", "equipment": "Dumbbell", "difficulty": "Beginner"},
    # Shoulders
    {"name": "Overhead Press", "muscle_group": "Shoulders", "equipment": "Barbell", "difficulty": "Intermediate"},
    {"name": "Lateral Raise", "muscle_group": "Shoulders", "equipment": "Dumbbell", "difficulty": "Beginner"},
    {"name": "Face Pull", "muscle_group": "Shoulders", "equipment": "Cable", "difficulty": "Beginner"},
    # Arms
    {"name": "Barbell Curl", "muscle_group": "Arms", "equipment": "Barbell", "difficulty": "Beginner"},
    {"name": "Hammer Curl", "muscle_group": "Arms", "equipment": "Dumbbell", "difficulty": "Beginner"},
    {"name": "Tricep Pushdown", "muscle_group": "Arms", "equipment": "Cable", "difficulty": "Beginner"},
    {"name": "Dips", "muscle_group": "Arms", "equipment": "Bodyweight", "difficulty": "Intermediate"},
    # Core
    {"name": "Plank", "muscle_group": "Core", "equipment": "Bodyweight", "difficulty": "Beginner"},
    {"name": "Hanging Leg Raise", "muscle_group": "Core", "equipment": "Bodyweight", "difficulty": "Intermediate"},
    {"name": "Cable Crunch", "muscle_group": "Core", "equipment": "Cable", "difficulty": "Beginner"},
]


async def seed_exercises(session: AsyncSession, clear_existing: bool = False) -> int:
    """Seed the catalog with common exercises."""
    if clear_existing:
        logger.info("clearing_existing_exercises")
        await session.execute(delete(CatalogExercise))
        await session.commit()
    else:
        result = await session.execute(select(CatalogExercise).limit(1))
        if result.scalar_one_or_none():
            logger.info("exercises_already_exist", hint="Use --clear to replace them")
            return 0

    for exercise_data in EXERCISES:
        session.add(CatalogExercise(**exercise_data))

    await session.commit()
    return len(EXERCISES)


async def main():
    """Main function to run the seed."""
    import argparse

    parser = argparse.ArgumentParser(description="Seed exercise catalog")
    parser.add_argument("--clear", action="store_true", help="Clear existing exercises first")
    args = parser.parse_args()

    async with session_scope() as session:
        count = await seed_exercises(session, clear_existing=args.clear)

    if count > 0:
        logger.info("exercises_seeded_successfully", count=count)
    else:
        logger.info("no_exercises_seeded")


if __name__ == "__main__":
    asyncio.run(main())
