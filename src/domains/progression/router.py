"""Assignment progression endpoints for coaches and share-link clients."""
import asyncio
import uuid
from typing import Annotated, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from src.config.database import get_db
from src.config.settings import settings
from src.domains.progression.commands import CommandRequest
from src.domains.progression.exceptions import AssignmentNotFound, CommandNotAllowed, StaleVersion
from src.domains.progression.models import ModifiedBy
from src.domains.progression.schemas import (
    AssignmentCreate,
    AssignmentResponse,
    ClientWorkoutAssignment,
    ProgressionSummary,
    WeekDaysResponse,
    WeekVolume,
)
from src.domains.progression.service import ProgressionService
from src.domains.progression.sync import get_sync_channel

router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _to_response(assignment: ClientWorkoutAssignment) -> AssignmentResponse:
    return AssignmentResponse(
        **assignment.model_dump(),
        share_url=settings.share_url(assignment.share_token) if assignment.share_token else None,
    )


async def _run_command(
    service: ProgressionService,
    request: CommandRequest,
    role: ModifiedBy,
    client_id: str | None = None,
    share_token: str | None = None,
) -> AssignmentResponse:
    try:
        assignment = await service.apply_command(
            request.command,
            role,
            client_id=client_id,
            share_token=share_token,
            base_version=request.base_version,
        )
    except CommandNotAllowed as e:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Command '{e.command_type}' is reserved for the coach",
        )
    except AssignmentNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assignment not found",
        )
    except StaleVersion as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": "Assignment was modified by someone else",
                "expected_version": e.expected_version,
                "current_version": e.current_version,
            },
        )
    return _to_response(assignment)


async def stream_assignment_events(
    client_id: str,
    assignment_id: uuid.UUID | None = None,
) -> AsyncGenerator[str, None]:
    """Stream committed assignment documents as Server-Sent Events.

    The current state is sent first; afterwards every newer version. With
    ``assignment_id`` the stream is bound to that one assignment and ends
    once it is deactivated or the client has moved on to another one.
    """
    queue: asyncio.Queue = asyncio.Queue()
    subscription = await get_sync_channel().subscribe(client_id, queue.put_nowait)

    try:
        while True:
            try:
                assignment = await asyncio.wait_for(
                    queue.get(),
                    timeout=settings.SSE_HEARTBEAT_SECONDS,
                )
            except asyncio.TimeoutError:
                # Send heartbeat to keep connection alive
                yield ": heartbeat\n\n"
                continue

            if assignment_id is not None and assignment.id != assignment_id:
                break
            yield f"event: assignment\ndata: {assignment.model_dump_json()}\n\n"
            if assignment_id is not None and not assignment.is_active:
                break
    finally:
        await subscription.unsubscribe()


# Coach

@router.post(
    "/clients/{client_id}/assignment",
    response_model=AssignmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_assignment(
    client_id: str,
    request: AssignmentCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AssignmentResponse:
    """Assign a program template to a client, replacing the active assignment."""
    service = ProgressionService(db)
    assignment = await service.create_assignment(client_id, request)
    return _to_response(assignment)


@router.get("/clients/{client_id}/assignment", response_model=AssignmentResponse)
async def get_assignment(
    client_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AssignmentResponse:
    """Get the client's active assignment."""
    service = ProgressionService(db)
    assignment = await service.get_assignment(client_id)

    if not assignment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assignment not found",
        )

    return _to_response(assignment)


@router.post("/clients/{client_id}/assignment/commands", response_model=AssignmentResponse)
async def post_coach_command(
    client_id: str,
    request: CommandRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AssignmentResponse:
    """Apply a coach edit to the client's assignment."""
    service = ProgressionService(db)
    return await _run_command(service, request, ModifiedBy.COACH, client_id=client_id)


@router.get("/clients/{client_id}/assignment/summary", response_model=ProgressionSummary)
async def get_summary(
    client_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ProgressionSummary:
    """Week completion overview."""
    service = ProgressionService(db)
    summary = await service.get_summary(client_id)

    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Assignment not found",
        )

    return summary


@router.get("/clients/{client_id}/volume/current", response_model=WeekVolume)
async def get_current_week_volume(
    client_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WeekVolume:
    """Volume of the current week. All zero when the client has no assignment."""
    service = ProgressionService(db)
    return await service.get_current_week_volume(client_id)


@router.get("/clients/{client_id}/volume/series", response_model=list[WeekVolume])
async def get_volume_series(
    client_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    max_weeks: Annotated[int | None, Query(ge=1, le=104)] = None,
) -> list[WeekVolume]:
    """Per-week volume for progress charts."""
    service = ProgressionService(db)
    return await service.get_volume_series(client_id, max_weeks)


@router.get("/clients/{client_id}/assignment/stream")
async def stream_coach_assignment(client_id: str) -> StreamingResponse:
    """Stream assignment changes via Server-Sent Events (SSE)."""
    return StreamingResponse(
        stream_assignment_events(client_id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


# Share link (client)

async def _get_shared_or_404(service: ProgressionService, token: str) -> ClientWorkoutAssignment:
    assignment = await service.get_shared_assignment(token)
    if not assignment:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Share link not found or expired",
        )
    return assignment


@router.get("/share/{token}", response_model=AssignmentResponse)
async def get_shared_assignment(
    token: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AssignmentResponse:
    """Open an assignment through its share link."""
    service = ProgressionService(db)
    return _to_response(await _get_shared_or_404(service, token))


@router.post("/share/{token}/commands", response_model=AssignmentResponse)
async def post_client_command(
    token: str,
    request: CommandRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> AssignmentResponse:
    """Record client progress on a shared assignment."""
    service = ProgressionService(db)
    return await _run_command(service, request, ModifiedBy.CLIENT, share_token=token)


@router.get("/share/{token}/stream")
async def stream_shared_assignment(
    token: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> StreamingResponse:
    """Stream changes of a shared assignment via Server-Sent Events (SSE)."""
    service = ProgressionService(db)
    assignment = await _get_shared_or_404(service, token)

    return StreamingResponse(
        stream_assignment_events(assignment.client_id, assignment_id=assignment.id),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/share/{token}/weeks/{week_number}", response_model=WeekDaysResponse)
async def get_shared_week(
    token: str,
    week_number: int,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> WeekDaysResponse:
    """Exercises of one week with the weekly progression applied."""
    service = ProgressionService(db)
    assignment = await _get_shared_or_404(service, token)

    week = service.get_week_days(assignment, week_number)
    if week is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Week not found",
        )

    return week
