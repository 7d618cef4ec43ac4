# trainhub/routers/sessions.py

from typing import Optional

from fastapi import APIRouter, Depends

from ..dependencies import Services, get_services, require_user_id
from ..schemas.sessions import AssignmentRetry, Session, SessionStatusUpdate
from ..utils.meeting_link import extract_room_name

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("/", response_model=list[Session])
async def list_sessions(
    trainer_id: Optional[str] = None,
    student_id: Optional[str] = None,
    upcoming: bool = False,
    refresh: bool = False,
    services: Services = Depends(get_services),
):
    return await services.sessions.list_sessions_for(
        trainer_id=trainer_id,
        student_id=student_id,
        upcoming=upcoming,
        refresh=refresh,
    )


@router.get("/{session_id}", response_model=Session)
async def get_session(session_id: str, services: Services = Depends(get_services)):
    return await services.sessions.get_session(session_id)


@router.post("/{session_id}/status", response_model=Session)
async def set_status(
    session_id: str,
    data: SessionStatusUpdate,
    services: Services = Depends(get_services),
):
    return await services.sessions.transition(session_id, data.status)


@router.post("/{session_id}/join")
async def join_session(
    session_id: str,
    user_id: str = Depends(require_user_id),
    services: Services = Depends(get_services),
):
    enrollment = await services.sessions.mark_joined(session_id, user_id)
    session = await services.sessions.get_session(session_id)
    return {
        "meeting_link": session.meeting_link,
        "room": extract_room_name(session.meeting_link),
        "enrollment": enrollment.model_dump(mode="json"),
    }


@router.post("/{session_id}/assignments", response_model=Session)
async def retry_assignments(
    session_id: str,
    data: AssignmentRetry,
    services: Services = Depends(get_services),
):
    return await services.aggregator.retry_assignment(session_id, data.booking_ids)
