# trainhub/routers/trainers.py

from fastapi import APIRouter, Depends, status

from ..dependencies import Services, get_services
from ..schemas.bookings import Booking
from ..schemas.sessions import Session, SessionCreate, SessionSpec
from ..schemas.trainers import Trainer

router = APIRouter(prefix="/trainers", tags=["trainers"])


@router.get("/", response_model=list[Trainer])
def list_trainers(services: Services = Depends(get_services)):
    return services.catalog.all()


@router.get("/{trainer_id}", response_model=Trainer)
def get_trainer(trainer_id: str, services: Services = Depends(get_services)):
    return services.catalog.get(trainer_id)


@router.get("/{trainer_id}/eligible-bookings", response_model=list[Booking])
async def eligible_bookings(
    trainer_id: str,
    refresh: bool = False,
    services: Services = Depends(get_services),
):
    services.catalog.get(trainer_id)
    return await services.bookings.eligible_pool(trainer_id, refresh=refresh)


@router.post("/{trainer_id}/sessions", response_model=Session, status_code=status.HTTP_201_CREATED)
async def create_session(
    trainer_id: str,
    data: SessionCreate,
    services: Services = Depends(get_services),
):
    spec = SessionSpec(
        title=data.title,
        description=data.description,
        scheduled_at=data.scheduled_at,
        duration=data.duration,
    )
    return await services.aggregator.create_session(
        trainer_id,
        spec,
        data.selection,
        session_id=data.session_id,
    )
