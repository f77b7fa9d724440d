from fastapi import APIRouter, Depends, status

from localfix.core.security import get_session
from localfix.core.session import Session
from localfix.schemas.bookings import ServiceCreateRequest, ServiceOut, ServiceStatusRequest
from localfix.services import bookings

router = APIRouter()


@router.post("", response_model=ServiceOut, status_code=status.HTTP_201_CREATED)
async def create_service(payload: ServiceCreateRequest, session: Session = Depends(get_session)) -> ServiceOut:
    row = await bookings.create_service(session, payload.model_dump(exclude_unset=True))
    return ServiceOut(**row)


@router.get("/mine", response_model=list[ServiceOut])
async def list_my_services(session: Session = Depends(get_session)) -> list[ServiceOut]:
    return [ServiceOut(**row) for row in await bookings.list_my_services(session)]


@router.patch("/{service_id}/status", response_model=ServiceOut)
async def patch_service_status(
    service_id: str,
    payload: ServiceStatusRequest,
    session: Session = Depends(get_session),
) -> ServiceOut:
    row = await bookings.set_service_status(session, service_id, payload.status)
    return ServiceOut(**row)
