from fastapi import APIRouter, Depends, status

from localfix.core.security import get_session
from localfix.core.session import Session
from localfix.schemas.bookings import BookingActionRequest, BookingCreateRequest, BookingOut, BookingView
from localfix.services import bookings

router = APIRouter()


@router.post("", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
async def create_booking(payload: BookingCreateRequest, session: Session = Depends(get_session)) -> BookingOut:
    row = await bookings.create_booking(
        session,
        service_id=payload.service_id,
        booking_date=payload.booking_date,
        notes=payload.notes,
    )
    return BookingOut(**row)


@router.get("/provider", response_model=list[BookingView])
async def list_provider_bookings(session: Session = Depends(get_session)) -> list[BookingView]:
    return [BookingView(**row) for row in await bookings.list_provider_bookings(session)]


@router.get("/{booking_id}", response_model=BookingView)
async def read_booking(booking_id: str, session: Session = Depends(get_session)) -> BookingView:
    return BookingView(**await bookings.get_booking_for_viewer(session, booking_id))


@router.post("/approve", response_model=BookingView)
async def approve_booking(payload: BookingActionRequest, session: Session = Depends(get_session)) -> BookingView:
    return BookingView(**await bookings.approve_booking(session, payload.booking_id))


@router.post("/reject", response_model=BookingView)
async def reject_booking(payload: BookingActionRequest, session: Session = Depends(get_session)) -> BookingView:
    return BookingView(**await bookings.reject_booking(session, payload.booking_id))


@router.post("/complete", response_model=BookingView)
async def complete_booking(payload: BookingActionRequest, session: Session = Depends(get_session)) -> BookingView:
    return BookingView(**await bookings.complete_booking(session, payload.booking_id))


@router.post("/cancel", response_model=BookingView)
async def cancel_booking(payload: BookingActionRequest, session: Session = Depends(get_session)) -> BookingView:
    return BookingView(**await bookings.cancel_booking(session, payload.booking_id))
