from fastapi import APIRouter, Depends

from localfix.core.security import get_session
from localfix.core.session import Session
from localfix.schemas.jobs import AcceptOut, ApplicationOut, MyApplicationOut, RevealOut
from localfix.services import jobs

router = APIRouter()


@router.get("/mine", response_model=list[MyApplicationOut])
async def list_mine(session: Session = Depends(get_session)) -> list[MyApplicationOut]:
    rows = await jobs.list_my_applications(session)
    return [MyApplicationOut(**row) for row in rows]


@router.post("/{application_id}/accept", response_model=AcceptOut)
async def accept(application_id: str, session: Session = Depends(get_session)) -> AcceptOut:
    return AcceptOut(**await jobs.accept_application(session, application_id))


@router.post("/{application_id}/reject", response_model=ApplicationOut)
async def reject(application_id: str, session: Session = Depends(get_session)) -> ApplicationOut:
    return ApplicationOut(**await jobs.reject_application(session, application_id))


@router.post("/{application_id}/withdraw", response_model=ApplicationOut)
async def withdraw(application_id: str, session: Session = Depends(get_session)) -> ApplicationOut:
    return ApplicationOut(**await jobs.withdraw_application(session, application_id))


@router.post("/{application_id}/reveal", response_model=RevealOut)
async def reveal(application_id: str, session: Session = Depends(get_session)) -> RevealOut:
    return RevealOut(**await jobs.reveal_contact(session, application_id))
