from fastapi import APIRouter, Depends

from localfix.core.security import get_session
from localfix.core.session import Session
from localfix.schemas.auth import SignupOut, SignupRequest, SuccessOut, VerifyPhoneRequest
from localfix.services import accounts
from localfix.services.accounts import get_auth_client
from localfix.services.repository import get_repository

router = APIRouter()


@router.post("/signup", response_model=SignupOut)
async def signup(
    payload: SignupRequest,
    repository=Depends(get_repository),
    auth_client=Depends(get_auth_client),
) -> SignupOut:
    result = await accounts.sign_up(repository, auth_client, payload.model_dump())
    return SignupOut(**result)


@router.post("/verify-phone", response_model=SuccessOut)
async def verify_phone(
    payload: VerifyPhoneRequest,
    session: Session = Depends(get_session),
    auth_client=Depends(get_auth_client),
) -> SuccessOut:
    result = await accounts.verify_phone(session, auth_client, phone=payload.phone, token=payload.token)
    return SuccessOut(**result)
