from fastapi import APIRouter, Depends

from localfix.core.security import get_session
from localfix.core.session import Session
from localfix.schemas.profiles import ProfileOut
from localfix.services.accounts import get_profile

router = APIRouter()


@router.get("/me", response_model=ProfileOut)
async def read_my_profile(session: Session = Depends(get_session)) -> ProfileOut:
    return ProfileOut(**await get_profile(session))
