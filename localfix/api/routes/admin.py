from fastapi import APIRouter, Depends

from localfix.core.security import get_session
from localfix.core.session import Session
from localfix.schemas.admin import AdminStatsOut
from localfix.services.accounts import admin_stats

router = APIRouter()


@router.get("/stats", response_model=AdminStatsOut)
async def read_stats(session: Session = Depends(get_session)) -> AdminStatsOut:
    return AdminStatsOut(**await admin_stats(session))
