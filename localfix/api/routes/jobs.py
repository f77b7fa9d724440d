from fastapi import APIRouter, Depends, Query, status

from localfix.core.security import get_session
from localfix.core.session import Session
from localfix.schemas.jobs import (
    ApplicationOut,
    ApplicationView,
    ApplyRequest,
    JobCreateRequest,
    JobOut,
    JobUpdateRequest,
    JobView,
)
from localfix.services import jobs

router = APIRouter()


@router.get("", response_model=list[JobOut])
async def list_jobs(
    session: Session = Depends(get_session),
    limit: int = Query(default=50, ge=1, le=200),
) -> list[JobOut]:
    rows = await jobs.list_open_jobs(session, limit=limit)
    return [JobOut(**row) for row in rows]


@router.post("", response_model=JobOut, status_code=status.HTTP_201_CREATED)
async def create_job(payload: JobCreateRequest, session: Session = Depends(get_session)) -> JobOut:
    row = await jobs.create_job(session, payload.model_dump(exclude_unset=True))
    return JobOut(**row)


@router.get("/{job_id}", response_model=JobView)
async def read_job(job_id: str, session: Session = Depends(get_session)) -> JobView:
    return JobView(**await jobs.get_job_for_viewer(session, job_id))


@router.patch("/{job_id}", response_model=JobOut)
async def patch_job(job_id: str, payload: JobUpdateRequest, session: Session = Depends(get_session)) -> JobOut:
    row = await jobs.update_job(session, job_id, payload.model_dump(exclude_unset=True))
    return JobOut(**row)


@router.post("/{job_id}/close", response_model=JobOut)
async def close_job(job_id: str, session: Session = Depends(get_session)) -> JobOut:
    return JobOut(**await jobs.close_job(session, job_id))


@router.post("/{job_id}/complete", response_model=JobOut)
async def complete_job(job_id: str, session: Session = Depends(get_session)) -> JobOut:
    return JobOut(**await jobs.complete_job(session, job_id))


@router.post("/{job_id}/applications", response_model=ApplicationOut, status_code=status.HTTP_201_CREATED)
async def apply(job_id: str, payload: ApplyRequest, session: Session = Depends(get_session)) -> ApplicationOut:
    row = await jobs.apply_to_job(session, job_id, payload.proposed_rate)
    return ApplicationOut(**row)


@router.get("/{job_id}/applications", response_model=list[ApplicationView])
async def list_applications(job_id: str, session: Session = Depends(get_session)) -> list[ApplicationView]:
    rows = await jobs.list_job_applications(session, job_id)
    return [ApplicationView(**row) for row in rows]
