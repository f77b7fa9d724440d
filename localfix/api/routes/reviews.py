import json

from fastapi import APIRouter, Depends, Query, Request

from localfix.core.security import get_review_session
from localfix.core.session import Session
from localfix.schemas.reviews import ReviewOut
from localfix.services import reviews
from localfix.services.errors import ConflictError, ValidationError
from localfix.services.repository import get_repository

router = APIRouter()


@router.get("", response_model=list[ReviewOut])
async def list_reviews(
    repository=Depends(get_repository),
    job_id: str | None = Query(default=None, alias="jobId"),
    booking_id: str | None = Query(default=None, alias="bookingId"),
    user_id: str | None = Query(default=None, alias="userId"),
) -> list[ReviewOut]:
    rows = await reviews.list_reviews(repository, job_id=job_id, booking_id=booking_id, user_id=user_id)
    return [ReviewOut(**row) for row in rows]


@router.post("", response_model=ReviewOut)
async def create_review(request: Request, session: Session = Depends(get_review_session)) -> ReviewOut:
    # Parsed by hand so the caller is authenticated before the body is validated.
    try:
        payload = json.loads(await request.body() or b"null")
    except ValueError as exc:
        raise ValidationError("request body must be JSON") from exc
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")

    try:
        review = await reviews.admit_review(session, payload)
    except ConflictError as exc:
        # Duplicate reviews have always been reported as 400.
        raise ValidationError(exc.message) from exc
    return ReviewOut(**review)
