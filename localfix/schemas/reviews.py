from pydantic import BaseModel

from localfix.schemas.profiles import PublicProfile


class ReviewOut(BaseModel):
    id: str
    reviewer_id: str
    reviewee_id: str
    job_id: str | None = None
    booking_id: str | None = None
    rating: int
    comment: str | None = None
    created_at: str | None = None
    reviewer: PublicProfile | None = None
    reviewee: PublicProfile | None = None
