from pydantic import BaseModel, Field

from localfix.schemas.profiles import ContactProfile, PublicProfile


class JobCreateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    required_skills: list[str] | None = None
    budget: float | str | None = None
    # Free-form on purpose: unknown values are normalized to "fixed" on write.
    budget_type: str | None = None
    location: str | None = None
    duration: str | None = None


class JobUpdateRequest(BaseModel):
    title: str | None = None
    description: str | None = None
    category: str | None = None
    required_skills: list[str] | None = None
    budget: float | str | None = None
    budget_type: str | None = None
    location: str | None = None
    duration: str | None = None


class JobOut(BaseModel):
    id: str
    poster_id: str | None = None
    client_id: str | None = None
    title: str
    description: str | None = None
    category: str | None = None
    required_skills: list[str] | None = None
    budget: float | None = None
    budget_type: str | None = None
    location: str | None = None
    duration: str | None = None
    status: str
    created_at: str | None = None
    updated_at: str | None = None


class ApplicationOut(BaseModel):
    id: str
    job_id: str
    provider_id: str
    proposed_rate: float
    status: str
    client_contact_revealed: bool = False
    created_at: str | None = None
    updated_at: str | None = None


class JobView(JobOut):
    poster: ContactProfile | None = None
    poster_hidden: bool = True
    my_application: ApplicationOut | None = None


class JobSummary(BaseModel):
    id: str
    title: str | None = None
    status: str | None = None
    budget: float | None = None
    location: str | None = None


class ApplicationView(ApplicationOut):
    provider: ContactProfile | PublicProfile | None = None


class MyApplicationOut(ApplicationOut):
    job: JobSummary | None = None


class ApplyRequest(BaseModel):
    proposed_rate: float | None = None


class AcceptOut(BaseModel):
    application: ApplicationOut
    job: JobOut


class RevealOut(BaseModel):
    success: bool
    already_revealed: bool = Field(serialization_alias="alreadyRevealed")
    application: ApplicationOut
