from pydantic import BaseModel


class AdminStatsOut(BaseModel):
    total_users: int
    total_jobs: int
    active_jobs: int
    total_job_applications: int
