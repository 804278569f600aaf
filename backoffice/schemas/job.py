import json
from datetime import datetime

from pydantic import BaseModel, field_validator

from backoffice.models.job import JobType


class JobCreate(BaseModel):
    job_type: JobType
    payload: dict = {}
    resource_type: str = ""
    resource_id: str = ""


class JobOut(BaseModel):
    id: str
    job_type: str
    status: str
    payload: dict
    result: dict
    error: str
    retries: int
    max_retries: int
    resource_type: str
    resource_id: str
    created_by: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("payload", "result", mode="before")
    @classmethod
    def _parse_json(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v else {}
        return v
