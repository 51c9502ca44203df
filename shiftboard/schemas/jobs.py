from datetime import date
from typing import List, Literal, Optional
import uuid

from pydantic import BaseModel, Field, field_validator

from ..models.models import Shift


class JobCreate(BaseModel):
    title: str
    description: str
    location: str
    date: date
    shift: Shift
    workers_required: int = Field(gt=0)


class JobUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    workers_required: Optional[int] = Field(default=None, gt=0)

    @field_validator('title', 'description', 'location', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class InvitationResponse(BaseModel):
    job_id: uuid.UUID
    response: Literal["accept", "decline"]

    @field_validator('response', mode='before')
    @classmethod
    def normalize(cls, v):
        return str(v).strip().lower() if v is not None else v


class InviteWorkersRequest(BaseModel):
    worker_ids: List[uuid.UUID] = Field(min_length=1)
