from datetime import date
from typing import Optional
import uuid

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..models.models import Shift


class WorkerRegisterRequest(BaseModel):
    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=8)
    user_code: str = Field(min_length=1)
    phone: Optional[str] = None
    joining_date: Optional[date] = None
    push_token: Optional[str] = None  # Expo device token

    @field_validator('phone', 'push_token', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class AvailabilitySlot(BaseModel):
    date: date
    shift: Shift


class CancelShiftRequest(BaseModel):
    date: date
    shift: Shift
    worker_id: Optional[uuid.UUID] = None  # required when a tenant cancels on a worker's behalf


class WorkerUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None

    @field_validator('name', 'email', 'phone', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class WorkerMessageRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
