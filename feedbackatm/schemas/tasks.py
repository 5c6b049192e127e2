from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ..models.models import TaskStatus


class TaskCommentRequest(BaseModel):
    manager_notes: str = Field(min_length=1)

    @field_validator("manager_notes")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Comment is required")
        return v


class ManagerTaskCreate(BaseModel):
    service_point_id: str = Field(min_length=1)
    cleaner_id: str = Field(min_length=1)
    scheduled_at: Optional[datetime] = None


class ManagerTaskUpdate(BaseModel):
    service_point_id: Optional[str] = Field(default=None, min_length=1)
    cleaner_id: Optional[str] = Field(default=None, min_length=1)
    scheduled_at: Optional[datetime] = None
    status: Optional[TaskStatus] = None
