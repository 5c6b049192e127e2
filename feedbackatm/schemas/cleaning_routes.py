from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class RouteCreate(BaseModel):
    name: str = Field(min_length=1)
    cleaner_id: str = Field(min_length=1)
    service_point_ids: List[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Route name is required")
        return v


class RouteUpdate(BaseModel):
    name: Optional[str] = None
    cleaner_id: Optional[str] = Field(default=None, min_length=1)
    service_point_ids: Optional[List[str]] = None
