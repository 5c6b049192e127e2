from typing import List, Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..models.models import ServicePointType, UserRole


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


def _coerce_coordinate(v):
    if v is None:
        return None
    if isinstance(v, str):
        try:
            return float(v.strip())
        except ValueError:
            raise ValueError("Invalid coordinate")
    return float(v)


class UserCreate(BaseModel):
    username: str = Field(min_length=1)
    email: Optional[str] = None
    password: str = Field(min_length=1)
    role: UserRole
    company_id: Optional[str] = None

    @field_validator("email", "company_id", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


class UserUpdate(BaseModel):
    username: Optional[str] = Field(default=None, min_length=1)
    email: Optional[str] = None
    role: Optional[UserRole] = None
    company_id: Optional[str] = None

    @field_validator("email", mode="before")
    @classmethod
    def _blank(cls, v):
        return _blank_to_none(v)


class CompanyCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    address: Optional[str] = None


class CompanyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    address: Optional[str] = None


class ServicePointCreate(BaseModel):
    name: str = Field(min_length=1)
    type: ServicePointType = ServicePointType.ATM
    address: str = Field(min_length=1)
    latitude: Union[float, str]
    longitude: Union[float, str]
    company_id: str = Field(min_length=1)

    @field_validator("latitude", "longitude", mode="after")
    @classmethod
    def _coords(cls, v):
        return _coerce_coordinate(v)


class ServicePointUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    type: Optional[ServicePointType] = None
    address: Optional[str] = Field(default=None, min_length=1)
    latitude: Optional[Union[float, str]] = None
    longitude: Optional[Union[float, str]] = None
    company_id: Optional[str] = None

    @field_validator("latitude", "longitude", mode="after")
    @classmethod
    def _coords(cls, v):
        return _coerce_coordinate(v)


class AssignPointsRequest(BaseModel):
    point_ids: List[str] = Field(default_factory=list)
