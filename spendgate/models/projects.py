"""Project and client administration payloads."""
from datetime import date
from typing import Any, List, Optional

from pydantic import Field, field_validator

from spendgate.models.base import SGBaseModel


def _reject_null(v: Any) -> Any:
    # Omit a field to leave it unchanged; null is never a stored value here.
    if v is None:
        raise ValueError("may be omitted but not null")
    return v


class ClientCreate(SGBaseModel):
    name: str = Field(..., min_length=1)
    owner_id: Optional[str] = None
    industry: Optional[str] = None
    status: str = "active"


class ClientUpdate(SGBaseModel):
    name: Optional[str] = Field(None, min_length=1)
    owner_id: Optional[str] = None
    industry: Optional[str] = None
    status: Optional[str] = None

    @field_validator("name", "status", mode="before")
    @classmethod
    def omitted_not_null(cls, v: Any) -> Any:
        return _reject_null(v)


class ProjectCreate(SGBaseModel):
    name: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)
    manager_id: Optional[str] = None
    director_id: Optional[str] = None
    team: List[str] = Field(default_factory=list)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: str = "active"


class ProjectUpdate(SGBaseModel):
    name: Optional[str] = Field(None, min_length=1)
    client_id: Optional[str] = Field(None, min_length=1)
    manager_id: Optional[str] = None
    director_id: Optional[str] = None
    team: Optional[List[str]] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    status: Optional[str] = None

    @field_validator("name", "client_id", "status", "team", mode="before")
    @classmethod
    def omitted_not_null(cls, v: Any) -> Any:
        return _reject_null(v)
