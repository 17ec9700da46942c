"""Business account connection payloads."""
from typing import Optional

from pydantic import Field

from spendgate.models.base import SGBaseModel


class ConnectionCreate(SGBaseModel):
    business_id: str = Field(..., min_length=1)
    access_token: str = Field(..., min_length=1)
    business_name: Optional[str] = None
    refresh_token: Optional[str] = None
    scopes: Optional[str] = None
    token_expires_at: Optional[str] = None


class ActiveAccountRequest(SGBaseModel):
    business_id: str = Field(..., min_length=1)
