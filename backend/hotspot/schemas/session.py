from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


# Session start (coin purchase confirmed by the portal)
class SessionStartRequest(BaseModel):
    amount_paid: int = Field(..., alias="amountPaid", ge=0)
    minutes: int = Field(..., gt=0, le=60 * 24 * 365)

    class Config:
        populate_by_name = True


class SessionStartResponse(BaseModel):
    success: bool
    hardware_id: str = Field(..., alias="hardwareId")
    token: str

    class Config:
        populate_by_name = True


# Token restore / migration
class RestoreRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=64)


class RestoreResponse(BaseModel):
    success: bool
    migrated: bool
    remaining_seconds: int = Field(..., alias="remainingSeconds")

    class Config:
        populate_by_name = True


class WhoAmIResponse(BaseModel):
    address: Optional[str]
    hardware_id: str = Field(..., alias="hardwareId")

    class Config:
        populate_by_name = True


class SessionStatusResponse(BaseModel):
    admitted: bool
    hardware_id: str = Field(..., alias="hardwareId")
    remaining_seconds: int = Field(0, alias="remainingSeconds")
    session_type: Optional[str] = Field(None, alias="sessionType")
    is_paused: bool = Field(False, alias="isPaused")
    download_limit: int = Field(0, alias="downloadLimit")
    upload_limit: int = Field(0, alias="uploadLimit")
    token_expires_at: Optional[datetime] = Field(None, alias="tokenExpiresAt")

    class Config:
        populate_by_name = True
