from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

# Token Response
class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    role: str
    username: str
    full_name: Optional[str]

# Logged-in admin, with what the dashboard may show them
class AdminProfileResponse(BaseModel):
    id: int
    username: str
    role: str
    full_name: Optional[str]
    last_login: Optional[datetime]
    permissions: List[str]

    class Config:
        from_attributes = True

# Session as seen by the admin dashboard
class AdminSessionResponse(BaseModel):
    hardware_id: str
    network_address: Optional[str]
    remaining_seconds: int
    total_paid: int
    download_limit: Optional[int]
    upload_limit: Optional[int]
    session_type: str
    voucher_code: Optional[str]
    is_paused: bool
    token_expires_at: Optional[datetime]
    connected_at: Optional[datetime]

    class Config:
        from_attributes = True

# Admin time adjustment
class AddTimeRequest(BaseModel):
    minutes: int = Field(..., gt=0, le=60 * 24 * 365)
