from pydantic import BaseModel, Field
from typing import Optional


class CoinClaimResponse(BaseModel):
    success: bool
    hardware_id: str = Field(..., alias="hardwareId")
    expires_in: int = Field(..., alias="expiresIn")

    class Config:
        populate_by_name = True


# Credit event from the coin acceptor bridge
class CreditRequest(BaseModel):
    amount: int = Field(..., gt=0)
    derived_minutes: Optional[int] = Field(None, alias="derivedMinutes", gt=0)

    class Config:
        populate_by_name = True


class CreditResponse(BaseModel):
    success: bool
    queued: bool
    hardware_id: str = Field(..., alias="hardwareId")

    class Config:
        populate_by_name = True
