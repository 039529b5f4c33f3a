from pydantic import BaseModel, Field, field_validator


class VoucherRedeemRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=32)

    @field_validator('code')
    @classmethod
    def normalize_code(cls, v):
        v = v.strip().upper()
        if not v:
            raise ValueError('Voucher code is required')
        return v


class VoucherRedeemResponse(BaseModel):
    success: bool
    hardware_id: str = Field(..., alias="hardwareId")
    token: str
    remaining_seconds: int = Field(..., alias="remainingSeconds")

    class Config:
        populate_by_name = True
