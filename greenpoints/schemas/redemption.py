from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Optional
from datetime import datetime

from greenpoints.schemas.voucher import VoucherResponse

RedemptionStatus = Literal["active", "used", "expired"]


class RedemptionCreate(BaseModel):
    id: str
    user_id: str
    voucher_id: str
    voucher_code: str
    points_used: int = Field(..., ge=0)
    redeemed_at: datetime
    expires_at: datetime


class RedemptionResponse(BaseModel):
    id: str
    user_id: str
    voucher_id: str
    voucher_code: str
    points_used: int
    status: RedemptionStatus
    redeemed_at: datetime
    expires_at: datetime
    used_at: Optional[datetime] = None
    voucher: Optional[VoucherResponse] = None

    model_config = ConfigDict(from_attributes=True)

    def is_past_expiry(self, now: datetime) -> bool:
        return now > self.expires_at
