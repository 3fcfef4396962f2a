from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Any, Dict, Literal
from datetime import datetime

TransactionType = Literal["earned", "redeemed", "bonus"]


class TransactionCreate(BaseModel):
    user_id: str = Field(..., min_length=1)
    type: TransactionType
    points: int
    description: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_sign(self):
        # earned/bonus credit the user, redeemed debits
        if self.type == "redeemed" and self.points >= 0:
            raise ValueError("redeemed entries must carry negative points")
        if self.type in ("earned", "bonus") and self.points <= 0:
            raise ValueError(f"{self.type} entries must carry positive points")
        return self


class TransactionResponse(BaseModel):
    id: str
    user_id: str
    type: TransactionType
    points: int
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PointsBalance(BaseModel):
    user_id: str
    points: int


class AwardPointsRequest(BaseModel):
    points: int = Field(..., gt=0)
    description: str = Field(..., min_length=1)
    type: Literal["earned", "bonus"] = "earned"
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuditReport(BaseModel):
    user_id: str
    ledger_balance: int
    recomputed_balance: int
    consistent: bool
